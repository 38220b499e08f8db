"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import io
import os
import stat
import subprocess
import sys
import threading
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"
FAKE_JAVA_PATH = FIXTURES_DIR / "fake_java.py"

IS_WINDOWS = sys.platform == "win32"

from jvm_launcher.runtime.exit_hooks import ExitRegistration  # noqa: E402


class FakePopen:
    """subprocess.Popen 的替身，记录调用参数。

    进程在调用 terminate()/kill() 或 finish() 之前一直处于运行状态。
    """

    instances: list["FakePopen"] = []
    next_pid = 5_000_000  # above pid_max, never a real process
    stdout_data = b""
    stderr_data = b""

    def __init__(self, argv, **kwargs) -> None:
        self.argv = list(argv)
        self.kwargs = kwargs
        self.pid = FakePopen.next_pid
        FakePopen.next_pid += 1
        self.returncode: int | None = None
        self.stdin = io.BytesIO()
        self.stdout = io.BytesIO(self.stdout_data)
        self.stderr = io.BytesIO(self.stderr_data)
        self.terminate_calls = 0
        self.kill_calls = 0
        self._exited = threading.Event()
        FakePopen.instances.append(self)

    def finish(self, returncode: int = 0) -> None:
        """模拟进程自然退出。"""
        if self.returncode is None:
            self.returncode = returncode
        self._exited.set()

    def poll(self) -> int | None:
        return self.returncode

    def wait(self, timeout: float | None = None) -> int:
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired(self.argv, timeout)
        return self.returncode

    def terminate(self) -> None:
        self.terminate_calls += 1
        self.finish(-15)

    def kill(self) -> None:
        self.kill_calls += 1
        self.finish(-9)


class FakeNotifier:
    """记录 register/unregister 调用的退出通知器。"""

    def __init__(self) -> None:
        self.registered: list = []
        self.unregistered: list = []

    def register(self, callback, name: str = ""):
        registration = ExitRegistration(callback=callback, name=name)
        registration._hook = callback
        self.registered.append(registration)
        return registration

    def unregister(self, registration) -> None:
        registration._hook = None
        self.unregistered.append(registration)

    @property
    def active(self) -> list:
        return [r for r in self.registered if r.active]

    def fire(self) -> None:
        """模拟宿主进程退出。"""
        for registration in self.active:
            registration.callback()


@pytest.fixture
def fake_popen():
    """返回 FakePopen 类，并在测试之间清空实例列表。"""
    FakePopen.instances = []
    yield FakePopen
    FakePopen.instances = []


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """Create temporary workspace directory."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture
def fake_java_home(tmp_path: Path) -> Path:
    """创建一个 java home，其 bin/java 转发到 fake_java.py。"""
    if IS_WINDOWS:
        pytest.skip("POSIX shell wrapper required")

    java_home = tmp_path / "jdk"
    bin_dir = java_home / "bin"
    bin_dir.mkdir(parents=True)

    java = bin_dir / "java"
    java.write_text(
        "#!/bin/sh\n"
        f'exec "{sys.executable}" "{FAKE_JAVA_PATH}" "$@"\n'
    )
    java.chmod(java.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return java_home


@pytest.fixture
def clean_env():
    """移除 JVL_* 和 JAVA_HOME 环境变量。"""
    return {
        k: v
        for k, v in os.environ.items()
        if not k.startswith("JVL_") and k != "JAVA_HOME"
    }
