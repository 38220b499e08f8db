"""JVL 环境变量配置管理。

环境变量:
    JVL_JAVA_HOME: 默认的 java home 目录
        - 未设置时回退到 JAVA_HOME
        - 命令行参数 --java-home 优先

    JVL_ISOLATE: 子进程是否放入新的 session/进程组
        - true/1/yes = 隔离 (默认)，终止时向整个进程组发送信号
        - false/0/no = 与父进程共享进程组

    JVL_TERM_TIMEOUT: 发送 SIGTERM 后等待退出的时间（秒）
        - 默认 2.0 秒，限制在 0.1-60 秒

    JVL_KILL_TIMEOUT: 发送 SIGKILL 后等待退出的时间（秒）
        - 默认 1.0 秒，限制在 0.1-60 秒

    JVL_HANDLE_SIGTERM: 父进程收到 SIGTERM 时是否走 atexit 清理
        - true/1/yes = 是 (默认)
        - false/0/no = 保留原有 SIGTERM 处理器

    JVL_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .runtime.process import DEFAULT_KILL_TIMEOUT, DEFAULT_TERM_TIMEOUT

__all__ = ["Config", "load_config", "get_config", "reload_config"]


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_timeout(value: str | None, default: float) -> float:
    """解析超时时间环境变量。"""
    if not value:
        return default
    try:
        timeout = float(value)
        return max(0.1, min(timeout, 60.0))  # 限制在 0.1-60 秒范围
    except ValueError:
        return default


def _resolve_java_home() -> str | None:
    """解析 java home，JVL_JAVA_HOME 优先于 JAVA_HOME。"""
    for name in ("JVL_JAVA_HOME", "JAVA_HOME"):
        value = os.environ.get(name, "").strip()
        if value:
            return value
    return None


@dataclass
class Config:
    """JVL 配置。

    Attributes:
        java_home: 默认 java home（可能为空）
        isolate: 是否隔离子进程的进程组
        term_timeout: SIGTERM 后的等待时间（秒）
        kill_timeout: SIGKILL 后的等待时间（秒）
        handle_sigterm: 是否将 SIGTERM 转换为正常退出流程
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    java_home: str | None = None
    isolate: bool = True
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    handle_sigterm: bool = True
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(java_home={self.java_home}, "
            f"isolate={self.isolate}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"handle_sigterm={self.handle_sigterm}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "jvm-launcher"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"jvl_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("JVL_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        java_home=_resolve_java_home(),
        isolate=_parse_bool(os.environ.get("JVL_ISOLATE"), default=True),
        term_timeout=_parse_timeout(
            os.environ.get("JVL_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT
        ),
        kill_timeout=_parse_timeout(
            os.environ.get("JVL_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT
        ),
        handle_sigterm=_parse_bool(os.environ.get("JVL_HANDLE_SIGTERM"), default=True),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
