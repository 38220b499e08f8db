"""Java 命令行构建。

提供：
- CommandLineBuilder: 追加单个参数或参数序列，输出扁平化的参数列表
- java_executable(): java home 下的 java 可执行文件路径
- join_classpath(): 用平台路径分隔符拼接 classpath
- build_java_command(): 组合完整的 java 启动命令
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterable, Sequence

from .errors import ConfigurationError

__all__ = [
    "CommandLineBuilder",
    "java_executable",
    "join_classpath",
    "build_java_command",
]

IS_WINDOWS = sys.platform == "win32"


class CommandLineBuilder:
    """命令行参数构建器。

    Example:
        cmd = (
            CommandLineBuilder()
            .append("/opt/jdk/bin/java")
            .append(["-Xmx512m", "-ea"])
            .append("com.example.Main")
            .to_list()
        )
    """

    def __init__(self) -> None:
        self._tokens: list[str] = []

    def append(self, value: str | Iterable[str] | None) -> CommandLineBuilder:
        """追加单个参数或参数序列。

        None 被忽略，序列中的 None 同样被忽略。
        """
        if value is None:
            return self
        if isinstance(value, (str, os.PathLike)):
            self._tokens.append(os.fspath(value))
            return self
        for token in value:
            if token is not None:
                self._tokens.append(os.fspath(token))
        return self

    def to_list(self) -> list[str]:
        """返回参数列表的副本。"""
        return list(self._tokens)

    def __len__(self) -> int:
        return len(self._tokens)

    def __repr__(self) -> str:
        return f"CommandLineBuilder({self._tokens!r})"


def java_executable(java_home: str | os.PathLike[str] | None) -> str:
    """返回 java home 下的 java 可执行文件路径。

    Raises:
        ConfigurationError: java_home 为空
    """
    if java_home is None or not os.fspath(java_home).strip():
        raise ConfigurationError("runtime home not set")
    name = "java.exe" if IS_WINDOWS else "java"
    return os.path.join(os.fspath(java_home), "bin", name)


def join_classpath(entries: Iterable[str] | None) -> str:
    """用 os.pathsep 拼接 classpath，跳过空条目，保留顺序。"""
    if not entries:
        return ""
    return os.pathsep.join(os.fspath(entry) for entry in entries if entry)


def build_java_command(
    java_home: str | os.PathLike[str] | None,
    vm_options: Sequence[str] | None,
    classpath: Iterable[str] | None,
    main_class: str,
    program_options: Sequence[str] | None,
) -> list[str]:
    """构建 java 启动命令。

    顺序: [java] + vm_options + ["-cp", classpath] + [main_class] + program_options
    """
    return (
        CommandLineBuilder()
        .append(java_executable(java_home))
        .append(vm_options)
        .append("-cp")
        .append(join_classpath(classpath))
        .append(main_class)
        .append(program_options)
        .to_list()
    )
