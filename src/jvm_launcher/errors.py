"""Launcher 异常类。

所有异常都继承自 ExecutionError，调用方可以统一捕获。
"""

from __future__ import annotations

__all__ = [
    "ExecutionError",
    "ConfigurationError",
    "AlreadyStartedError",
    "LaunchError",
]


class ExecutionError(Exception):
    """Launcher 基础异常。"""
    pass


class ConfigurationError(ExecutionError):
    """配置错误（如未设置 java home）。"""
    pass


class AlreadyStartedError(ExecutionError):
    """当前 runner 已持有一个运行中的进程。"""

    def __init__(self, message: str = "Platform already started") -> None:
        super().__init__(message)


class LaunchError(ExecutionError):
    """子进程启动失败。

    Attributes:
        cause: 底层异常（通常是 OSError）
    """

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message if cause is None else f"{message}: {cause}")
