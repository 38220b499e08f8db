"""JVM Launcher - 启动并托管一个外部 JVM 进程。

环境变量:
    JVL_JAVA_HOME: 默认 java home（未设置时使用 JAVA_HOME）
    JVL_LOG_DEBUG: 日志输出到临时文件 (默认 false)

用法:
    jvm-launcher --java-home /opt/jdk --cp app.jar com.example.Main
"""

__version__ = "0.1.0"

from .errors import (
    AlreadyStartedError,
    ConfigurationError,
    ExecutionError,
    LaunchError,
)
from .runtime import JavaRunner, ManagedProcess, ProcessState

__all__ = [
    "__version__",
    "AlreadyStartedError",
    "ConfigurationError",
    "ExecutionError",
    "JavaRunner",
    "LaunchError",
    "ManagedProcess",
    "ProcessState",
]
