"""JVM Launcher 命令行入口。

用法:
    jvm-launcher [--java-home DIR] [-J OPT]... [--cp ENTRY]... [-e NAME=VALUE]...
                 [--cwd DIR] MAIN_CLASS [PROGRAM_ARGS...]

子进程的 stdout/stderr 转发到当前进程，当前进程的 stdin 转发到子进程。
退出码与子进程一致。
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Sequence

from . import __version__
from .config import Config, get_config
from .errors import ExecutionError
from .runtime import AtexitNotifier, JavaRunner

__all__ = ["build_parser", "run", "main"]

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    """构建命令行解析器。"""
    parser = argparse.ArgumentParser(
        prog="jvm-launcher",
        description="Launch a JVM and bridge its standard streams.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--java-home",
        default=None,
        help="Java home directory (default: JVL_JAVA_HOME or JAVA_HOME)",
    )
    parser.add_argument(
        "-J", "--vm-option",
        dest="vm_options",
        action="append",
        default=[],
        metavar="OPT",
        help="JVM option, repeatable (e.g. -J-Xmx512m)",
    )
    parser.add_argument(
        "--cp", "--classpath",
        dest="classpath",
        action="append",
        default=[],
        metavar="ENTRY",
        help=f"Classpath entry, repeatable; '{os.pathsep}' separated lists are split",
    )
    parser.add_argument(
        "-e", "--env",
        dest="env_options",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Extra environment variable for the JVM, repeatable",
    )
    parser.add_argument(
        "--cwd",
        default=".",
        help="Working directory of the JVM (default: current directory)",
    )
    parser.add_argument("main_class", help="Main class to run")
    parser.add_argument(
        "program_options",
        nargs=argparse.REMAINDER,
        help="Arguments passed to the main class",
    )
    return parser


def _split_classpath(values: Sequence[str]) -> list[str]:
    entries: list[str] = []
    for value in values:
        entries.extend(value.split(os.pathsep))
    return entries


def _exit_code(returncode: int | None) -> int:
    """将子进程返回码转换为退出码（信号终止为 128 + signum）。"""
    if returncode is None:
        return 1
    if returncode < 0:
        return 128 - returncode
    return returncode


def run(argv: Sequence[str] | None = None, config: Config | None = None) -> int:
    """解析参数并运行 JVM，返回退出码。"""
    config = config or get_config()
    args = build_parser().parse_args(argv)

    runner = JavaRunner(
        wait=True,
        notifier=AtexitNotifier(handle_sigterm=config.handle_sigterm),
        isolate=config.isolate,
        term_timeout=config.term_timeout,
        kill_timeout=config.kill_timeout,
    )

    try:
        process = runner.launch(
            vm_options=args.vm_options,
            classpath=_split_classpath(args.classpath),
            main_class=args.main_class,
            program_options=args.program_options,
            java_home=args.java_home or config.java_home,
            working_directory=args.cwd,
            env_options=args.env_options,
        )
    except ExecutionError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted, JVM has been shut down")
        return 130  # 128 + SIGINT(2)

    logger.debug(f"JVM exited with returncode={process.returncode}")
    return _exit_code(process.returncode)


def configure_logging(config: Config) -> None:
    """配置日志输出。"""
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        # LOG_DEBUG 模式：输出到临时文件
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        # 默认模式：输出到 stderr
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # root logger 保持 WARNING，只对 jvm_launcher 命名空间启用详细日志
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    logging.getLogger("jvm_launcher").setLevel(log_level)


def main() -> None:
    """主入口点。"""
    config = get_config()
    configure_logging(config)
    if config.log_debug:
        logger.info(f"Debug log: {config.log_file}")
    logger.debug(f"Starting JVM Launcher: {config}")

    sys.exit(run(config=config))


if __name__ == "__main__":
    main()
