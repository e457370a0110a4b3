import os
from rich.console import Console
from loguru import logger

__all__ = [
    "console",
    "error_console",
    "logger",
    "configure_logging",
    "clear_screen",
]

console = Console()
error_console = Console(stderr=True)

# Remove Loguru's default stderr sink so log lines never mix with child output
logger.remove()

log_format = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS zz}</green> | <level>{level: <8}</level> | <yellow>Line {line: >4} ({file}):</yellow> <b>{message}</b>"


def configure_logging(log_dir: str = ".devserver") -> list[int]:
    """Attach the debug and info file sinks under *log_dir*.

    Relative directories are resolved against the current working directory.

    Returns:
        list[int]: Loguru handler ids, usable with ``logger.remove``.
    """
    os.makedirs(log_dir, exist_ok=True)
    handler_ids = [
        logger.add(
            os.path.join(log_dir, "debug.log"),
            level="DEBUG",
            format=log_format,
            colorize=False,
            backtrace=True,
            diagnose=True,
        ),
        logger.add(
            os.path.join(log_dir, "info.log"),
            level="INFO",
            format=log_format,
            colorize=False,
            backtrace=True,
            diagnose=True,
        ),
    ]
    return handler_ids


def clear_screen() -> None:
    """Clear the terminal, including scrollback where the terminal supports it."""
    if console.is_terminal:
        console.file.write("\x1b[3J")
    console.clear()
