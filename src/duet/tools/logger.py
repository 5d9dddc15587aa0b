import logging
from datetime import datetime
import inspect
from colorlog import ColoredFormatter
import os

__all__ = [
    "log_critical",
    "log_error",
    "log_info",
    "log_warning",
    "log_debug",
    "set_log_level",
    "enable_file_logging",
]

LOGGER = logging.getLogger("duet")

## Allow all messages to be passed to handlers
LOGGER.setLevel(logging.DEBUG)
LOGGER.propagate = False

log_format = ColoredFormatter(
    "%(log_color)s%(asctime)s | %(levelname)s | %(message)s%(reset)s"
)
level = logging.INFO

## Configure logging stream
stream_handler = logging.StreamHandler()
stream_handler.setLevel(level)
stream_handler.setFormatter(log_format)
stream_handler.set_name("stream_handler")
LOGGER.addHandler(stream_handler)


def enable_file_logging(log_dir: str) -> None:
    """Attach the debug and regular file handlers under log_dir."""
    for handler in list(LOGGER.handlers):
        if handler.name in ("debugger_handler", "regular_handler"):
            LOGGER.removeHandler(handler)
            handler.close()

    debug_dir = os.path.join(log_dir, "debug")
    logs_dir = os.path.join(log_dir, "logs")
    os.makedirs(debug_dir, exist_ok=True)
    os.makedirs(logs_dir, exist_ok=True)
    today = datetime.now().strftime("%Y-%m-%d")

    ## Configure debug logging file
    debugger_handler = logging.FileHandler(
        os.path.join(debug_dir, f"duet-debug-{today}.log"),
        mode="w",
    )
    debugger_handler.setLevel(logging.DEBUG)
    debugger_handler.setFormatter(log_format)
    debugger_handler.set_name("debugger_handler")
    LOGGER.addHandler(debugger_handler)

    ## Configure regular logging file
    regular_handler = logging.FileHandler(
        os.path.join(logs_dir, f"duet-logs-{today}.log"),
        mode="w",
    )
    regular_handler.setLevel(stream_handler.level)
    regular_handler.setFormatter(log_format)
    regular_handler.set_name("regular_handler")
    LOGGER.addHandler(regular_handler)


def log_critical(message: str) -> None:
    """Log a critical error message."""
    LOGGER.critical(
        f"{inspect.stack()[1].function} | {message}",
        stack_info=True,
        stacklevel=3,
    )


def log_error(message: str) -> None:
    """Log an error message."""
    LOGGER.error(
        f"{inspect.stack()[1].function} | {message}",
        stack_info=True,
        stacklevel=3,
    )


def log_info(message: str) -> None:
    """Log an informational message."""
    LOGGER.info(f"{inspect.stack()[1].function} | {message}")


def log_warning(message: str) -> None:
    """Log a warning message."""
    LOGGER.warning(f"{inspect.stack()[1].function} | {message}")


def log_debug(message: str) -> None:
    """Log a debug message."""
    LOGGER.debug(f"{inspect.stack()[1].function} | {message}")


def set_log_level(level) -> None:
    """Set the logging level."""
    for handler in LOGGER.handlers:
        if handler.name != "debugger_handler":
            handler.setLevel(level)
