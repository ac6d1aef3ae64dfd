from __future__ import annotations

import logging
import os
from typing import Optional

DEFAULT_LOG_LEVEL = logging.WARNING
LOG_LEVEL_ENV_VAR = "N8N_CLOUDRUN_LOG_LEVEL"


def is_rich_logging_disabled() -> bool:
    """
    Check if rich logging is disabled
    """
    return os.environ.get("DISABLE_RICH_LOGGING") is not None


def get_env_log_level() -> int:
    """
    Reads the log level from the environment. Accepts either a number or a level name such as ``debug``.
    """
    value = os.environ.get(LOG_LEVEL_ENV_VAR, "").strip()
    if not value:
        return DEFAULT_LOG_LEVEL
    if value.isdigit():
        return int(value)
    level = logging.getLevelName(value.upper())
    if isinstance(level, int):
        return level
    return DEFAULT_LOG_LEVEL


def get_rich_handler(log_level: int) -> Optional[logging.Handler]:
    """
    Upgrades the global loggers to use Rich logging.
    """
    if is_rich_logging_disabled():
        return None

    import click
    from rich.console import Console
    from rich.logging import RichHandler

    try:
        width = os.get_terminal_size().columns
    except OSError as e:
        logger.debug(f"Failed to get terminal size: {e}")
        width = 160

    handler = RichHandler(
        tracebacks_suppress=[click],
        rich_tracebacks=True,
        omit_repeated_times=False,
        show_path=False,
        log_time_format="%H:%M:%S.%f",
        console=Console(width=width, stderr=True),
        level=log_level,
    )

    formatter = logging.Formatter(fmt="%(filename)s:%(lineno)d - %(message)s")
    handler.setFormatter(formatter)
    return handler


def get_default_handler(log_level: int) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setLevel(log_level)
    formatter = logging.Formatter(fmt="[%(name)s] %(message)s")
    handler.setFormatter(formatter)
    return handler


def initialize_logger(log_level: int | None = None, enable_rich: bool = False):
    """
    Initializes the global loggers to the default configuration.
    """
    global logger  # noqa: PLW0603
    if log_level is None:
        log_level = get_env_log_level()
    logger = _create_logger("n8n_cloudrun", log_level, enable_rich)


def _create_logger(name: str, log_level: int = DEFAULT_LOG_LEVEL, enable_rich: bool = False) -> logging.Logger:
    """
    Creates a logger with the given name and log level.
    """
    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    logger.handlers = []
    handler = get_rich_handler(log_level) if enable_rich else None
    if handler is None:
        handler = get_default_handler(log_level)
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def log(fn=None, *, level=logging.DEBUG, entry=True, exit=True):
    """
    Decorator to log function calls.
    """

    def decorator(func):
        def wrapper(*args, **kwargs):
            if entry:
                logger.log(level, f"[{func.__name__}] with args: {args} and kwargs: {kwargs}")
            try:
                return func(*args, **kwargs)
            finally:
                if exit:
                    logger.log(level, f"[{func.__name__}] completed")

        wrapper.__name__ = func.__name__
        wrapper.__doc__ = func.__doc__
        return wrapper

    if fn is None:
        return decorator
    return decorator(fn)


logger = _create_logger("n8n_cloudrun", get_env_log_level())
