"""Logging helpers shared by all envoy-relay modules."""

import functools
import logging
import sys
import time
from collections.abc import Callable
from typing import Literal, ParamSpec, TextIO, TypeVar

P = ParamSpec("P")
R = TypeVar("R")

Color = Literal["red", "green", "yellow", "blue", "magenta", "cyan", "bold"]

_COLORS: dict[str, str] = {
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "blue": "\033[34m",
    "magenta": "\033[35m",
    "cyan": "\033[36m",
    "bold": "\033[1m",
}
_RESET = "\033[0m"

ROOT_LOGGER_NAME = "envoy_relay"


def colorize(text: str, color: Color) -> str:
    if not sys.stderr.isatty():
        return text
    return f"{_COLORS[color]}{text}{_RESET}"


class _LevelFormatter(logging.Formatter):
    _LEVEL_COLORS: dict[int, Color] = {
        logging.DEBUG: "cyan",
        logging.WARNING: "yellow",
        logging.ERROR: "red",
        logging.CRITICAL: "red",
    }

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if record.levelno == logging.INFO:
            return message
        color = self._LEVEL_COLORS.get(record.levelno, "bold")
        return colorize(f"{record.levelname}: ", color) + message


class _StderrHandler(logging.StreamHandler):  # type: ignore[type-arg]
    """Always writes to the current sys.stderr, even after it was replaced."""

    @property  # type: ignore[override]
    def stream(self) -> TextIO:
        return sys.stderr

    @stream.setter
    def stream(self, value: object) -> None:
        pass


def _configure_root_logger() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        handler = _StderrHandler()
        handler.setFormatter(_LevelFormatter("%(message)s"))
        root.addHandler(handler)
        root.setLevel(logging.INFO)
        root.propagate = False
    return root


def get_logger(name: str) -> logging.Logger:
    """Return a logger below the package root logger.

    The root logger gets a single stream handler on first use, so every module
    can call this at import time.
    """
    _configure_root_logger()
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def generate_log_decorator(
    logger: logging.Logger,
) -> Callable[..., Callable[[Callable[P, R]], Callable[P, R]]]:
    """Build a ``@log()`` decorator bound to ``logger``.

    The decorated step is announced before it runs and its duration is logged at
    debug level when it finishes. ``prefix`` receives the same arguments as the
    step and returns text placed in front of the announcement. ``max_level``
    caps the announcement level, so chatty helpers can be demoted to DEBUG.
    """

    def log(
        prefix: Callable[..., str] | None = None,
        max_level: int = logging.INFO,
    ) -> Callable[[Callable[P, R]], Callable[P, R]]:
        def decorator(func: Callable[P, R]) -> Callable[P, R]:
            step = func.__name__.strip("_").replace("_", " ")

            @functools.wraps(func)
            def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
                head = prefix(*args, **kwargs) if prefix else ""
                logger.log(min(max_level, logging.INFO), "%s%s...", head, step)
                start = time.monotonic()
                result = func(*args, **kwargs)
                logger.debug("%s%s done (%.2fs)", head, step, time.monotonic() - start)
                return result

            return wrapper

        return decorator

    return log


def set_verbosity(verbose: int, quiet: int) -> None:
    level = max(logging.INFO - ((verbose - quiet) * 10), logging.DEBUG)
    _configure_root_logger().setLevel(level)
