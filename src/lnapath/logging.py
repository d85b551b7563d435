"""
Logging utilities for the `lnapath` command line tools.

The library modules only log through `logging.getLogger(__name__)`, mostly at the
debug level for per-interval failures and retries. This module configures the output
side for the CLI:
- `ClickHandler`: A logging handler that writes records with `click.echo`.
- `get_script_logger`: Configures a logger for a CLI command from a verbosity count.
- `log_path_result`: Summarizes the outcome of a path simulation at info level.
"""

__all__ = ["ClickHandler", "get_script_logger", "log_path_result"]


import logging
from typing import Any, IO

import click

from .errors import PathFailure
from .lna import LNAPathResult


DEFAULT_LOG_FORMAT = "%(asctime)s:%(levelname)s:%(name)s> %(message)s"


class ClickHandler(logging.Handler):
    """
    Logging handler that writes formatted records with `click.echo`.

    Records are written to stderr by default so that they never mix with data a
    command writes to stdout.
    """

    _terminators = (".", "!", "?", ":")

    def __init__(
        self,
        level: int | str = logging.NOTSET,
        file: IO[Any] | None = None,
        err: bool = True,
        color: bool | None = None,
        punctuate: bool = True,
    ) -> None:
        """
        Initialize a click handler.

        Args:
            level: The minimum level of records emitted by this handler.
            file: The stream to write to, or `None` for the stream chosen by `err`.
            err: Write to stderr instead of stdout when `file` is not given.
            color: Force or suppress styling, by default click strips styles when
                the stream is not a terminal.
            punctuate: Terminate messages with a period if they lack punctuation.
        """
        super().__init__(level)
        self._file = file
        self._err = err
        self._color = color
        self._punctuate = punctuate

    def emit(self, record: logging.LogRecord) -> None:
        msg = self.format(record)
        if self._punctuate and not msg.endswith(self._terminators):
            msg += "."
        click.echo(msg, file=self._file, err=self._err, color=self._color)


def get_script_logger(
    name: str,
    verbosity: int,
    handler: logging.Handler | None = None,
    log_format: str = DEFAULT_LOG_FORMAT,
) -> logging.Logger:
    """
    Configure a logger for a CLI command.

    Any handlers previously attached to the logger are replaced, so calling this
    repeatedly, e.g. in tests, does not duplicate output.

    Args:
        name: The logger name, usually the package name so that records of every
            `lnapath` module are captured.
        verbosity: A count of `-v` flags, 0 shows errors only and 3 or more shows
            debug output. Levels from `logging` are passed through as is.
        handler: The handler to attach, or `None` for a `ClickHandler`.
        log_format: Passed as `fmt` to `logging.Formatter`.

    Returns:
        The configured logger.

    Examples:
        >>> import logging
        >>> from lnapath.logging import get_script_logger
        >>> logger = get_script_logger("lnapath.doctest", 2, handler=logging.NullHandler())
        >>> logger.level == logging.INFO
        True
        >>> len(logger.handlers), logger.propagate
        (1, False)
    """
    logger = logging.getLogger(name)
    logger.setLevel(_get_logging_level(verbosity))
    for old_handler in list(logger.handlers):
        logger.removeHandler(old_handler)
    handler = ClickHandler() if handler is None else handler
    handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def log_path_result(
    logger: logging.Logger, result: LNAPathResult, model_name: str
) -> None:
    """
    Log the outcome of simulating a path.

    Successful paths are reported at info level with their final prevalence, failures
    at warning level with the failure kind and interval.
    """
    if isinstance(result, PathFailure):
        logger.warning("Simulating '%s' failed, %s", model_name, result)
        return
    logger.info(
        "Simulated '%s' over %u intervals, final prevalence %s",
        model_name,
        result.incidence.shape[0] - 1,
        result.prevalence[-1, 1:].round(3).tolist(),
    )


def _get_logging_level(verbosity: int) -> int:
    """
    Convert a verbosity count to a `logging` level.

    Args:
        verbosity: A non-negative count, or a level from `logging` returned as is.

    Returns:
        The corresponding level from `logging`.

    Raises:
        ValueError: If `verbosity` is negative.

    Examples:
        >>> [_get_logging_level(v) for v in range(5)]
        [40, 30, 20, 10, 10]
        >>> _get_logging_level(logging.CRITICAL)
        50
    """
    if verbosity < 0:
        raise ValueError(f"`verbosity` must be non-negative, was given '{verbosity}'.")
    if verbosity in (
        logging.DEBUG,
        logging.INFO,
        logging.WARNING,
        logging.ERROR,
        logging.CRITICAL,
    ):
        return verbosity
    return {0: logging.ERROR, 1: logging.WARNING, 2: logging.INFO}.get(
        verbosity, logging.DEBUG
    )
