"""Logging for ojtree: a STAGE level for pipeline progress and an opt-in stderr handler.

The package logger is disabled on import. `enable_logging` turns it on and
returns a handle; logging is disabled again once the last handle is closed.
"""

from __future__ import annotations

import contextlib
import sys
import warnings
from typing import TYPE_CHECKING, ClassVar, Final, Literal, TypeAlias

from loguru import logger

if TYPE_CHECKING:
    from types import TracebackType

    from loguru import Record

PACKAGE_NAME: Final[str] = __name__.split(".")[0]

# One record per pipeline stage, between INFO (20) and WARNING (30).
STAGE_LEVEL: Final[str] = "STAGE"
STAGE_LEVEL_NUMBER: Final[int] = 25

LogLevel: TypeAlias = Literal["TRACE", "DEBUG", "INFO", "STAGE", "WARNING", "ERROR", "CRITICAL"]
LogFormat: TypeAlias = Literal["short", "full"]

_LOCATIONS: Final[dict[str, str]] = {
    "short": "<cyan>{function}</cyan>",
    "full": "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan>",
}


def _register_stage_level() -> None:
    """Register the STAGE level, warning if it already exists with another number."""
    try:
        existing_level = logger.level(STAGE_LEVEL)
    except ValueError:
        logger.level(STAGE_LEVEL, no=STAGE_LEVEL_NUMBER, icon="🍊")
    else:
        if existing_level.no != STAGE_LEVEL_NUMBER:
            msg = (
                f"STAGE level already registered with numeric value {existing_level.no}, "
                f"expected {STAGE_LEVEL_NUMBER}"
            )
            warnings.warn(msg, stacklevel=2)


_register_stage_level()


class LoggingHandle:
    """One stderr handler added by `enable_logging`.

    Use it as a context manager or call `disable()`; both are idempotent.

    Examples:
        >>> with enable_logging(level="INFO"):  # doctest: +SKIP
        ...     report = run_analysis()
    """

    _active_ids: ClassVar[set[int]] = set()

    def __init__(self, handler_id: int) -> None:
        self.handler_id: int | None = handler_id
        LoggingHandle._active_ids.add(handler_id)

    def disable(self) -> None:
        """Remove this handler; the last handle out disables the package logger."""
        if self.handler_id is None:
            return
        LoggingHandle._active_ids.discard(self.handler_id)
        with contextlib.suppress(ValueError):
            logger.remove(self.handler_id)
        self.handler_id = None
        if not LoggingHandle._active_ids:
            logger.disable(PACKAGE_NAME)

    def __enter__(self) -> LoggingHandle:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.disable()


def enable_logging(
    *,
    level: LogLevel = STAGE_LEVEL,
    log_format: LogFormat = "short",
) -> LoggingHandle:
    """Write ojtree records to stderr.

    Each line ends with the record's keyword context, e.g.
    ``[3/9] Partitioning | train_fraction=0.7 seed=123``.

    Args:
        level (LogLevel): Minimum level. "STAGE" (default) prints one line per
            pipeline stage; "INFO" adds partition sizes, tree sizes and the
            tuning selection; "DEBUG" adds per-candidate CV scores.
        log_format (LogFormat): "short" names the function; "full" names
            module:function:line.

    Returns:
        LoggingHandle: Handle that removes the handler again.
    """
    logger.enable(PACKAGE_NAME)
    location = _LOCATIONS[log_format]

    def _format(record: Record) -> str:
        context = " ".join(f"{key}={{extra[{key}]}}" for key in record["extra"])
        return (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "  # noqa: RUF027 - loguru format string
            f"{location} - <level>{{message}}</level>"
            + (f" | {context}" if context else "")
            + "\n{exception}"
        )

    handler_id = logger.add(sys.stderr, level=level, filter=_is_ojtree_record, format=_format)
    return LoggingHandle(handler_id)


def _is_ojtree_record(record: Record) -> bool:
    name = record["name"]
    return name is not None and name.startswith(PACKAGE_NAME)
