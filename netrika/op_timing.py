from __future__ import annotations

from contextlib import contextmanager
import contextvars
from dataclasses import dataclass
import functools
import logging
import time
from typing import Callable, Generator, Optional, TypeVar

DEFAULT_LOGGER_NAME = "uvicorn.error"
logger = logging.getLogger(DEFAULT_LOGGER_NAME)

T = TypeVar("T")

_CURRENT_TIMING: contextvars.ContextVar["OperationTiming | None"] = contextvars.ContextVar(
    "operation_timing", default=None
)


@dataclass
class OperationTiming:
    operation: str
    subject: str
    start: float
    sql_seconds: float = 0.0
    sql_statements: int = 0

    def add_sql(self, seconds: float) -> None:
        self.sql_seconds += seconds
        self.sql_statements += 1


def has_active_timing() -> bool:
    return _CURRENT_TIMING.get() is not None


def record_sql_time(seconds: float) -> None:
    timing = _CURRENT_TIMING.get()
    if timing is None:
        return
    timing.add_sql(seconds)


@contextmanager
def operation_timing(
    operation: str, subject: str = "", log: Optional[logging.Logger] = None
) -> Generator[OperationTiming, None, None]:
    start = time.perf_counter()
    timing = OperationTiming(operation=operation, subject=subject, start=start)
    token = _CURRENT_TIMING.set(timing)
    try:
        yield timing
    finally:
        total = time.perf_counter() - start
        sql_seconds = timing.sql_seconds
        non_sql = max(total - sql_seconds, 0.0)
        resolved_log = log or logger
        resolved_log.info(
            "workflow.timing op=%s subject=%s total_ms=%.2f sql_ms=%.2f non_sql_ms=%.2f statements=%d",
            operation,
            subject or "-",
            total * 1000,
            sql_seconds * 1000,
            non_sql * 1000,
            timing.sql_statements,
        )
        _CURRENT_TIMING.reset(token)


def timed_operation(
    operation: str,
    func: Callable[..., T] | None = None,
    log: Optional[logging.Logger] = None,
):
    """
    Wrap a workflow entry point so every call logs its total and SQL time.
    Usable as ``timed_operation("approve", fn)`` or as ``@timed_operation("approve")``.
    """

    def _decorate(inner: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(inner)
        def _wrapped(*args, **kwargs) -> T:
            subject = kwargs.get("edit_id") or kwargs.get("entity_id") or (args[0] if args else "")
            with operation_timing(operation, str(subject), log):
                return inner(*args, **kwargs)

        return _wrapped

    if func is not None:
        return _decorate(func)
    return _decorate
