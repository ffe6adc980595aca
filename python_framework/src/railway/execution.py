"""
Execution contexts — keep WHAT a computation does apart from HOW it is run.

A pure Result-returning computation is handed to a context, which decides
what wraps it: nothing (NoOpExecutionContext) or timing and outcome logging
(LoggingExecutionContext). Contexts nest by passing one as another's inner.

    ctx = LoggingExecutionContext(operation="BundleScan")
    result = ctx.execute(lambda: scan(fetcher, state))
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol, TypeVar, runtime_checkable

from railway.failure import ErrorCode, FailureDescription
from railway.result import Failure, Result

T = TypeVar("T")
logger = logging.getLogger("railway.execution")


@runtime_checkable
class ExecutionContext(Protocol):
    """Anything with execute(computation) -> Result is an execution context."""

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]: ...


class NoOpExecutionContext:
    """Runs the computation as-is. Used as the default inner context and in tests."""

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        return computation()


class LoggingExecutionContext:
    """
    Logs start, duration and outcome of a computation.

    An exception escaping the computation is logged and converted into a
    TECHNICAL_ERROR failure, so callers always get a Result back.
    """

    def __init__(
        self,
        inner: ExecutionContext | None = None,
        operation: str = "unknown",
        log_level: int = logging.INFO,
    ) -> None:
        self._inner = inner or NoOpExecutionContext()
        self._operation = operation
        self._log_level = log_level

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        logger.log(self._log_level, "[%s] Starting execution", self._operation)
        start = time.monotonic()

        try:
            result = self._inner.execute(computation)
        except Exception as e:
            elapsed = time.monotonic() - start
            logger.error(
                "[%s] Execution failed after %.3fs: %s",
                self._operation,
                elapsed,
                e,
            )
            return Failure(
                FailureDescription(ErrorCode.TECHNICAL_ERROR, f"Execution failed: {e}", e)
            )

        elapsed = time.monotonic() - start
        state = "SUCCESS" if result.is_success() else "FAILURE"
        logger.log(
            self._log_level,
            "[%s] Completed in %.3fs (%s)",
            self._operation,
            elapsed,
            state,
        )
        return result
