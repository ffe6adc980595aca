"""
Railway-Oriented Programming (ROP) for the trust store.

Explicit, composable error handling: operations return Result values and
failures carry an ErrorCode from the trust-domain taxonomy.

    from railway import ErrorCode, Result

    def parse_bundle(name: str) -> Result[str]:
        if name not in ("ca", "int"):
            return Result.failure(ErrorCode.INVALID_BUNDLE, f"invalid bundle {name!r}")
        return Result.success(name)
"""

from railway.assertions import ResultAssertions
from railway.execution import (
    ExecutionContext,
    LoggingExecutionContext,
    NoOpExecutionContext,
)
from railway.failure import ErrorCode, FailureDescription
from railway.result import Failure, Result, Success

__all__ = [
    "Result",
    "Success",
    "Failure",
    "ErrorCode",
    "FailureDescription",
    "ExecutionContext",
    "NoOpExecutionContext",
    "LoggingExecutionContext",
    "ResultAssertions",
]

__version__ = "1.1.0"
