"""
Failure description — structured error information for the failure track.

Every failure carries an ErrorCode, a human-readable message, the exception
that caused it (when one was caught at an adapter boundary) and the time it
was recorded. Callers branch on the code, never on the message text.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique


@unique
class ErrorCode(Enum):
    """
    Error codes for the trust store failure track.

    Domain codes describe expected outcomes of store and release operations;
    infrastructure codes describe things that went wrong around them.
    """

    # --- Domain outcomes ---
    NOT_FOUND = "NOT_FOUND"
    """Entity absent. Expected during ensure's select step."""

    CONFLICT = "CONFLICT"
    """Unique-constraint violation on insert (duplicate import or racing writer)."""

    MALFORMED_VERSION = "MALFORMED_VERSION"
    """Release identifier does not match YEAR.MONTH.ITERATION[-EXTRA]."""

    REGRESSION = "REGRESSION"
    """Version increment or release roll would move backward in time."""

    INVALID_BUNDLE = "INVALID_BUNDLE"
    """Bundle name outside {ca, int}."""

    UNKNOWN_RELEASE = "UNKNOWN_RELEASE"
    """Referenced release does not exist."""

    NO_PRIOR_RELEASE = "NO_PRIOR_RELEASE"
    """No release exists before the one being rolled or queried."""

    UNSUPPORTED_KEY_KIND = "UNSUPPORTED_KEY_KIND"
    """Public key type has no defined key identifier derivation."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    """Malformed input: unparseable PEM, bad search query, bad duration."""

    # --- Infrastructure ---
    DATABASE_ERROR = "DATABASE_ERROR"
    """Database connectivity or query failure."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    """System misconfiguration."""

    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    """HTTP fetch of a published bundle failed."""

    TECHNICAL_ERROR = "TECHNICAL_ERROR"
    """Unexpected exception escaping a computation."""

    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    """Unclassified failure."""


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor.

    >>> desc = FailureDescription(ErrorCode.UNKNOWN_RELEASE, "release 2017.1.0 does not exist")
    >>> desc.code
    <ErrorCode.UNKNOWN_RELEASE: 'UNKNOWN_RELEASE'>
    """

    code: ErrorCode
    message: str
    exception: BaseException | None = field(default=None, repr=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def full_stack_trace(self) -> str:
        """Message followed by the formatted exception chain, if any."""
        if self.exception is None:
            return self.message
        tb = "".join(
            traceback.format_exception(
                type(self.exception), self.exception, self.exception.__traceback__
            )
        )
        return f"{self.message}\n{tb}"

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"
