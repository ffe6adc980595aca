"""
Release versions — YEAR.MONTH.ITERATION[-EXTRA].

Pure value algebra, no I/O:

  parse("2017.1.1-rc")         → Version(2017, 1, 1, "rc")
  str(Version(2017, 2, 0))     → "2017.2.0"
  Version(2017, 1, 1).increment_at(2017-02-xx) → 2017.2.0
  Version(2017, 2, 0).increment_at(2017-02-yy) → 2017.2.1
  Version(2017, 1, 1).increment_at(2016-12-xx) → Failure(REGRESSION)

Ordering ties on (year, month, iteration) are broken by `extra`: an empty
extra sorts first, and two different non-empty extras always compare LESS
from whichever side asks. That last rule is not antisymmetric and callers
must not rely on it for sorting.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import IntEnum

from railway import ErrorCode
from railway.result import Result


class Ordering(IntEnum):
    LESS = -1
    EQUAL = 0
    GREATER = 1


def _utc(now: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    return now.replace(tzinfo=UTC) if now.tzinfo is None else now.astimezone(UTC)


def _field(text: str, name: str, source: str) -> Result[int]:
    if not text or not (text.isascii() and text.isdigit()):
        return Result.failure(
            ErrorCode.MALFORMED_VERSION,
            f"invalid {name} {text!r} in version {source!r}",
        )
    return Result.success(int(text))


@dataclass(frozen=True, slots=True)
class Version:
    year: int
    month: int
    iteration: int
    extra: str = ""

    @staticmethod
    def parse(text: str) -> Result[Version]:
        """Parse a version string, failing MALFORMED_VERSION on anything non-canonical in shape."""
        parts = text.split(".")
        if len(parts) != 3:
            return Result.failure(
                ErrorCode.MALFORMED_VERSION,
                f"version {text!r} must have three dot-separated fields",
            )

        year_text, month_text, tail = parts
        iteration_text, _, extra = tail.partition("-")

        return _field(year_text, "year", text).flat_map(
            lambda year: _field(month_text, "month", text).flat_map(
                lambda month: _field(iteration_text, "iteration", text).map(
                    lambda iteration: Version(year, month, iteration, extra)
                )
            )
        )

    def __str__(self) -> str:
        base = f"{self.year:04d}.{self.month}.{self.iteration}"
        return f"{base}-{self.extra}" if self.extra else base

    def compare(self, other: Version) -> Ordering:
        for mine, theirs in (
            (self.year, other.year),
            (self.month, other.month),
            (self.iteration, other.iteration),
        ):
            if mine < theirs:
                return Ordering.LESS
            if mine > theirs:
                return Ordering.GREATER

        if self.extra == other.extra:
            return Ordering.EQUAL
        if not self.extra:
            return Ordering.LESS
        if not other.extra:
            return Ordering.GREATER
        return Ordering.LESS

    def increment_at(self, now: datetime) -> Result[Version]:
        """
        Next version for a release cut at `now`.

        A new year or month restarts the iteration at zero; within the same
        month the iteration is bumped. Going back in time fails REGRESSION.
        `extra` is carried over.
        """
        at = _utc(now)

        if at.year < self.year or (at.year == self.year and at.month < self.month):
            return Result.failure(
                ErrorCode.REGRESSION,
                f"cannot increment {self} at {at:%Y-%m}: time went backwards",
            )

        if at.year > self.year or at.month > self.month:
            return Result.success(replace(self, year=at.year, month=at.month, iteration=0))

        return Result.success(replace(self, iteration=self.iteration + 1))


def initial_version(now: datetime) -> Version:
    """First version of a bundle that has never been released: YEAR.MONTH.0."""
    at = _utc(now)
    return Version(at.year, at.month, 0)


def compare(a: Version, b: Version) -> Ordering:
    return a.compare(b)
