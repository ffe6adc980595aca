"""
Revocation ledger.

A revocation is keyed by SKI and therefore covers every stored certificate
sharing that key identifier, whatever its serial. The first revocation
recorded for a SKI is the one that counts.
"""

from __future__ import annotations

import structlog
from railway import ErrorCode
from railway.result import Failure, Result, Success

from cert_trust.domain.models import Revocation
from cert_trust.domain.ports import TrustSession
from cert_trust.domain.store import ensure

log = structlog.get_logger()


def is_revoked(session: TrustSession, ski: str, as_of: int) -> Result[bool]:
    """True iff a revocation for `ski` took effect at or before `as_of`."""
    match session.revocations.select(ski):
        case Success(revocation):
            return Result.success(revocation.revoked_at <= as_of)
        case Failure(err) if err.code is ErrorCode.NOT_FOUND:
            return Result.success(False)
        case Failure(err):
            return Result.failure_from(err)
    raise TypeError("unreachable")  # pragma: no cover


def revoke(
    session: TrustSession,
    ski: str,
    mechanism: str,
    reason: str,
    at: int,
) -> Result[bool]:
    """
    Record that certificates with `ski` are revoked as of `at`.

    Fails NOT_FOUND when no stored certificate has that SKI. Returns False,
    leaving the existing record alone, when the SKI is already revoked.
    """
    revocation = Revocation(ski=ski, revoked_at=at, mechanism=mechanism, reason=reason)

    return (
        session.certificates_by_ski(ski)
        .ensure(
            lambda certs: len(certs) > 0,
            ErrorCode.NOT_FOUND,
            f"no certificate with SKI {ski} is stored",
        )
        .flat_map(lambda _: ensure(session.revocations, revocation))
        .peek(
            lambda inserted: log.info(
                "revocation.recorded" if inserted else "revocation.already_present",
                ski=ski,
                mechanism=mechanism,
                reason=reason,
                revoked_at=at,
            )
        )
    )
