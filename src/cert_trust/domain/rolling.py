"""
Release roll engine — carry a bundle forward from one release to the next.

Four stages, all inside the caller's single transaction:

  resolve(source, target)
    → collect(source certificates, oldest not_before first)
      → filter(each certificate against the target's effective time)
        → commit(ensure a membership row for each survivor)

Filtering rules, first match wins, with
effective = target.released_at + window:

  1. revoked at or before `effective`   → revoked
  2. not_after <= effective             → expired
  3. not_before > target.released_at    → not-yet-valid
  4. otherwise                          → included

Any failure aborts the stage chain; the enclosing TrustStore.run then rolls
the transaction back so no partially rolled release is ever visible.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from railway import ErrorCode
from railway.result import Result

from cert_trust.domain.models import (
    Bundle,
    Certificate,
    CertificateRelease,
    Exclusion,
    ExclusionReason,
    ExpiryReport,
    Release,
    RollReport,
)
from cert_trust.domain.ports import TrustSession
from cert_trust.domain.releases import (
    ensure_release,
    fetch_release,
    latest_release,
    new_release,
    next_version,
    previous_release,
)
from cert_trust.domain.revocation import is_revoked
from cert_trust.domain.store import ensure

log = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class Verdict:
    """Outcome of filtering one certificate. `reason` is None for survivors."""

    certificate: Certificate
    reason: ExclusionReason | None = None

    @property
    def included(self) -> bool:
        return self.reason is None


# ─────────────────────── Resolve ───────────────────────


def _resolve_explicit(
    session: TrustSession, bundle: Bundle, version: str
) -> Result[tuple[Release, Release]]:
    return fetch_release(session, bundle, version).flat_map(
        lambda target: previous_release(session, target).map(lambda source: (source, target))
    )


def _resolve_next(
    session: TrustSession, bundle: Bundle, now: int
) -> Result[tuple[Release, Release]]:
    return latest_release(session, bundle).flat_map(
        lambda source: next_version(source, now)
        .flat_map(lambda version: new_release(bundle, version, now))
        .flat_map(lambda target: ensure_release(session, target))
        .map(lambda target: (source, target))
    )


def resolve(
    session: TrustSession, bundle: Bundle, version: str | None, now: int
) -> Result[tuple[Release, Release]]:
    """
    Pick the (source, target) pair for a roll.

    With `version`, the target must already exist and the source is the
    release before it. Without, the source is the latest release and the
    target is its increment at `now`, created if needed.
    """
    resolved = (
        _resolve_explicit(session, bundle, version)
        if version is not None
        else _resolve_next(session, bundle, now)
    )
    return resolved.ensure(
        lambda pair: pair[1].released_at >= pair[0].released_at,
        ErrorCode.REGRESSION,
        f"target {bundle.value} release predates its source",
    )


# ─────────────────────── Filter ───────────────────────


def classify(
    session: TrustSession, certificate: Certificate, effective: int, valid_at: int
) -> Result[Verdict]:
    """
    Decide whether `certificate` survives into a release.

    `effective` is the instant revocation and expiry are judged at;
    `valid_at` is the instant the certificate must already be valid at.
    """

    def _judge(revoked: bool) -> Verdict:
        if revoked:
            return Verdict(certificate, ExclusionReason.REVOKED)
        if certificate.not_after <= effective:
            return Verdict(certificate, ExclusionReason.EXPIRED)
        if certificate.not_before > valid_at:
            return Verdict(certificate, ExclusionReason.NOT_YET_VALID)
        return Verdict(certificate)

    return is_revoked(session, certificate.ski, effective).map(_judge)


def _log_exclusion(target: Release, verdict: Verdict) -> None:
    cert = verdict.certificate
    log.info(
        "roll.excluded",
        bundle=target.bundle.value,
        release=target.version,
        reason=str(verdict.reason),
        ski=cert.ski,
        serial=str(cert.serial_number),
        subject=cert.subject(),
    )


# ─────────────────────── Commit ───────────────────────


def _commit(session: TrustSession, target: Release, verdict: Verdict) -> Result[Verdict]:
    if not verdict.included:
        _log_exclusion(target, verdict)
        return Result.success(verdict)
    return ensure(session.memberships, CertificateRelease.of(verdict.certificate, target)).map(
        lambda _: verdict
    )


def _report(source: Release, target: Release, verdicts: list[Verdict]) -> RollReport:
    return RollReport(
        source=source,
        target=target,
        included=[v.certificate for v in verdicts if v.included],
        excluded=[
            Exclusion(v.certificate, v.reason) for v in verdicts if v.reason is not None
        ],
    )


def copy_certificates(
    session: TrustSession, source: Release, target: Release, window: int = 0
) -> Result[RollReport]:
    """Copy every surviving certificate of `source` into `target`."""
    effective = target.released_at + window

    return (
        session.release_certificates(source)
        .flat_map(
            lambda certs: Result.traverse(
                certs,
                lambda cert: classify(session, cert, effective, target.released_at).flat_map(
                    lambda verdict: _commit(session, target, verdict)
                ),
            )
        )
        .map(lambda verdicts: _report(source, target, verdicts))
        .peek(
            lambda report: log.info(
                "roll.completed",
                bundle=target.bundle.value,
                source=source.version,
                target=target.version,
                rolled=report.included_count,
                skipped=report.skipped_count,
            )
        )
    )


def roll(
    session: TrustSession,
    bundle: Bundle,
    version: str | None,
    now: int,
    window: int = 0,
) -> Result[RollReport]:
    """
    Roll a release forward.

    `window` (seconds) widens the revocation and expiry check so that
    certificates about to lapse shortly after release are dropped too.
    """
    return resolve(session, bundle, version, now).flat_map(
        lambda pair: copy_certificates(session, pair[0], pair[1], window)
    )


# ─────────────────────── Expiry report ───────────────────────


def expiring(
    session: TrustSession, release: Release, window: int, now: int
) -> Result[ExpiryReport]:
    """
    Certificates of `release` that a roll at `now + window` would drop.

    Read-only: nothing is written.
    """
    as_of = now + window

    return (
        session.release_certificates(release)
        .flat_map(
            lambda certs: Result.traverse(
                certs,
                lambda cert: classify(session, cert, as_of, release.released_at),
            )
        )
        .map(
            lambda verdicts: ExpiryReport(
                release=release,
                as_of=as_of,
                excluded=[
                    Exclusion(v.certificate, v.reason)
                    for v in verdicts
                    if v.reason is not None
                ],
            )
        )
    )
