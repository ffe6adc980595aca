"""
Trust service — the application operations, one transaction each.

Every public method hands a unit of work to TrustStore.run, so each call
commits as a whole or not at all. The clock is injected so that release
timestamps and revocation checks can be pinned in tests.

This layer composes the domain functions; it holds no state beyond the
store and the clock.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence

import structlog
from cryptography import x509
from railway.result import Result

from cert_trust.domain.identity import new_aia, new_certificate
from cert_trust.domain.models import (
    Bundle,
    Certificate,
    CertificateRelease,
    ExpiryReport,
    ImportReport,
    Release,
    RollReport,
)
from cert_trust.domain.ports import TrustSession, TrustStore
from cert_trust.domain.releases import (
    collect_release,
    ensure_release,
    fetch_release,
    latest_release,
    new_release,
    previous_release,
    release_size,
)
from cert_trust.domain.releases import list_releases as _list_releases
from cert_trust.domain.releases import next_release as _next_release
from cert_trust.domain.revocation import is_revoked as _is_revoked
from cert_trust.domain.revocation import revoke as _revoke
from cert_trust.domain.rolling import expiring as _expiring
from cert_trust.domain.rolling import roll as _roll
from cert_trust.domain.search import CertificateMetadata
from cert_trust.domain.search import search as _search
from cert_trust.domain.store import ensure

log = structlog.get_logger()


def _release_or_latest(
    session: TrustSession, bundle: Bundle, version: str | None
) -> Result[Release]:
    if version is None:
        return latest_release(session, bundle)
    return fetch_release(session, bundle, version)


def _import_one(
    session: TrustSession, cert: x509.Certificate, release: Release | None
) -> Result[tuple[Certificate, bool]]:
    def _aia_and_membership(
        certificate: Certificate, inserted: bool
    ) -> Result[tuple[Certificate, bool]]:
        aia = new_aia(certificate)
        stored_aia = ensure(session.aia, aia) if aia is not None else Result.success(False)
        return stored_aia.flat_map(
            lambda _: ensure(session.memberships, CertificateRelease.of(certificate, release))
            if release is not None
            else Result.success(False)
        ).map(lambda _: (certificate, inserted))

    return new_certificate(cert).flat_map(
        lambda certificate: ensure(session.certificates, certificate)
        .peek(
            lambda inserted: log.info(
                "import.certificate",
                ski=certificate.ski,
                aki=certificate.aki,
                serial=str(certificate.serial_number),
                inserted=inserted,
            )
        )
        .flat_map(lambda inserted: _aia_and_membership(certificate, inserted))
    )


class TrustService:
    """Application operations over a TrustStore."""

    def __init__(self, store: TrustStore, clock: Callable[[], float] = time.time) -> None:
        self._store = store
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    # ─────────────────────── Writes ───────────────────────

    def import_certificates(
        self,
        bundle: Bundle,
        certs: Sequence[x509.Certificate],
        version: str | None = None,
    ) -> Result[ImportReport]:
        """
        Store certificates with their AIA records, optionally into a release.

        The release, when given, is ensured first and stamped with the
        current time if it is new.
        """
        now = self._now()

        def _all(session: TrustSession, release: Release | None) -> Result[ImportReport]:
            return Result.traverse(certs, lambda c: _import_one(session, c, release)).map(
                lambda outcomes: ImportReport(
                    imported=[c for c, inserted in outcomes if inserted],
                    already_present=[c for c, inserted in outcomes if not inserted],
                    release=release,
                )
            )

        def _work(session: TrustSession) -> Result[ImportReport]:
            if version is None:
                return _all(session, None)
            return (
                new_release(bundle, version, now)
                .flat_map(lambda release: ensure_release(session, release))
                .flat_map(lambda release: _all(session, release))
            )

        return self._store.run(_work)

    def next_release(self, bundle: Bundle) -> Result[Release]:
        now = self._now()
        return self._store.run(lambda session: _next_release(session, bundle, now))

    def roll(
        self, bundle: Bundle, version: str | None = None, window: int = 0
    ) -> Result[RollReport]:
        """Roll `version` (or a new release after the latest) forward; see domain.rolling."""
        now = self._now()
        return self._store.run(lambda session: _roll(session, bundle, version, now, window))

    def revoke(self, ski: str, mechanism: str, reason: str, at: int | None = None) -> Result[bool]:
        when = self._now() if at is None else at
        return self._store.run(lambda session: _revoke(session, ski, mechanism, reason, when))

    # ─────────────────────── Reads ───────────────────────

    def list_releases(self, bundle: Bundle) -> Result[list[Release]]:
        return self._store.run(lambda session: _list_releases(session, bundle))

    def latest_release(self, bundle: Bundle) -> Result[Release]:
        return self._store.run(lambda session: latest_release(session, bundle))

    def fetch_release(self, bundle: Bundle, version: str) -> Result[Release]:
        return self._store.run(lambda session: fetch_release(session, bundle, version))

    def previous_release(self, bundle: Bundle, version: str) -> Result[Release]:
        return self._store.run(
            lambda session: fetch_release(session, bundle, version).flat_map(
                lambda target: previous_release(session, target)
            )
        )

    def collect(self, bundle: Bundle, version: str | None = None) -> Result[list[Certificate]]:
        """Certificates of a release; the latest one when `version` is None."""
        return self._store.run(
            lambda session: _release_or_latest(session, bundle, version).flat_map(
                lambda release: collect_release(session, bundle, release.version)
            )
        )

    def release_size(self, bundle: Bundle, version: str | None = None) -> Result[int]:
        return self._store.run(
            lambda session: _release_or_latest(session, bundle, version).flat_map(
                lambda release: release_size(session, release)
            )
        )

    def certificates_by_ski(self, ski: str) -> Result[list[Certificate]]:
        return self._store.run(lambda session: session.certificates_by_ski(ski))

    def all_certificates(self) -> Result[list[Certificate]]:
        return self._store.run(lambda session: session.all_certificates())

    def certificate_releases(self, certificate: Certificate) -> Result[list[Release]]:
        return self._store.run(lambda session: session.certificate_releases(certificate))

    def search(self, terms: list[str]) -> Result[list[CertificateMetadata]]:
        return self._store.run(lambda session: _search(session, terms))

    def is_revoked(self, ski: str, as_of: int | None = None) -> Result[bool]:
        when = self._now() if as_of is None else as_of
        return self._store.run(lambda session: _is_revoked(session, ski, when))

    def expiring(
        self, bundle: Bundle, version: str | None = None, window: int = 30 * 24 * 60 * 60
    ) -> Result[ExpiryReport]:
        """Certificates of a release (latest by default) that lapse within `window`."""
        now = self._now()
        return self._store.run(
            lambda session: _release_or_latest(session, bundle, version).flat_map(
                lambda release: _expiring(session, release, window, now)
            )
        )
