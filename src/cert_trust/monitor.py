"""
Published-bundle monitor — watch the live trust bundles for upcoming expiry.

The monitor never touches the database. On each scan it downloads the
published roots and intermediates, and records every certificate whose
not_after falls on or before now + window:

  fetch(bundle) → load_certificates(pem) → keep not_after <= cutoff → MonitorState

Scheduled scans (see cert_trust.scheduler) retry each bundle on its own;
the ASGI app's /trigger endpoint scans both bundles once.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog
from cryptography import x509
from railway.result import Result

from cert_trust.adapters.pem import load_certificates
from cert_trust.domain.identity import extract_identity
from cert_trust.domain.models import Bundle, ExpiringCertificate
from cert_trust.domain.ports import BundleFetcher

log = structlog.get_logger()


def _expiring(bundle: Bundle, cert: x509.Certificate) -> Result[ExpiringCertificate]:
    return extract_identity(cert).map(
        lambda identity: ExpiringCertificate(
            bundle=bundle,
            ski=identity.ski,
            serial=str(cert.serial_number),
            subject=cert.subject.rfc4514_string(),
            not_after=int(cert.not_valid_after_utc.timestamp()),
        )
    )


def scan_bundle(
    fetcher: BundleFetcher, bundle: Bundle, window: int, now: int
) -> Result[list[ExpiringCertificate]]:
    """Certificates in the published `bundle` that expire by `now + window`."""
    cutoff = now + window

    def _select(certs: list[x509.Certificate]) -> Result[list[ExpiringCertificate]]:
        log.info("monitor.loaded", bundle=bundle.value, certificates=len(certs))
        due = [c for c in certs if int(c.not_valid_after_utc.timestamp()) <= cutoff]
        return Result.traverse(due, lambda c: _expiring(bundle, c))

    return fetcher.fetch(bundle).flat_map(load_certificates).flat_map(_select)


@dataclass(frozen=True, slots=True)
class BundleScan:
    bundle: Bundle
    scanned_at: int
    expiring: list[ExpiringCertificate] = field(default_factory=list)


class MonitorState:
    """Last scan per bundle. Written by the scheduler thread, read by HTTP handlers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._scans: dict[Bundle, BundleScan] = {}

    def record(self, scan: BundleScan) -> None:
        with self._lock:
            self._scans[scan.bundle] = scan

    def latest(self, bundle: Bundle) -> BundleScan | None:
        with self._lock:
            return self._scans.get(bundle)

    def snapshot(self) -> dict[Bundle, BundleScan]:
        with self._lock:
            return dict(self._scans)


def scan_and_record(
    fetcher: BundleFetcher,
    state: MonitorState,
    bundle: Bundle,
    window: int,
    clock: Callable[[], float] = time.time,
) -> Result[int]:
    """
    Scan one published bundle and record it in `state` on success.

    Returns the number of expiring certificates. A failure leaves the
    bundle's previous scan in place.
    """
    now = int(clock())
    return (
        scan_bundle(fetcher, bundle, window, now)
        .peek(lambda expiring: state.record(BundleScan(bundle, now, expiring)))
        .peek(
            lambda expiring: log.info(
                "monitor.scanned", bundle=bundle.value, expiring=len(expiring)
            )
        )
        .peek_failure(
            lambda err: log.error("monitor.scan_failed", bundle=bundle.value, failure=str(err))
        )
        .map(len)
    )


def combine_scans(results: dict[Bundle, Result[int]]) -> Result[int]:
    """
    Total expiring count across bundles scanned independently.

    Any failed bundle fails the whole; the failure keeps the first bundle's
    code and names every bundle that failed.
    """
    failed = [(bundle, r.error()) for bundle, r in results.items() if r.is_failure()]
    if failed:
        first = failed[0][1]
        message = "; ".join(f"{bundle.value}: {err.message}" for bundle, err in failed)
        return Result.failure(first.code, message, first.exception)
    return Result.all_of(results.values()).map(sum)


def run_scan(
    fetcher: BundleFetcher,
    state: MonitorState,
    window: int,
    clock: Callable[[], float] = time.time,
) -> Result[int]:
    """
    Scan roots and intermediates once each.

    Both bundles are always attempted and each success is recorded, so a
    root outage never leaves the intermediate scan stale.
    """
    return combine_scans(
        {bundle: scan_and_record(fetcher, state, bundle, window, clock) for bundle in Bundle}
    )
