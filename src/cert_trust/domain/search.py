"""
Certificate search — filter stored certificates with "type:regexp" terms.

Supported types: ski, aki, subject, issuer, release, bundle. Expressions
are unanchored (re.search), so `subject:O=Example` matches any subject
containing that attribute. A certificate is returned only if it matches
every term.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field

from railway import ErrorCode
from railway.result import Result

from cert_trust.domain.models import Certificate, Release
from cert_trust.domain.ports import TrustSession


@dataclass(frozen=True, slots=True)
class CertificateMetadata:
    """A stored certificate with its names rendered and the releases it belongs to."""

    ski: str
    aki: str
    serial: int
    subject: str
    issuer: str
    not_before: int
    not_after: int
    releases: list[Release] = field(default_factory=list)

    @staticmethod
    def of(certificate: Certificate, releases: list[Release]) -> CertificateMetadata:
        return CertificateMetadata(
            ski=certificate.ski,
            aki=certificate.aki,
            serial=certificate.serial_number,
            subject=certificate.subject(),
            issuer=certificate.issuer(),
            not_before=certificate.not_before,
            not_after=certificate.not_after,
            releases=releases,
        )


type CertificateFilter = Callable[[CertificateMetadata], bool]


_FIELDS: dict[str, Callable[[CertificateMetadata], list[str]]] = {
    "ski": lambda cm: [cm.ski],
    "aki": lambda cm: [cm.aki],
    "subject": lambda cm: [cm.subject],
    "issuer": lambda cm: [cm.issuer],
    "release": lambda cm: [r.version for r in cm.releases],
    "bundle": lambda cm: [r.bundle.value for r in cm.releases],
}


def parse_query(query: str) -> Result[CertificateFilter]:
    """Turn "type:regexp" into a predicate, failing VALIDATION_ERROR on bad input."""
    kind, sep, expression = query.partition(":")
    if not sep:
        return Result.failure(
            ErrorCode.VALIDATION_ERROR,
            f"expected a query in the form type:regexp, got {query!r}",
        )

    values_of = _FIELDS.get(kind)
    if values_of is None:
        return Result.failure(
            ErrorCode.VALIDATION_ERROR,
            f"unknown filter type {kind!r} (valid types are {', '.join(_FIELDS)})",
        )

    try:
        pattern = re.compile(expression)
    except re.error as e:
        return Result.failure(
            ErrorCode.VALIDATION_ERROR, f"invalid regular expression {expression!r}: {e}", e
        )

    return Result.success(lambda cm: any(pattern.search(v) for v in values_of(cm)))


def load_metadata(session: TrustSession, certificate: Certificate) -> Result[CertificateMetadata]:
    return session.certificate_releases(certificate).map(
        lambda releases: CertificateMetadata.of(certificate, releases)
    )


def search(session: TrustSession, terms: list[str]) -> Result[list[CertificateMetadata]]:
    """All stored certificates matching every term, in storage order."""
    return Result.traverse(terms, parse_query).flat_map(
        lambda filters: session.all_certificates()
        .flat_map(lambda certs: Result.traverse(certs, lambda c: load_metadata(session, c)))
        .map(lambda found: [cm for cm in found if all(f(cm) for f in filters)])
    )
