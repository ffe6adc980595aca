"""
Domain models — immutable entities of the trust store and the reports built from them.

Every persisted entity is a frozen dataclass with a `natural_key` property:
the tuple (or scalar) the database enforces uniqueness on. Ensuring an entity
means selecting by that key and inserting only when nothing is found.

Times are epoch seconds (UTC). Key identifiers are lowercase hex without
separators. Serial numbers are big-endian bytes (see domain.identity).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, StrEnum

from cryptography import x509
from railway import ErrorCode
from railway.result import Result


class Bundle(Enum):
    """
    The two certificate categories a release can belong to.

    Each member maps to fixed table identifiers; there is no string
    substitution of user input into SQL.
    """

    CA = "ca"
    INTERMEDIATE = "int"

    @property
    def release_table(self) -> str:
        return _RELEASE_TABLES[self]

    @property
    def membership_table(self) -> str:
        return _MEMBERSHIP_TABLES[self]

    @staticmethod
    def parse(name: str) -> Result[Bundle]:
        """Map a bundle name ('ca' or 'int') to its member, failing INVALID_BUNDLE otherwise."""
        for bundle in Bundle:
            if bundle.value == name:
                return Result.success(bundle)
        return Result.failure(
            ErrorCode.INVALID_BUNDLE,
            f"invalid bundle {name!r} (valid bundles are ca|int)",
        )


_RELEASE_TABLES = {Bundle.CA: "root_releases", Bundle.INTERMEDIATE: "intermediate_releases"}
_MEMBERSHIP_TABLES = {Bundle.CA: "roots", Bundle.INTERMEDIATE: "intermediates"}


@dataclass(frozen=True, slots=True)
class Certificate:
    """
    A trusted root or intermediate certificate.

    Maps to the `certificates` table, unique on (ski, serial).
    `raw` holds the DER encoding the entity was built from.
    """

    ski: str
    aki: str
    serial: bytes
    not_before: int
    not_after: int
    raw: bytes = field(repr=False)

    @property
    def natural_key(self) -> tuple[str, bytes]:
        return (self.ski, self.serial)

    @property
    def serial_number(self) -> int:
        return int.from_bytes(self.serial, "big")

    def to_x509(self) -> x509.Certificate:
        return x509.load_der_x509_certificate(self.raw)

    def subject(self) -> str:
        return self.to_x509().subject.rfc4514_string()

    def issuer(self) -> str:
        return self.to_x509().issuer.rfc4514_string()


@dataclass(frozen=True, slots=True)
class AuthorityInfoAccess:
    """Where to fetch the issuer of certificates whose AKI is `ski`. Maps to `aia`."""

    ski: str
    url: str

    @property
    def natural_key(self) -> str:
        return self.ski


@dataclass(frozen=True, slots=True)
class Release:
    """
    A versioned snapshot of a bundle.

    Maps to `root_releases` or `intermediate_releases` depending on `bundle`.
    `released_at` is fixed when the release is first stored.
    """

    bundle: Bundle
    version: str
    released_at: int

    @property
    def natural_key(self) -> tuple[Bundle, str]:
        return (self.bundle, self.version)


@dataclass(frozen=True, slots=True)
class CertificateRelease:
    """Membership of a certificate in a release. Maps to `roots` or `intermediates`."""

    bundle: Bundle
    ski: str
    serial: bytes
    version: str

    @property
    def natural_key(self) -> tuple[Bundle, str, bytes, str]:
        return (self.bundle, self.ski, self.serial, self.version)

    @staticmethod
    def of(certificate: Certificate, release: Release) -> CertificateRelease:
        return CertificateRelease(
            bundle=release.bundle,
            ski=certificate.ski,
            serial=certificate.serial,
            version=release.version,
        )


@dataclass(frozen=True, slots=True)
class Revocation:
    """
    Revocation of every certificate sharing `ski`. Maps to `revocations`.

    Only one revocation per SKI is stored; the first one recorded wins.
    """

    ski: str
    revoked_at: int
    mechanism: str
    reason: str

    @property
    def natural_key(self) -> str:
        return self.ski


# ─────────────────────── Reports ───────────────────────


class ExclusionReason(StrEnum):
    """Why a certificate was left out of a release, in order of precedence."""

    REVOKED = "revoked"
    EXPIRED = "expired"
    NOT_YET_VALID = "not-yet-valid"


@dataclass(frozen=True, slots=True)
class Exclusion:
    certificate: Certificate
    reason: ExclusionReason


@dataclass(frozen=True, slots=True)
class RollReport:
    """Outcome of rolling `source` forward into `target`."""

    source: Release
    target: Release
    included: list[Certificate] = field(default_factory=list)
    excluded: list[Exclusion] = field(default_factory=list)

    @property
    def included_count(self) -> int:
        return len(self.included)

    @property
    def skipped_count(self) -> int:
        return len(self.excluded)


@dataclass(frozen=True, slots=True)
class ExpiryReport:
    """Certificates of `release` that would not survive a roll at `as_of`."""

    release: Release
    as_of: int
    excluded: list[Exclusion] = field(default_factory=list)

    def count(self, reason: ExclusionReason) -> int:
        return sum(1 for exclusion in self.excluded if exclusion.reason is reason)


@dataclass(frozen=True, slots=True)
class ImportReport:
    """Outcome of importing a batch of certificates."""

    imported: list[Certificate] = field(default_factory=list)
    already_present: list[Certificate] = field(default_factory=list)
    release: Release | None = None

    @property
    def total(self) -> int:
        return len(self.imported) + len(self.already_present)


@dataclass(frozen=True, slots=True)
class ExpiringCertificate:
    """A certificate in a published bundle that lapses within the monitor window."""

    bundle: Bundle
    ski: str
    serial: str
    subject: str
    not_after: int
