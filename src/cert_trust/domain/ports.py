"""
Ports — Protocol-based interfaces for infrastructure adapters.

These define WHAT the trust engine needs (contracts) without specifying
HOW it's done (implementation). Following hexagonal architecture:

  Domain ← Ports (protocols) ← Adapters (implementations)

Each port is a Protocol (structural typing) so adapters satisfy
the contract simply by implementing the methods — no inheritance.

Storage is split in two levels:
  1. TrustStore    → owns transactions; runs a unit of work inside one
  2. TrustSession  → what the unit of work sees: five EntityTables plus
                     the read queries the release engine needs
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, TypeVar, runtime_checkable

from railway.result import Result

from cert_trust.domain.models import (
    AuthorityInfoAccess,
    Bundle,
    Certificate,
    CertificateRelease,
    Release,
    Revocation,
)

E = TypeVar("E")
K = TypeVar("K", contravariant=True)
T = TypeVar("T")


@runtime_checkable
class EntityTable(Protocol[E, K]):
    """
    Port: keyed access to one kind of persisted entity.

    select() fails NOT_FOUND when no row has the key.
    insert() fails CONFLICT when a row with the same key already exists.
    Rows are never updated or deleted through this interface.
    """

    def select(self, key: K) -> Result[E]: ...

    def insert(self, entity: E) -> Result[E]: ...


@runtime_checkable
class TrustSession(Protocol):
    """
    Port: one transaction's view of the trust store.

    Everything read or written through a session commits or rolls back together.
    """

    @property
    def certificates(self) -> EntityTable[Certificate, tuple[str, bytes]]: ...

    @property
    def aia(self) -> EntityTable[AuthorityInfoAccess, str]: ...

    @property
    def releases(self) -> EntityTable[Release, tuple[Bundle, str]]: ...

    @property
    def memberships(
        self,
    ) -> EntityTable[CertificateRelease, tuple[Bundle, str, bytes, str]]: ...

    @property
    def revocations(self) -> EntityTable[Revocation, str]: ...

    def list_releases(self, bundle: Bundle) -> Result[list[Release]]:
        """All releases of a bundle, newest released_at first."""
        ...

    def release_certificates(self, release: Release) -> Result[list[Certificate]]:
        """Certificates that are members of a release, oldest not_before first."""
        ...

    def count_release(self, release: Release) -> Result[int]: ...

    def certificates_by_ski(self, ski: str) -> Result[list[Certificate]]: ...

    def all_certificates(self) -> Result[list[Certificate]]: ...

    def certificate_releases(self, certificate: Certificate) -> Result[list[Release]]:
        """Every release, of either bundle, that contains the certificate."""
        ...


@runtime_checkable
class TrustStore(Protocol):
    """
    Port: run a unit of work inside a single transaction.

    The transaction commits when `work` returns a Success and rolls back
    when it returns a Failure or raises. Exceptions never escape; they come
    back as DATABASE_ERROR failures.
    """

    def run(self, work: Callable[[TrustSession], Result[T]]) -> Result[T]: ...


@runtime_checkable
class BundleFetcher(Protocol):
    """Port: download the currently published PEM bundle for a bundle kind."""

    def fetch(self, bundle: Bundle) -> Result[bytes]: ...
