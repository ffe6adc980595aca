"""
Integration tests for PsycopgTrustStore and its tables.

Tests run against a real PostgreSQL instance via testcontainers and check
the SQL mapping of every entity, the query ordering the domain relies on,
and commit/rollback of units of work.

Markers: @pytest.mark.integration — requires Docker + PostgreSQL.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

import psycopg
import pytest
from railway import ErrorCode, Result, ResultAssertions

from cert_trust.adapters.postgres import PsycopgTrustStore
from cert_trust.domain.identity import decode_serial
from cert_trust.domain.models import (
    AuthorityInfoAccess,
    Bundle,
    Certificate,
    CertificateRelease,
    Release,
    Revocation,
)
from cert_trust.domain.ports import TrustSession
from cert_trust.domain.store import ensure
from cert_trust.service import TrustService
from tests.conftest import DAY, FEB_2017, JAN_2017, make_certificate, make_entity

pytestmark = pytest.mark.integration


def _count(dsn: str, table: str) -> int:
    with psycopg.connect(dsn) as conn:
        row = conn.execute(f"SELECT count(*) FROM {table}").fetchone()  # noqa: S608
    assert row is not None
    return int(row[0])


@pytest.fixture()
def store(dsn: str) -> PsycopgTrustStore:
    return PsycopgTrustStore(dsn, backoff_seconds=0)


class TestSchema:
    def test_create_schema_is_repeatable(self, store: PsycopgTrustStore) -> None:
        ResultAssertions.assert_success_value(store.create_schema(), 7)
        ResultAssertions.assert_success_value(store.create_schema(), 7)


class TestTables:
    """Round trip each entity through select/insert."""

    def test_certificate(self, store: PsycopgTrustStore) -> None:
        cert = make_entity(aki=b"\x01\x02")

        def _work(session: TrustSession) -> Result[Certificate]:
            return session.certificates.insert(cert).flat_map(
                lambda _: session.certificates.select(cert.natural_key)
            )

        ResultAssertions.assert_success_value(store.run(_work), cert)

    def test_zero_and_empty_serials_are_distinct_rows(
        self, store: PsycopgTrustStore, dsn: str
    ) -> None:
        """
        GIVEN two certificates sharing a SKI, one with serial 0 (b"\\x00")
              and one with an empty serial
        WHEN both are ensured
        THEN both are inserted, and the zero serial reads back as 0.
        """
        zero = make_entity(serial=0)
        empty = replace(zero, serial=b"")

        def _work(session: TrustSession) -> Result[tuple[list[bool], Certificate]]:
            return Result.traverse(
                [zero, empty], lambda cert: ensure(session.certificates, cert)
            ).flat_map(
                lambda inserted: session.certificates.select((zero.ski, b"\x00")).map(
                    lambda stored: (inserted, stored)
                )
            )

        inserted, stored = ResultAssertions.assert_success(store.run(_work))

        assert inserted == [True, True]
        assert stored.serial == b"\x00"
        assert decode_serial(stored.serial) == 0
        assert _count(dsn, "certificates") == 2

    def test_missing_certificate_is_not_found(self, store: PsycopgTrustStore) -> None:
        result = store.run(lambda session: session.certificates.select(("ab", b"\x01")))
        ResultAssertions.assert_failure(result, ErrorCode.NOT_FOUND)

    def test_duplicate_insert_is_conflict(self, store: PsycopgTrustStore, dsn: str) -> None:
        """
        GIVEN a stored certificate
        WHEN the same certificate is inserted again (bypassing ensure)
        THEN every attempt hits CONFLICT and nothing extra is stored.
        """
        cert = make_entity()
        store.run(lambda session: session.certificates.insert(cert))

        result = store.run(lambda session: session.certificates.insert(cert))

        ResultAssertions.assert_failure(result, ErrorCode.CONFLICT)
        assert _count(dsn, "certificates") == 1

    def test_aia_and_revocation(self, store: PsycopgTrustStore) -> None:
        aia = AuthorityInfoAccess("0a0b", "http://ca.example.com/root.crt")
        revocation = Revocation("0a0b", JAN_2017, "CRL", "keyCompromise")

        def _work(session: TrustSession) -> Result[tuple[Any, Any]]:
            return (
                ensure(session.aia, aia)
                .flat_map(lambda _: ensure(session.revocations, revocation))
                .flat_map(lambda _: session.aia.select("0a0b"))
                .flat_map(
                    lambda stored_aia: session.revocations.select("0a0b").map(
                        lambda stored_rev: (stored_aia, stored_rev)
                    )
                )
            )

        ResultAssertions.assert_success_value(store.run(_work), (aia, revocation))

    @pytest.mark.parametrize("bundle", list(Bundle))
    def test_release_and_membership_per_bundle(
        self, store: PsycopgTrustStore, dsn: str, bundle: Bundle
    ) -> None:
        cert = make_entity()
        release = Release(bundle, "2017.1.0", JAN_2017)
        membership = CertificateRelease.of(cert, release)

        def _work(session: TrustSession) -> Result[CertificateRelease]:
            return (
                ensure(session.certificates, cert)
                .flat_map(lambda _: ensure(session.releases, release))
                .flat_map(lambda _: ensure(session.memberships, membership))
                .flat_map(lambda _: session.memberships.select(membership.natural_key))
            )

        ResultAssertions.assert_success_value(store.run(_work), membership)
        assert _count(dsn, bundle.release_table) == 1
        assert _count(dsn, bundle.membership_table) == 1
        other = next(b for b in Bundle if b is not bundle)
        assert _count(dsn, other.release_table) == 0


class TestQueries:
    """Verify query ordering matches what the domain expects."""

    def test_releases_newest_first_and_certificates_oldest_first(
        self, store: PsycopgTrustStore
    ) -> None:
        old = make_entity(not_before=JAN_2017 - 300 * DAY)
        new = make_entity(not_before=JAN_2017 - 3 * DAY)
        jan = Release(Bundle.CA, "2017.1.0", JAN_2017)
        feb = Release(Bundle.CA, "2017.2.0", FEB_2017)

        def _seed(session: TrustSession) -> Result[list[bool]]:
            return Result.traverse(
                [
                    (session.certificates, new),
                    (session.certificates, old),
                    (session.releases, jan),
                    (session.releases, feb),
                    (session.memberships, CertificateRelease.of(new, jan)),
                    (session.memberships, CertificateRelease.of(old, jan)),
                    (session.memberships, CertificateRelease.of(old, feb)),
                ],
                lambda pair: ensure(*pair),
            )

        ResultAssertions.assert_success(store.run(_seed))

        ResultAssertions.assert_success_value(
            store.run(lambda s: s.list_releases(Bundle.CA)), [feb, jan]
        )
        ResultAssertions.assert_success_value(
            store.run(lambda s: s.release_certificates(jan)), [old, new]
        )
        ResultAssertions.assert_success_value(store.run(lambda s: s.count_release(jan)), 2)
        ResultAssertions.assert_success_value(
            store.run(lambda s: s.certificate_releases(old)), [feb, jan]
        )
        ResultAssertions.assert_success_value(store.run(lambda s: s.all_certificates()), [old, new])
        ResultAssertions.assert_success_value(
            store.run(lambda s: s.certificates_by_ski(new.ski)), [new]
        )


class TestTransactions:
    def test_failure_rolls_back(self, store: PsycopgTrustStore, dsn: str) -> None:
        """
        GIVEN a unit of work that inserts a certificate then fails
        WHEN run
        THEN the failure is returned and the insert is rolled back.
        """
        cert = make_entity()

        def _work(session: TrustSession) -> Result[bool]:
            return ensure(session.certificates, cert).flat_map(
                lambda _: Result.failure(ErrorCode.UNKNOWN_RELEASE, "release 2017.9.0 does not exist")
            )

        ResultAssertions.assert_failure(store.run(_work), ErrorCode.UNKNOWN_RELEASE)
        assert _count(dsn, "certificates") == 0

    def test_exception_rolls_back(self, store: PsycopgTrustStore, dsn: str) -> None:
        cert = make_entity()

        def _work(session: TrustSession) -> Result[bool]:
            ensure(session.certificates, cert)
            raise RuntimeError("boom")

        ResultAssertions.assert_failure(store.run(_work), ErrorCode.DATABASE_ERROR)
        assert _count(dsn, "certificates") == 0

    def test_service_roll_commits(self, store: PsycopgTrustStore, dsn: str) -> None:
        TrustService(store, clock=lambda: float(JAN_2017)).import_certificates(
            Bundle.INTERMEDIATE, [make_certificate(), make_certificate()], version="2017.1.0"
        )

        report = ResultAssertions.assert_success(
            TrustService(store, clock=lambda: float(FEB_2017)).roll(Bundle.INTERMEDIATE)
        )

        assert report.included_count == 2
        assert _count(dsn, "intermediates") == 4
        assert _count(dsn, "intermediate_releases") == 2
