"""
PostgreSQL adapter — the trust store on psycopg (v3).

Adapter layer — implements the TrustStore, TrustSession and EntityTable
ports with raw parameterized SQL. No ORM.

Table mapping:
  Certificate          → certificates
  AuthorityInfoAccess  → aia
  Revocation           → revocations
  Release              → root_releases | intermediate_releases
  CertificateRelease   → roots | intermediates

Bundle-specific table names come from the closed Bundle enum and are
composed with psycopg.sql.Identifier, never from user input.

Transactions:
  1. BEGIN
  2. run the unit of work against a PsycopgTrustSession
  3. COMMIT on Success, ROLLBACK on Failure or exception

A CONFLICT (unique violation from a concurrent writer) rolls back and the
whole unit of work is retried with tenacity, up to `conflict_attempts`.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

import psycopg
import structlog
from psycopg import sql
from railway import ErrorCode
from railway.result import Result
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from cert_trust.domain.models import (
    AuthorityInfoAccess,
    Bundle,
    Certificate,
    CertificateRelease,
    Release,
    Revocation,
)
from cert_trust.domain.ports import TrustSession

log = structlog.get_logger()

T = TypeVar("T")
E = TypeVar("E")

SCHEMA_DDL: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS certificates (
        ski         TEXT NOT NULL,
        aki         TEXT NOT NULL,
        serial      BYTEA NOT NULL,
        not_before  BIGINT NOT NULL,
        not_after   BIGINT NOT NULL,
        raw         BYTEA NOT NULL,
        UNIQUE (ski, serial)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS aia (
        ski  TEXT NOT NULL UNIQUE,
        url  TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS revocations (
        ski         TEXT NOT NULL UNIQUE,
        revoked_at  BIGINT NOT NULL,
        mechanism   TEXT NOT NULL,
        reason      TEXT NOT NULL
    )
    """,
    *(
        f"""
        CREATE TABLE IF NOT EXISTS {bundle.release_table} (
            version      TEXT NOT NULL UNIQUE,
            released_at  BIGINT NOT NULL
        )
        """
        for bundle in Bundle
    ),
    *(
        f"""
        CREATE TABLE IF NOT EXISTS {bundle.membership_table} (
            ski      TEXT NOT NULL,
            serial   BYTEA NOT NULL,
            release  TEXT NOT NULL,
            UNIQUE (ski, serial, release)
        )
        """
        for bundle in Bundle
    ),
]

_CERT_COLUMNS = "ski, aki, serial, not_before, not_after, raw"

_SELECT_CERT = f"SELECT {_CERT_COLUMNS} FROM certificates WHERE ski = %s AND serial = %s"
_INSERT_CERT = f"INSERT INTO certificates ({_CERT_COLUMNS}) VALUES (%s, %s, %s, %s, %s, %s)"
_SELECT_CERTS_BY_SKI = (
    f"SELECT {_CERT_COLUMNS} FROM certificates WHERE ski = %s ORDER BY not_before"
)
_SELECT_ALL_CERTS = f"SELECT {_CERT_COLUMNS} FROM certificates ORDER BY not_before, ski"

_SELECT_AIA = "SELECT ski, url FROM aia WHERE ski = %s"
_INSERT_AIA = "INSERT INTO aia (ski, url) VALUES (%s, %s)"

_SELECT_REVOCATION = "SELECT ski, revoked_at, mechanism, reason FROM revocations WHERE ski = %s"
_INSERT_REVOCATION = (
    "INSERT INTO revocations (ski, revoked_at, mechanism, reason) VALUES (%s, %s, %s, %s)"
)

_SELECT_RELEASE = sql.SQL("SELECT version, released_at FROM {table} WHERE version = %s")
_INSERT_RELEASE = sql.SQL("INSERT INTO {table} (version, released_at) VALUES (%s, %s)")
_LIST_RELEASES = sql.SQL("SELECT version, released_at FROM {table} ORDER BY released_at DESC")

_SELECT_MEMBERSHIP = sql.SQL(
    "SELECT ski, serial, release FROM {table} WHERE ski = %s AND serial = %s AND release = %s"
)
_INSERT_MEMBERSHIP = sql.SQL("INSERT INTO {table} (ski, serial, release) VALUES (%s, %s, %s)")
_COUNT_MEMBERS = sql.SQL("SELECT count(*) FROM {table} WHERE release = %s")

_RELEASE_CERTS = sql.SQL(
    "SELECT c.ski, c.aki, c.serial, c.not_before, c.not_after, c.raw "
    "FROM certificates c JOIN {members} m ON c.ski = m.ski AND c.serial = m.serial "
    "WHERE m.release = %s ORDER BY c.not_before"
)
_CERT_RELEASES = sql.SQL(
    "SELECT r.version, r.released_at "
    "FROM {releases} r JOIN {members} m ON m.release = r.version "
    "WHERE m.ski = %s AND m.serial = %s ORDER BY r.released_at DESC"
)


def _certificate(row: tuple[Any, ...]) -> Certificate:
    ski, aki, serial, not_before, not_after, raw = row
    return Certificate(
        ski=ski,
        aki=aki,
        serial=bytes(serial),
        not_before=not_before,
        not_after=not_after,
        raw=bytes(raw),
    )


# ─────────────────────── Tables ───────────────────────


class _Table:
    """Shared select/insert plumbing; subclasses supply SQL and row mapping."""

    def __init__(self, cur: psycopg.Cursor[Any]) -> None:
        self._cur = cur

    def _fetch(self, query: sql.Composable | str, params: tuple[Any, ...]) -> list[tuple[Any, ...]]:
        self._cur.execute(query, params)
        return self._cur.fetchall()

    def _select_one(
        self,
        query: sql.Composable | str,
        params: tuple[Any, ...],
        to_entity: Callable[[tuple[Any, ...]], E],
        what: str,
    ) -> Result[E]:
        return Result.from_computation(
            lambda: self._fetch(query, params),
            ErrorCode.DATABASE_ERROR,
            f"Failed to select {what}",
        ).flat_map(
            lambda rows: Result.from_optional(
                to_entity(rows[0]) if rows else None,
                f"{what} not found",
            )
        )

    def _insert(
        self,
        query: sql.Composable | str,
        params: tuple[Any, ...],
        entity: E,
        what: str,
    ) -> Result[E]:
        try:
            self._cur.execute(query, params)
        except psycopg.errors.UniqueViolation as e:
            log.warning("store.conflict", entity=what)
            return Result.failure(ErrorCode.CONFLICT, f"{what} already stored", e)
        except psycopg.Error as e:
            return Result.failure(ErrorCode.DATABASE_ERROR, f"Failed to insert {what}", e)
        return Result.success(entity)


class PsycopgCertificateTable(_Table):
    def select(self, key: tuple[str, bytes]) -> Result[Certificate]:
        ski, serial = key
        return self._select_one(_SELECT_CERT, (ski, serial), _certificate, f"certificate {ski}")

    def insert(self, entity: Certificate) -> Result[Certificate]:
        return self._insert(
            _INSERT_CERT,
            (
                entity.ski,
                entity.aki,
                entity.serial,
                entity.not_before,
                entity.not_after,
                entity.raw,
            ),
            entity,
            f"certificate {entity.ski}",
        )


class PsycopgAiaTable(_Table):
    def select(self, key: str) -> Result[AuthorityInfoAccess]:
        return self._select_one(
            _SELECT_AIA,
            (key,),
            lambda row: AuthorityInfoAccess(ski=row[0], url=row[1]),
            f"AIA for {key}",
        )

    def insert(self, entity: AuthorityInfoAccess) -> Result[AuthorityInfoAccess]:
        return self._insert(_INSERT_AIA, (entity.ski, entity.url), entity, f"AIA for {entity.ski}")


class PsycopgRevocationTable(_Table):
    def select(self, key: str) -> Result[Revocation]:
        return self._select_one(
            _SELECT_REVOCATION,
            (key,),
            lambda row: Revocation(ski=row[0], revoked_at=row[1], mechanism=row[2], reason=row[3]),
            f"revocation of {key}",
        )

    def insert(self, entity: Revocation) -> Result[Revocation]:
        return self._insert(
            _INSERT_REVOCATION,
            (entity.ski, entity.revoked_at, entity.mechanism, entity.reason),
            entity,
            f"revocation of {entity.ski}",
        )


class PsycopgReleaseTable(_Table):
    def select(self, key: tuple[Bundle, str]) -> Result[Release]:
        bundle, version = key
        return self._select_one(
            _SELECT_RELEASE.format(table=sql.Identifier(bundle.release_table)),
            (version,),
            lambda row: Release(bundle=bundle, version=row[0], released_at=row[1]),
            f"{bundle.value} release {version}",
        )

    def insert(self, entity: Release) -> Result[Release]:
        return self._insert(
            _INSERT_RELEASE.format(table=sql.Identifier(entity.bundle.release_table)),
            (entity.version, entity.released_at),
            entity,
            f"{entity.bundle.value} release {entity.version}",
        )


class PsycopgMembershipTable(_Table):
    def select(self, key: tuple[Bundle, str, bytes, str]) -> Result[CertificateRelease]:
        bundle, ski, serial, version = key
        return self._select_one(
            _SELECT_MEMBERSHIP.format(table=sql.Identifier(bundle.membership_table)),
            (ski, serial, version),
            lambda row: CertificateRelease(
                bundle=bundle, ski=row[0], serial=bytes(row[1]), version=row[2]
            ),
            f"membership of {ski} in {bundle.value} release {version}",
        )

    def insert(self, entity: CertificateRelease) -> Result[CertificateRelease]:
        return self._insert(
            _INSERT_MEMBERSHIP.format(table=sql.Identifier(entity.bundle.membership_table)),
            (entity.ski, entity.serial, entity.version),
            entity,
            f"membership of {entity.ski} in {entity.bundle.value} release {entity.version}",
        )


# ─────────────────────── Session ───────────────────────


class PsycopgTrustSession:
    """
    One transaction's view of the store, bound to an open cursor.

    Implements the TrustSession port.
    """

    def __init__(self, cur: psycopg.Cursor[Any]) -> None:
        self._cur = cur
        self._certificates = PsycopgCertificateTable(cur)
        self._aia = PsycopgAiaTable(cur)
        self._releases = PsycopgReleaseTable(cur)
        self._memberships = PsycopgMembershipTable(cur)
        self._revocations = PsycopgRevocationTable(cur)

    @property
    def certificates(self) -> PsycopgCertificateTable:
        return self._certificates

    @property
    def aia(self) -> PsycopgAiaTable:
        return self._aia

    @property
    def releases(self) -> PsycopgReleaseTable:
        return self._releases

    @property
    def memberships(self) -> PsycopgMembershipTable:
        return self._memberships

    @property
    def revocations(self) -> PsycopgRevocationTable:
        return self._revocations

    def _query(
        self,
        query: sql.Composable | str,
        params: tuple[Any, ...],
        what: str,
    ) -> Result[list[tuple[Any, ...]]]:
        def _run() -> list[tuple[Any, ...]]:
            self._cur.execute(query, params)
            return self._cur.fetchall()

        return Result.from_computation(_run, ErrorCode.DATABASE_ERROR, f"Failed to query {what}")

    def list_releases(self, bundle: Bundle) -> Result[list[Release]]:
        return self._query(
            _LIST_RELEASES.format(table=sql.Identifier(bundle.release_table)),
            (),
            f"{bundle.value} releases",
        ).map(
            lambda rows: [
                Release(bundle=bundle, version=version, released_at=released_at)
                for version, released_at in rows
            ]
        )

    def release_certificates(self, release: Release) -> Result[list[Certificate]]:
        return self._query(
            _RELEASE_CERTS.format(members=sql.Identifier(release.bundle.membership_table)),
            (release.version,),
            f"certificates of {release.bundle.value} release {release.version}",
        ).map(lambda rows: [_certificate(row) for row in rows])

    def count_release(self, release: Release) -> Result[int]:
        return self._query(
            _COUNT_MEMBERS.format(table=sql.Identifier(release.bundle.membership_table)),
            (release.version,),
            f"size of {release.bundle.value} release {release.version}",
        ).map(lambda rows: int(rows[0][0]))

    def certificates_by_ski(self, ski: str) -> Result[list[Certificate]]:
        return self._query(_SELECT_CERTS_BY_SKI, (ski,), f"certificates with SKI {ski}").map(
            lambda rows: [_certificate(row) for row in rows]
        )

    def all_certificates(self) -> Result[list[Certificate]]:
        return self._query(_SELECT_ALL_CERTS, (), "all certificates").map(
            lambda rows: [_certificate(row) for row in rows]
        )

    def certificate_releases(self, certificate: Certificate) -> Result[list[Release]]:
        def _for(bundle: Bundle) -> Result[list[Release]]:
            return self._query(
                _CERT_RELEASES.format(
                    releases=sql.Identifier(bundle.release_table),
                    members=sql.Identifier(bundle.membership_table),
                ),
                (certificate.ski, certificate.serial),
                f"{bundle.value} releases of {certificate.ski}",
            ).map(
                lambda rows: [
                    Release(bundle=bundle, version=version, released_at=released_at)
                    for version, released_at in rows
                ]
            )

        return Result.traverse(list(Bundle), _for).map(
            lambda per_bundle: [release for releases in per_bundle for release in releases]
        )


# ─────────────────────── Store ───────────────────────


def _is_conflict(result: Result[Any]) -> bool:
    return result.is_failure() and result.error().code is ErrorCode.CONFLICT


def _log_retry(state: RetryCallState) -> None:
    log.warning(
        "store.conflict_retry",
        attempt=state.attempt_number,
        failure=str(state.outcome.result().error()) if state.outcome else None,
    )


def _last_result(state: RetryCallState) -> Result[Any]:
    assert state.outcome is not None  # set by tenacity before the callback runs
    return state.outcome.result()


class PsycopgTrustStore:
    """
    Run units of work against PostgreSQL, one transaction each.

    Implements the TrustStore port.
    All exceptions are caught at this adapter boundary via Result.from_computation().
    """

    def __init__(
        self,
        dsn: str,
        conflict_attempts: int = 3,
        backoff_seconds: float = 0.05,
    ) -> None:
        self._dsn = dsn
        self._conflict_attempts = conflict_attempts
        self._backoff_seconds = backoff_seconds

    def create_schema(self) -> Result[int]:
        """Apply SCHEMA_DDL. Safe to run repeatedly; returns the number of statements."""
        return Result.from_computation(
            self._apply_schema,
            ErrorCode.DATABASE_ERROR,
            "Failed to create trust store schema",
        )

    def _apply_schema(self) -> int:
        with psycopg.connect(self._dsn) as conn, conn.transaction(), conn.cursor() as cur:
            for statement in SCHEMA_DDL:
                cur.execute(statement)
        log.info("store.schema_ready", statements=len(SCHEMA_DDL))
        return len(SCHEMA_DDL)

    def run(self, work: Callable[[TrustSession], Result[T]]) -> Result[T]:
        """
        Run `work` in a transaction, retrying the whole of it on CONFLICT.

        When every attempt conflicts, the last CONFLICT failure is returned.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self._conflict_attempts),
            wait=wait_exponential(multiplier=self._backoff_seconds, max=2),
            retry=retry_if_result(_is_conflict),
            before_sleep=_log_retry,
            retry_error_callback=_last_result,
        )
        return retrying(self._run_once, work)

    def _run_once(self, work: Callable[[TrustSession], Result[T]]) -> Result[T]:
        return Result.from_computation(
            lambda: self._transaction(work),
            ErrorCode.DATABASE_ERROR,
            "Trust store transaction failed",
        ).flat_map(lambda result: result)

    def _transaction(self, work: Callable[[TrustSession], Result[T]]) -> Result[T]:
        """
        BEGIN → work → COMMIT, or ROLLBACK when work fails.

        If work raises, psycopg rolls back and the exception reaches
        from_computation in _run_once.
        """
        with psycopg.connect(self._dsn) as conn:
            with conn.transaction() as tx, conn.cursor() as cur:
                result = work(PsycopgTrustSession(cur))
                if result.is_failure():
                    log.debug("store.rollback", failure=str(result.error()))
                    raise psycopg.Rollback(tx)
            return result
