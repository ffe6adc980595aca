"""
Integration test fixtures — PostgreSQL testcontainer and schema setup.

Provides a real PostgreSQL instance for each test session via testcontainers.
Creates all seven tables with the production SCHEMA_DDL.
Each test gets a fresh, clean database via truncation.
"""

from __future__ import annotations

import psycopg
import pytest
from testcontainers.postgres import PostgresContainer

from cert_trust.adapters.postgres import SCHEMA_DDL

TRUNCATE_ALL = """
TRUNCATE certificates, aia, revocations, root_releases, intermediate_releases,
         roots, intermediates;
"""


def apply_schema(dsn: str) -> None:
    with psycopg.connect(dsn) as conn:
        for statement in SCHEMA_DDL:
            conn.execute(statement)
        conn.commit()


@pytest.fixture(scope="session")
def postgres_container() -> PostgresContainer:
    """Start a PostgreSQL container for the entire test session."""
    with PostgresContainer("postgres:16-alpine") as pg:
        apply_schema(pg.get_connection_url().replace("postgresql+psycopg2", "postgresql"))
        yield pg


@pytest.fixture()
def dsn(postgres_container: PostgresContainer) -> str:
    """Return a psycopg-compatible DSN and truncate all tables before each test."""
    connection_url = postgres_container.get_connection_url().replace(
        "postgresql+psycopg2", "postgresql"
    )
    with psycopg.connect(connection_url) as conn:
        conn.execute(TRUNCATE_ALL)
        conn.commit()
    return connection_url
