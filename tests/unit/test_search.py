"""
Unit tests for certificate search queries.
"""

from __future__ import annotations

import pytest
from railway import ErrorCode, ResultAssertions

from cert_trust.domain.models import Bundle
from cert_trust.domain.search import CertificateMetadata, load_metadata, parse_query, search
from tests.conftest import FEB_2017, JAN_2017, make_entity
from tests.fakes import InMemoryTrustSession, InMemoryTrustStore


@pytest.fixture()
def store() -> InMemoryTrustStore:
    """Two CA roots in two releases and one intermediate."""
    store = InMemoryTrustStore()
    jan = store.add_release(Bundle.CA, "2017.1.0", JAN_2017)
    feb = store.add_release(Bundle.CA, "2017.2.0", FEB_2017)
    inter = store.add_release(Bundle.INTERMEDIATE, "2017.1.0", JAN_2017)

    root_x = store.add_certificate(make_entity(common_name="Root X"))
    root_y = store.add_certificate(make_entity(common_name="Root Y"))
    issuing = store.add_certificate(make_entity(common_name="Issuing CA 1", aki=b"\xaa\xbb"))

    store.add_member(root_x, jan)
    store.add_member(root_x, feb)
    store.add_member(root_y, jan)
    store.add_member(issuing, inter)
    return store


def _subjects(found: list[CertificateMetadata]) -> set[str]:
    return {cm.subject for cm in found}


class TestParseQuery:
    @pytest.mark.parametrize("query", ["subject", "", "colour:red", "subject:("])
    def test_rejects_bad_queries(self, query: str) -> None:
        ResultAssertions.assert_failure(parse_query(query), ErrorCode.VALIDATION_ERROR)

    def test_pattern_is_unanchored(self, store: InMemoryTrustStore) -> None:
        session = InMemoryTrustSession(store)
        cert = next(iter(store.certificates.rows.values()))
        metadata = ResultAssertions.assert_success(load_metadata(session, cert))

        predicate = ResultAssertions.assert_success(parse_query("subject:Example"))

        assert predicate(metadata)


class TestSearch:
    """Verify search over stored certificates and their releases."""

    def test_subject_term(self, store: InMemoryTrustStore) -> None:
        found = ResultAssertions.assert_success(
            search(InMemoryTrustSession(store), ["subject:CN=Root"])
        )
        assert _subjects(found) == {"O=Example Trust,CN=Root X", "O=Example Trust,CN=Root Y"}

    def test_release_term_matches_any_membership(self, store: InMemoryTrustStore) -> None:
        """
        GIVEN Root X in 2017.1.0 and 2017.2.0 and Root Y only in 2017.1.0
        WHEN searching for release 2017.2
        THEN only Root X matches.
        """
        found = ResultAssertions.assert_success(
            search(InMemoryTrustSession(store), [r"release:^2017\.2\."])
        )
        assert _subjects(found) == {"O=Example Trust,CN=Root X"}

    def test_terms_are_combined(self, store: InMemoryTrustStore) -> None:
        found = ResultAssertions.assert_success(
            search(InMemoryTrustSession(store), ["bundle:^int$", "release:2017.1.0"])
        )
        assert _subjects(found) == {"O=Example Trust,CN=Issuing CA 1"}

    def test_aki_term(self, store: InMemoryTrustStore) -> None:
        found = ResultAssertions.assert_success(search(InMemoryTrustSession(store), ["aki:aabb"]))
        assert len(found) == 1
        assert found[0].aki == "aabb"

    def test_no_terms_matches_everything(self, store: InMemoryTrustStore) -> None:
        found = ResultAssertions.assert_success(search(InMemoryTrustSession(store), []))
        assert len(found) == 3

    def test_metadata_lists_releases_per_bundle(self, store: InMemoryTrustStore) -> None:
        found = ResultAssertions.assert_success(
            search(InMemoryTrustSession(store), ["subject:Root X"])
        )
        assert [(r.bundle, r.version) for r in found[0].releases] == [
            (Bundle.CA, "2017.2.0"),
            (Bundle.CA, "2017.1.0"),
        ]

    def test_bad_term_fails_the_search(self, store: InMemoryTrustStore) -> None:
        result = search(InMemoryTrustSession(store), ["subject:Root", "nope"])
        ResultAssertions.assert_failure(result, ErrorCode.VALIDATION_ERROR)
