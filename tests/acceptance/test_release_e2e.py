"""
End-to-end BDD acceptance tests for the cert-trust release workflow.

Exercises the command line as an operator would: PEM files on disk →
cert-trust subcommands → real PostgreSQL, with the database configured
through DATABASE__DSN. Only the clock is pinned.

Each test follows Given/When/Then BDD structure in its docstring.

Markers: @pytest.mark.acceptance — requires Docker + PostgreSQL.
"""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest
import respx
import structlog
from railway import ResultAssertions

from cert_trust import main as main_module
from cert_trust.adapters.http_client import HttpBundleFetcher
from cert_trust.domain.identity import extract_identity
from cert_trust.domain.models import Bundle
from cert_trust.main import main
from cert_trust.monitor import MonitorState, run_scan
from tests.conftest import DAY, FEB_2017, JAN_2017, make_certificate, to_pem

pytestmark = pytest.mark.acceptance


@pytest.fixture(autouse=True)
def _cli_environment(monkeypatch: pytest.MonkeyPatch, acceptance_dsn: str) -> None:
    monkeypatch.setenv("DATABASE__DSN", acceptance_dsn)
    monkeypatch.delenv("BUNDLE", raising=False)
    configure = main_module.configure_structlog

    def _configure(log_level: str = "INFO", stream: object = None) -> None:
        configure(log_level, stream)
        structlog.configure(cache_logger_on_first_use=False)

    monkeypatch.setattr(main_module, "configure_structlog", _configure)


def _cli(now: int, *argv: str) -> int:
    return main(list(argv), clock=lambda: float(now))


class TestReleaseWorkflow:
    """A month of release management for the root bundle."""

    def test_import_roll_and_publish(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """
        GIVEN three roots imported into ca 2017.1.0, one of them expiring in
              early February and one revoked mid-January
        WHEN the ca bundle is rolled on 2017-02-15 and published
        THEN release 2017.2.0 exists and the published bundle holds only the
             remaining root.
        """
        keeper = make_certificate(common_name="Keeper Root")
        lapsing = make_certificate(common_name="Lapsing Root", not_after=FEB_2017 - 5 * DAY)
        compromised = make_certificate(common_name="Compromised Root")
        roots = tmp_path / "roots.pem"
        roots.write_bytes(to_pem(keeper, lapsing, compromised))

        assert _cli(JAN_2017, "setup") == 0
        assert _cli(JAN_2017, "-b", "ca", "-r", "2017.1.0", "import", str(roots)) == 0
        capsys.readouterr()

        ski = ResultAssertions.assert_success(extract_identity(compromised)).ski
        assert _cli(JAN_2017 + DAY, "revoke", ski, "CRL", "keyCompromise") == 0

        assert _cli(FEB_2017, "-b", "ca", "release") == 0
        out = capsys.readouterr().out
        assert "1 certificates rolled" in out
        assert "2 certificates skipped" in out

        published = tmp_path / "ca-bundle.crt"
        assert _cli(FEB_2017, "-b", "ca", "bundle", str(published)) == 0
        assert published.read_bytes() == to_pem(keeper)

        assert _cli(FEB_2017, "-b", "ca", "releases") == 0
        listing = capsys.readouterr().out.splitlines()
        assert [line.split()[1] for line in listing if line.startswith("- ")] == [
            "2017.2.0",
            "2017.1.0",
        ]

    def test_rerunning_a_release_is_harmless(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """
        GIVEN int 2017.2.0 already rolled from 2017.1.0
        WHEN 2017.2.0 is rolled again explicitly
        THEN it succeeds and its content is unchanged.
        """
        intermediates = tmp_path / "int.pem"
        intermediates.write_bytes(to_pem(make_certificate(), make_certificate()))
        _cli(JAN_2017, "-r", "2017.1.0", "import", str(intermediates))
        _cli(FEB_2017, "release")
        capsys.readouterr()

        assert _cli(FEB_2017 + DAY, "-r", "2017.2.0", "release") == 0
        assert "2 certificates rolled" in capsys.readouterr().out

        assert _cli(FEB_2017 + DAY, "-r", "2017.2.0", "release-info") == 0
        assert capsys.readouterr().out.startswith("2 certificates in release int-2017.2.0:")

    def test_import_is_idempotent(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        roots = tmp_path / "roots.pem"
        roots.write_bytes(to_pem(make_certificate()))

        _cli(JAN_2017, "-b", "ca", "-r", "2017.1.0", "import", str(roots))
        capsys.readouterr()
        assert _cli(JAN_2017 + DAY, "-b", "ca", "-r", "2017.1.0", "import", str(roots)) == 0

        assert "Imported 0 new certificates" in capsys.readouterr().out


class TestMonitor:
    @respx.mock
    def test_scan_of_published_bundles(self) -> None:
        """
        GIVEN published ca and int bundles, each with one certificate expiring soon
        WHEN the monitor scans them with a 30-day window
        THEN both are recorded with one expiring certificate each.
        """
        base = "https://trust.example.com/"
        soon = make_certificate(not_after=JAN_2017 + 10 * DAY)
        respx.get(base + "ca-bundle.crt").mock(
            return_value=httpx.Response(200, content=to_pem(soon, make_certificate()))
        )
        respx.get(base + "int-bundle.crt").mock(
            return_value=httpx.Response(200, content=to_pem(soon))
        )
        state = MonitorState()

        result = run_scan(HttpBundleFetcher(base), state, 30 * DAY, clock=lambda: float(JAN_2017))

        ResultAssertions.assert_success_value(result, 2)
        assert {b: len(s.expiring) for b, s in state.snapshot().items()} == {
            Bundle.CA: 1,
            Bundle.INTERMEDIATE: 1,
        }
