"""
Application entry point — the cert-trust command line.

Composition root: loads settings, creates the concrete PostgreSQL store,
wraps it in a TrustService and dispatches to one subcommand. The monitor
subcommand instead wires the HTTP fetcher into the scheduler.

This is the ONLY place (with asgi.py) where concrete classes are instantiated.
Everything else depends on Protocol interfaces.

Each command handler returns Result[str]: the text to print on success, or
the failure that becomes an error message on stderr and exit status 1.

    cert-trust setup
    cert-trust -b ca -r 2017.1.0 import roots.pem
    cert-trust -b ca release P1D
    cert-trust -b int bundle int-bundle.crt
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from functools import partial
from pathlib import Path
from typing import Any

import structlog
from pydantic import TypeAdapter, ValidationError
from railway import ErrorCode
from railway.result import Result

from cert_trust import __version__
from cert_trust.adapters.http_client import HttpBundleFetcher
from cert_trust.adapters.pem import encode_bundle, load_certificates
from cert_trust.adapters.postgres import PsycopgTrustStore
from cert_trust.config import AppSettings
from cert_trust.domain.models import Bundle, Certificate, Exclusion, Release
from cert_trust.domain.search import CertificateMetadata
from cert_trust.domain.version import Version
from cert_trust.monitor import MonitorState, scan_and_record
from cert_trust.scheduler import bundle_scan_job, create_scheduler
from cert_trust.service import TrustService

DEFAULT_EXPIRY_WINDOW = 30 * 24 * 60 * 60

_DATE_FORMAT = "%Y-%m-%d %H:%M:%S UTC"
_WINDOW = TypeAdapter(timedelta)


def configure_structlog(log_level: str = "INFO", stream: Any = None) -> None:
    """
    Configure structlog for structured logging.

    Colored, human-readable console output. The CLI sends logs to stderr so
    that stdout carries only command output (a PEM bundle, for instance).
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )


# ─────────────────────── Argument parsing ───────────────────────


def parse_window(text: str) -> Result[int]:
    """
    Parse a duration into whole seconds.

    Accepts plain seconds ("3600") or anything pydantic reads as a timedelta,
    such as an ISO 8601 duration ("P30D", "PT12H").
    """
    value: str | int = int(text) if text.isdigit() else text
    try:
        window = _WINDOW.validate_python(value)
    except ValidationError as e:
        return Result.failure(ErrorCode.VALIDATION_ERROR, f"invalid window {text!r}", e)
    return Result.success(int(window.total_seconds())).ensure(
        lambda seconds: seconds >= 0,
        ErrorCode.VALIDATION_ERROR,
        f"window {text!r} must not be negative",
    )


def build_parser(default_bundle: str = "int") -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cert-trust",
        description="Manage versioned releases of trusted root and intermediate bundles.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-b", "--bundle", choices=[b.value for b in Bundle], default=default_bundle,
        help="bundle to operate on (default: %(default)s)",
    )
    parser.add_argument("-r", "--release", help="release version, e.g. 2017.1.0")

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("setup", help="create the database tables")

    importer = commands.add_parser("import", help="import certificates from PEM files")
    importer.add_argument("files", nargs="+", type=Path)

    roll = commands.add_parser("release", help="roll a new release forward")
    roll.add_argument("window", nargs="?", default="0")

    commands.add_parser("releases", help="list releases, newest first")
    commands.add_parser("release-info", help="list the certificates in a release")

    bundle = commands.add_parser("bundle", help="write a release as a PEM bundle")
    bundle.add_argument("file", nargs="?", type=Path)

    expiring = commands.add_parser("expiring", help="certificates a release would drop")
    expiring.add_argument("window", nargs="?", default=str(DEFAULT_EXPIRY_WINDOW))

    revoke = commands.add_parser("revoke", help="revoke every certificate with a given SKI")
    revoke.add_argument("ski")
    revoke.add_argument("mechanism")
    revoke.add_argument("reason")
    revoke.add_argument("--at", type=int, help="revocation time in epoch seconds (default: now)")

    info = commands.add_parser("info", help="show stored certificates by SKI")
    info.add_argument("skis", nargs="+")

    search = commands.add_parser("search", help="search certificates with type:regexp terms")
    search.add_argument("terms", nargs="*")

    commands.add_parser("monitor", help="periodically scan the published bundles")

    return parser


# ─────────────────────── Rendering ───────────────────────


def _date(epoch: int) -> str:
    return datetime.fromtimestamp(epoch, UTC).strftime(_DATE_FORMAT)


def _describe(cert: Certificate) -> str:
    return f"SKI={cert.ski}, serial={cert.serial_number}, subject='{cert.subject()}'"


def _exclusion_line(exclusion: Exclusion) -> str:
    return f"{exclusion.reason} ({_describe(exclusion.certificate)})"


def _release_line(release: Release) -> str:
    return f"- {release.version} {release.bundle.value} ({_date(release.released_at)})"


def _metadata_text(cm: CertificateMetadata) -> str:
    lines = [
        f"Subject: {cm.subject}",
        f"Issuer: {cm.issuer}",
        f"\tSKI: {cm.ski}",
        f"\tAKI: {cm.aki}",
        f"\tSerial: {cm.serial}",
        f"\tNot Before: {_date(cm.not_before)}",
        f"\tNot After: {_date(cm.not_after)}",
        "\tReleases:",
    ]
    lines.extend(f"\t\t{_release_line(release)}" for release in cm.releases)
    return "\n".join(lines)


# ─────────────────────── Commands ───────────────────────


def _read(path: Path) -> Result[bytes]:
    return Result.from_computation(
        path.read_bytes, ErrorCode.VALIDATION_ERROR, f"Cannot read {path}"
    )


def cmd_setup(store: Any) -> Result[str]:
    return store.create_schema().map(
        lambda statements: f"Trust store schema ready ({statements} statements applied)."
    )


def cmd_import(
    service: TrustService, bundle: Bundle, release: str | None, files: list[Path]
) -> Result[str]:
    def _summary(imported: int, present: int) -> str:
        target = f" into {bundle.value} release {release}" if release else ""
        return f"Imported {imported} new certificates{target} ({present} already stored)."

    return (
        Result.traverse(files, lambda path: _read(path).flat_map(load_certificates))
        .map(lambda per_file: [cert for certs in per_file for cert in certs])
        .flat_map(lambda certs: service.import_certificates(bundle, certs, release))
        .map(lambda report: _summary(len(report.imported), len(report.already_present)))
    )


def cmd_release(
    service: TrustService, bundle: Bundle, release: str | None, window: str
) -> Result[str]:
    def _text(report: Any) -> str:
        lines = [f"skipping {_exclusion_line(e)}" for e in report.excluded]
        lines.append(f"{report.included_count} certificates rolled")
        lines.append(f"{report.skipped_count} certificates skipped")
        lines.append(
            f"Successfully rolled {bundle.value} release {report.source.version} "
            f"into {report.target.version}"
        )
        return "\n".join(lines)

    return (
        parse_window(window)
        .flat_map(lambda seconds: service.roll(bundle, release, seconds))
        .map(_text)
    )


def cmd_releases(service: TrustService, bundle: Bundle) -> Result[str]:
    return service.list_releases(bundle).map(
        lambda releases: "\n".join(_release_line(r) for r in releases)
        if releases
        else f"No {bundle.value} releases."
    )


def _selected_release(service: TrustService, bundle: Bundle, release: str | None) -> Result[Release]:
    if release is None:
        return service.latest_release(bundle)
    return service.fetch_release(bundle, release)


def cmd_release_info(service: TrustService, bundle: Bundle, release: str | None) -> Result[str]:
    def _text(rel: Release, certs: list[Certificate]) -> str:
        lines = [f"{len(certs)} certificates in release {rel.bundle.value}-{rel.version}:"]
        lines.extend(
            f"SKI: {c.ski}\tSerial: {c.serial_number}\tSubject: {c.subject()}" for c in certs
        )
        return "\n".join(lines)

    return _selected_release(service, bundle, release).flat_map(
        lambda rel: service.collect(bundle, rel.version).map(lambda certs: _text(rel, certs))
    )


def cmd_bundle(
    service: TrustService, bundle: Bundle, release: str | None, file: Path | None
) -> Result[str]:
    def _write(pem: str, count: int) -> Result[str]:
        if file is None:
            return Result.success(pem.rstrip("\n"))
        return Result.from_computation(
            lambda: file.write_text(pem, encoding="ascii"),
            ErrorCode.TECHNICAL_ERROR,
            f"Cannot write {file}",
        ).map(lambda _: f"Selected {count} certificates for this release.\nWrote {file}.")

    return service.collect(bundle, release).flat_map(
        lambda certs: _write(encode_bundle(certs), len(certs))
    )


def cmd_expiring(
    service: TrustService, bundle: Bundle, release: str | None, window: str
) -> Result[str]:
    def _text(report: Any) -> str:
        lines = [f"Release: {report.release.bundle.value} {report.release.version}"]
        lines.extend(_exclusion_line(e) for e in report.excluded)
        lines.append(f"{len(report.excluded)} certificates expiring or revoked.")
        return "\n".join(lines)

    return (
        parse_window(window)
        .flat_map(lambda seconds: service.expiring(bundle, release, seconds))
        .map(_text)
    )


def cmd_revoke(
    service: TrustService, ski: str, mechanism: str, reason: str, at: int | None
) -> Result[str]:
    return service.revoke(ski, mechanism, reason, at).map(
        lambda inserted: f"Revoked certificates with SKI {ski}."
        if inserted
        else f"Certificates with SKI {ski} were already revoked; record unchanged."
    )


def cmd_info(service: TrustService, skis: list[str]) -> Result[str]:
    def _for(ski: str) -> Result[list[str]]:
        return service.certificates_by_ski(ski).flat_map(
            lambda certs: Result.traverse(
                certs,
                lambda cert: service.certificate_releases(cert).map(
                    lambda releases: _metadata_text(CertificateMetadata.of(cert, releases))
                ),
            )
        ).ensure(
            lambda texts: len(texts) > 0,
            ErrorCode.NOT_FOUND,
            f"no certificate with SKI {ski} is stored",
        )

    return Result.traverse(skis, _for).map(
        lambda per_ski: "\n".join(text for texts in per_ski for text in texts)
    )


def cmd_search(service: TrustService, terms: list[str]) -> Result[str]:
    if not terms:
        return Result.success("")
    return service.search(terms).map(
        lambda found: "\n".join(_metadata_text(cm) for cm in found)
    )


def cmd_monitor(settings: AppSettings) -> Result[str]:
    """Run the published-bundle monitor until interrupted."""
    log = structlog.get_logger()
    fetcher = HttpBundleFetcher(settings.monitor.base_url, timeout=settings.http_timeout_seconds)
    job = bundle_scan_job(
        partial(scan_and_record, fetcher, MonitorState(), window=settings.monitor.window_seconds),
        attempts=settings.monitor.retry_attempts,
        wait_seconds=settings.monitor.retry_seconds,
    )
    scheduler = create_scheduler(
        job,
        cron=settings.monitor.cron,
        run_on_startup=settings.monitor.run_on_startup,
    )

    log.info("app.scheduler_starting", cron=settings.monitor.cron)
    try:
        scheduler.start()
    except KeyboardInterrupt:
        log.info("app.shutdown", reason="signal received")
    return Result.success("Monitor stopped.")


# ─────────────────────── Composition ───────────────────────


def _create_store(settings: AppSettings) -> Result[PsycopgTrustStore]:
    return Result.from_optional(
        settings.database,
        "Database is not configured: set DATABASE__DSN or DATABASE__HOST and friends",
        ErrorCode.CONFIGURATION_ERROR,
    ).map(
        lambda database: PsycopgTrustStore(
            dsn=database.get_dsn(),
            conflict_attempts=settings.store.conflict_attempts,
        )
    )


def _validate_release(release: str | None) -> Result[str]:
    if release is None:
        return Result.success("")
    return Version.parse(release).map(lambda _: release)


def dispatch(
    args: argparse.Namespace,
    store: Any,
    clock: Callable[[], float] = time.time,
) -> Result[str]:
    """Run the parsed command against `store`."""
    bundle = Bundle(args.bundle)
    service = TrustService(store, clock=clock)
    release: str | None = args.release

    commands: dict[str, Callable[[], Result[str]]] = {
        "setup": lambda: cmd_setup(store),
        "import": lambda: cmd_import(service, bundle, release, args.files),
        "release": lambda: cmd_release(service, bundle, release, args.window),
        "releases": lambda: cmd_releases(service, bundle),
        "release-info": lambda: cmd_release_info(service, bundle, release),
        "bundle": lambda: cmd_bundle(service, bundle, release, args.file),
        "expiring": lambda: cmd_expiring(service, bundle, release, args.window),
        "revoke": lambda: cmd_revoke(service, args.ski, args.mechanism, args.reason, args.at),
        "info": lambda: cmd_info(service, args.skis),
        "search": lambda: cmd_search(service, args.terms),
    }
    return _validate_release(release).flat_map(lambda _: commands[args.command]())


def main(
    argv: list[str] | None = None,
    store: Any = None,
    clock: Callable[[], float] = time.time,
) -> int:
    """Parse arguments, run one command and return the process exit status."""
    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error: {e}", file=sys.stderr)  # noqa: T201
        return 1

    configure_structlog(settings.log_level, stream=sys.stderr)
    log = structlog.get_logger()

    args = build_parser(settings.bundle).parse_args(argv)
    log.debug("app.command", command=args.command, bundle=args.bundle, release=args.release)

    if args.command == "monitor":
        result = cmd_monitor(settings)
    elif store is not None:
        result = dispatch(args, store, clock)
    else:
        result = _create_store(settings).flat_map(
            lambda created: dispatch(args, created, clock)
        )

    if result.is_failure():
        failure = result.error()
        log.error("app.command_failed", command=args.command, failure=str(failure))
        print(f"[!] {failure}", file=sys.stderr)  # noqa: T201
        return 1

    output = result.value()
    if output:
        print(output)  # noqa: T201
    return 0


if __name__ == "__main__":
    sys.exit(main())
