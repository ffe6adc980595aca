"""
Release management and the bundle collector.

Releases are ordered by when they were cut (released_at), never by version
string. Versions only break ties between releases cut in the same second.

  list_releases     newest first
  latest_release    NO_PRIOR_RELEASE when the bundle was never released
  fetch_release     UNKNOWN_RELEASE when the version does not exist
  previous_release  NO_PRIOR_RELEASE when nothing precedes it
  next_release      increments the latest release (or starts at YEAR.MONTH.0)
  collect_release   certificates of a release, oldest not_before first
"""

from __future__ import annotations

from datetime import UTC, datetime

import structlog
from railway import ErrorCode
from railway.result import Failure, Result, Success

from cert_trust.domain.models import Bundle, Certificate, Release
from cert_trust.domain.ports import TrustSession
from cert_trust.domain.store import ensure
from cert_trust.domain.version import Ordering, Version, initial_version

log = structlog.get_logger()


def new_release(bundle: Bundle, version: str, now: int) -> Result[Release]:
    """A Release value stamped `now`, provided `version` parses. Nothing is stored."""
    return Version.parse(version).map(
        lambda _: Release(bundle=bundle, version=version, released_at=now)
    )


def list_releases(session: TrustSession, bundle: Bundle) -> Result[list[Release]]:
    return session.list_releases(bundle)


def latest_release(session: TrustSession, bundle: Bundle) -> Result[Release]:
    return session.list_releases(bundle).flat_map(
        lambda releases: Result.from_optional(
            releases[0] if releases else None,
            f"no {bundle.value} release exists yet",
            ErrorCode.NO_PRIOR_RELEASE,
        )
    )


def fetch_release(session: TrustSession, bundle: Bundle, version: str) -> Result[Release]:
    match session.releases.select((bundle, version)):
        case Failure(err) if err.code is ErrorCode.NOT_FOUND:
            return Result.failure(
                ErrorCode.UNKNOWN_RELEASE,
                f"{bundle.value} release {version} does not exist",
            )
        case result:
            return result


def _precedes(candidate: Release, target: Release) -> Result[bool]:
    if candidate.version == target.version:
        return Result.success(False)
    if candidate.released_at < target.released_at:
        return Result.success(True)
    if candidate.released_at > target.released_at:
        return Result.success(False)
    return Version.parse(candidate.version).flat_map(
        lambda mine: Version.parse(target.version).map(
            lambda theirs: mine.compare(theirs) is Ordering.LESS
        )
    )


def _newest(releases: list[Release], target: Release) -> Result[Release]:
    best: Release | None = None
    for release in releases:
        if best is None or release.released_at > best.released_at:
            best = release
            continue
        if release.released_at == best.released_at:
            match _precedes(best, release):
                case Success(True):
                    best = release
                case Failure(err):
                    return Result.failure_from(err)
    return Result.from_optional(
        best,
        f"{target.bundle.value} release {target.version} has no previous release",
        ErrorCode.NO_PRIOR_RELEASE,
    )


def previous_release(session: TrustSession, target: Release) -> Result[Release]:
    """
    The release cut immediately before `target` in the same bundle.

    Releases sharing target's released_at count as earlier only when their
    version compares LESS than target's.
    """
    return (
        session.list_releases(target.bundle)
        .flat_map(
            lambda releases: Result.traverse(
                releases,
                lambda candidate: _precedes(candidate, target).map(
                    lambda earlier: (candidate, earlier)
                ),
            )
        )
        .flat_map(
            lambda pairs: _newest([release for release, earlier in pairs if earlier], target)
        )
    )


def _reselect(session: TrustSession, release: Release) -> Result[Release]:
    return session.releases.select(release.natural_key)


def ensure_release(session: TrustSession, release: Release) -> Result[Release]:
    """Store `release` if absent and return the stored row, whose released_at may be older."""
    return ensure(session.releases, release).flat_map(
        lambda inserted: _reselect(session, release).peek(
            lambda stored: log.info(
                "release.created" if inserted else "release.exists",
                bundle=stored.bundle.value,
                version=stored.version,
                released_at=stored.released_at,
            )
        )
    )


def next_version(latest: Release, now: int) -> Result[str]:
    return (
        Version.parse(latest.version)
        .flat_map(lambda version: version.increment_at(datetime.fromtimestamp(now, UTC)))
        .map(str)
    )


def next_release(session: TrustSession, bundle: Bundle, now: int) -> Result[Release]:
    """
    Ensure the release that follows the latest one.

    A bundle with no releases gets YEAR.MONTH.0 for `now`.
    """
    match latest_release(session, bundle):
        case Success(latest):
            version = next_version(latest, now)
        case Failure(err) if err.code is ErrorCode.NO_PRIOR_RELEASE:
            version = Result.success(str(initial_version(datetime.fromtimestamp(now, UTC))))
        case Failure(err):
            return Result.failure_from(err)

    return version.flat_map(lambda v: new_release(bundle, v, now)).flat_map(
        lambda release: ensure_release(session, release)
    )


def collect_release(
    session: TrustSession, bundle: Bundle, version: str
) -> Result[list[Certificate]]:
    """Every certificate in a release, oldest not_before first."""
    return fetch_release(session, bundle, version).flat_map(session.release_certificates)


def release_size(session: TrustSession, release: Release) -> Result[int]:
    return fetch_release(session, release.bundle, release.version).flat_map(
        session.count_release
    )
