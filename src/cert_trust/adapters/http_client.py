"""
HTTP adapter — download published trust bundles via httpx.

Adapter layer — implements the BundleFetcher port.

Published layout under the base URL:
  {base_url}/ca-bundle.crt    roots
  {base_url}/int-bundle.crt   intermediates

Retry/backoff via tenacity on transient errors (network, timeout).
All HTTP errors are captured into Result failures — no exceptions
leak to the monitor.
"""

from __future__ import annotations

import httpx
import structlog
from railway import ErrorCode
from railway.result import Result
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cert_trust.domain.models import Bundle

log = structlog.get_logger()

BUNDLE_FILES = {Bundle.CA: "ca-bundle.crt", Bundle.INTERMEDIATE: "int-bundle.crt"}


class HttpBundleFetcher:
    """
    Fetch published PEM bundles over HTTP(S).

    Implements the BundleFetcher port.
    Uses tenacity retry on transient network errors only.
    """

    def __init__(self, base_url: str, timeout: int = 60) -> None:
        self._base_url = base_url if base_url.endswith("/") else base_url + "/"
        self._timeout = timeout

    def url_for(self, bundle: Bundle) -> str:
        return self._base_url + BUNDLE_FILES[bundle]

    def fetch(self, bundle: Bundle) -> Result[bytes]:
        """
        GET the published bundle file.

        Returns Result[bytes] with the raw PEM on success,
        or Result.failure(EXTERNAL_SERVICE_ERROR, ...) on failure.
        """
        url = self.url_for(bundle)
        return Result.from_computation(
            lambda: self._do_fetch(url),
            ErrorCode.EXTERNAL_SERVICE_ERROR,
            f"Failed to fetch {bundle.value} bundle from {url}",
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=0.1, max=30),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
    )
    def _do_fetch(self, url: str) -> bytes:
        """HTTP GET with retry — exceptions caught by from_computation."""
        with httpx.Client(timeout=self._timeout) as client:
            response = client.get(url)
            if response.status_code != httpx.codes.OK:
                raise httpx.HTTPStatusError(
                    f"unexpected status {response.status_code} for {url}",
                    request=response.request,
                    response=response,
                )
            data = response.content
            log.info("bundle.fetched", url=url, size_bytes=len(data))
            return data
