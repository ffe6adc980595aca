"""
FastAPI + Uvicorn ASGI application for the published-bundle monitor.

Runs the monitor as a web service with health check endpoints, an expiry
report per bundle and a background scheduler. Uvicorn serves this app with
graceful shutdown (SIGTERM → drain + exit).

Architecture:
  - FastAPI: lightweight web framework
  - Uvicorn: production ASGI server (handles signals, graceful shutdown)
  - APScheduler: runs in background thread while Uvicorn listens for /health
  - K8s checks: liveness (checks scheduler thread alive) + readiness

Entry point for production: uvicorn cert_trust.asgi:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
import sys
import threading
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from functools import partial
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from railway.result import Result

from cert_trust import __version__
from cert_trust.adapters.http_client import HttpBundleFetcher
from cert_trust.config import AppSettings
from cert_trust.domain.models import Bundle
from cert_trust.main import configure_structlog
from cert_trust.monitor import MonitorState, run_scan, scan_and_record
from cert_trust.scheduler import bundle_scan_job, create_scheduler

# ─────────────────────── Global State ───────────────────────
# These are set during app startup and used for health checks.

_scheduler_thread: threading.Thread | None = None
_scheduler_started = False
_scheduler_ready = False
_error_message: str | None = None
_scan_fn: Callable[[], Result[int]] | None = None
_state = MonitorState()
log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    FastAPI lifespan context manager — runs on startup and shutdown.

    Startup: Create the fetcher and start the scheduler in a background thread.
    Shutdown: Gracefully stop scheduler and thread.
    """
    global _scheduler_thread, _scheduler_ready, _error_message, _scan_fn

    log.info("asgi.startup", phase="lifespan_startup")

    try:
        settings = AppSettings()
    except Exception as e:
        error_msg = f"Configuration error: {e}"
        _error_message = error_msg
        log.error("asgi.startup_error", error=error_msg)
        raise

    configure_structlog(settings.log_level, stream=sys.stdout)

    log.info(
        "asgi.startup_config",
        version=__version__,
        log_level=settings.log_level,
        base_url=settings.monitor.base_url,
        window_days=settings.monitor.window_days,
        cron=settings.monitor.cron,
        run_on_startup=settings.monitor.run_on_startup,
    )

    try:
        fetcher = HttpBundleFetcher(
            settings.monitor.base_url, timeout=settings.http_timeout_seconds
        )
        _scan_fn = partial(
            run_scan,
            fetcher=fetcher,
            state=_state,
            window=settings.monitor.window_seconds,
        )
        scheduled_scan = bundle_scan_job(
            partial(scan_and_record, fetcher, _state, window=settings.monitor.window_seconds),
            attempts=settings.monitor.retry_attempts,
            wait_seconds=settings.monitor.retry_seconds,
        )
        scheduler = create_scheduler(
            scheduled_scan,
            cron=settings.monitor.cron,
            run_on_startup=False,
            register_signals=False,
        )
    except Exception as e:
        error_msg = f"Failed to initialize fetcher/scheduler: {e}"
        _error_message = error_msg
        log.error("asgi.init_error", error=error_msg)
        raise

    def run_scheduler() -> None:
        """Run scheduler in background thread (blocking), after the optional startup scan."""
        global _scheduler_started, _error_message
        try:
            _scheduler_started = True
            log.info("asgi.scheduler_thread_started")
            if settings.monitor.run_on_startup:
                scheduled_scan()
            scheduler.start()
        except Exception as e:
            error_msg = f"Scheduler error: {e}"
            _error_message = error_msg
            log.error("asgi.scheduler_error", error=error_msg)

    _scheduler_thread = threading.Thread(target=run_scheduler, daemon=True)
    _scheduler_thread.start()

    await asyncio.sleep(0.1)
    _scheduler_ready = True

    log.info("asgi.startup_complete")

    yield

    log.info("asgi.shutdown", reason="SIGTERM or server stop")

    try:
        scheduler.shutdown(wait=True)
        log.info("asgi.scheduler_shutdown_complete")
    except Exception as e:
        log.warning("asgi.scheduler_shutdown_error", error=str(e))

    if _scheduler_thread and _scheduler_thread.is_alive():
        _scheduler_thread.join(timeout=5.0)
        if _scheduler_thread.is_alive():
            log.warning("asgi.scheduler_thread_timeout", timeout_seconds=5.0)

    log.info("asgi.shutdown_complete")


# ─────────────────────── FastAPI Application ───────────────────────

app = FastAPI(
    title="cert-trust monitor",
    description="Watches published trust bundles for certificates nearing expiry",
    version=__version__,
    lifespan=lifespan,
)


def _scheduler_alive() -> bool:
    return _scheduler_thread is not None and _scheduler_thread.is_alive()


@app.get("/health")
async def health() -> JSONResponse:
    """
    Kubernetes liveness check.

    Returns 200 while the scheduler thread is alive and startup succeeded,
    503 otherwise.
    """
    if _error_message:
        log.warning("health.check_failed", error=_error_message)
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": _error_message},
        )

    if not _scheduler_alive():
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "reason": "scheduler thread not running"},
        )

    return JSONResponse(
        status_code=200,
        content={"status": "healthy", "scheduler_running": True},
    )


@app.get("/ready")
async def ready() -> JSONResponse:
    """
    Kubernetes readiness check.

    Returns 202 while starting, 503 after a fatal error and 200 once the
    scheduler is running.
    """
    if not _scheduler_ready or not _scheduler_started:
        return JSONResponse(
            status_code=202,
            content={"status": "starting", "scheduler_started": _scheduler_started},
        )

    if _error_message:
        return JSONResponse(
            status_code=503,
            content={"status": "error", "error": _error_message},
        )

    return JSONResponse(
        status_code=200,
        content={"status": "ready", "scheduler_running": _scheduler_alive()},
    )


@app.get("/info")
async def info() -> dict[str, Any]:
    """Application metadata and the time of the last scan per bundle."""
    return {
        "name": "cert-trust-monitor",
        "version": __version__,
        "scheduler_running": _scheduler_alive(),
        "scheduler_started": _scheduler_started,
        "scheduler_ready": _scheduler_ready,
        "has_error": _error_message is not None,
        "last_scans": {
            bundle.value: scan.scanned_at for bundle, scan in _state.snapshot().items()
        },
    }


@app.get("/expiring/{bundle}")
async def expiring(bundle: str) -> JSONResponse:
    """
    Certificates of the published bundle found expiring by the last scan.

    Returns 404 for an unknown bundle name and 503 before the first scan.
    """
    parsed = Bundle.parse(bundle)
    if parsed.is_failure():
        return JSONResponse(
            status_code=404,
            content={"status": "not_found", "message": parsed.error().message},
        )

    scan = _state.latest(parsed.value())
    if scan is None:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "reason": "bundle not scanned yet"},
        )

    return JSONResponse(
        status_code=200,
        content={
            "bundle": scan.bundle.value,
            "scanned_at": scan.scanned_at,
            "count": len(scan.expiring),
            "certificates": [
                {
                    "ski": cert.ski,
                    "serial": cert.serial,
                    "subject": cert.subject,
                    "not_after": cert.not_after,
                }
                for cert in scan.expiring
            ],
        },
    )


@app.post("/trigger")
async def trigger() -> JSONResponse:
    """
    Manually scan both published bundles.

    Runs the scan in a worker thread to avoid blocking the event loop.
    Returns 200 with the expiring count, 500 on failure, 503 before startup.
    """
    if _scan_fn is None:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "reason": "Monitor not initialized"},
        )

    log.info("trigger.manual_start", source="REST")

    try:
        result = await asyncio.to_thread(_scan_fn)
    except Exception as e:
        log.error("trigger.exception", error=str(e))
        return JSONResponse(
            status_code=500,
            content={"status": "error", "error": str(e)},
        )

    if result.is_success():
        count = result.value()
        log.info("trigger.completed", expiring=count)
        return JSONResponse(
            status_code=200,
            content={"status": "success", "expiring": count},
        )

    failure = result.error()
    log.error("trigger.scan_failed", failure=str(failure))
    return JSONResponse(
        status_code=500,
        content={
            "status": "failed",
            "error_code": failure.code.value,
            "message": failure.message,
        },
    )


if __name__ == "__main__":
    # For local testing: python -m uvicorn cert_trust.asgi:app --reload
    import uvicorn

    uvicorn.run(
        "cert_trust.asgi:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
        log_level="info",
    )
