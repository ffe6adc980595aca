"""
Scheduler — periodic scans of the published trust bundles.

A scheduled scan visits every bundle on its own. A bundle whose scan fails
is retried with tenacity after a fixed wait, while the other bundle is still
scanned and recorded:

  for bundle in (ca, int):  scan(bundle) ──Failure──▶ wait, retry (bounded)
                                 │
                                 └──Success──▶ recorded in MonitorState

Each attempt runs inside a LoggingExecutionContext, so an exception escaping
the scan is logged and retried like any other failure. APScheduler (3.x)
fires the job from a standard 5-field cron expression.
"""

from __future__ import annotations

import signal
import sys
from collections.abc import Callable

import structlog
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from railway import LoggingExecutionContext
from railway.result import Result
from tenacity import RetryCallState, Retrying, retry_if_result, stop_after_attempt, wait_fixed

from cert_trust.domain.models import Bundle
from cert_trust.monitor import combine_scans

log = structlog.get_logger()

SCAN_JOB_ID = "trust_bundle_scan"


def bundle_scan_job(
    scan: Callable[[Bundle], Result[int]],
    attempts: int = 5,
    wait_seconds: float = 60,
) -> Callable[[], Result[int]]:
    """
    Build the scheduled job: scan each bundle, retrying it independently.

    Args:
        scan: Scans and records one bundle, returning its expiring count.
        attempts: Attempts per bundle before its failure is reported.
        wait_seconds: Pause between attempts on the same bundle.

    Returns:
        A zero-argument callable returning the total expiring count, or a
        failure naming every bundle that never succeeded.
    """

    def _scan_with_retry(bundle: Bundle) -> Result[int]:
        ctx = LoggingExecutionContext(operation=f"BundleScan[{bundle.value}]")

        def _log_retry(state: RetryCallState) -> None:
            log.warning(
                "scheduler.scan_retry",
                bundle=bundle.value,
                attempt=state.attempt_number,
                failure=str(state.outcome.result().error()),
            )

        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(wait_seconds),
            retry=retry_if_result(lambda result: result.is_failure()),
            before_sleep=_log_retry,
            retry_error_callback=lambda state: state.outcome.result(),
        )
        return retrying(ctx.execute, lambda: scan(bundle))

    def _job() -> Result[int]:
        return combine_scans({bundle: _scan_with_retry(bundle) for bundle in Bundle})

    return _job


def create_scheduler(
    job: Callable[[], Result[int]],
    cron: str = "0 3 * * *",
    run_on_startup: bool = True,
    register_signals: bool = True,
) -> BlockingScheduler:
    """
    Schedule `job` (usually from bundle_scan_job) on a cron expression.

    With run_on_startup the job runs once, synchronously, before the
    scheduler is returned. Signal handlers are only installed when the
    scheduler owns the process; under uvicorn the server handles signals.
    """
    scheduler = BlockingScheduler()

    def _run() -> None:
        job().either(
            lambda expiring: log.info("scheduler.scan_completed", expiring=expiring),
            lambda err: log.error("scheduler.scan_failed", failure=str(err)),
        )

    scheduler.add_job(
        _run,
        trigger=CronTrigger.from_crontab(cron),
        id=SCAN_JOB_ID,
        name="Published trust bundle expiry scan",
        replace_existing=True,
    )

    if run_on_startup:
        log.info("scheduler.startup_run")
        _run()

    if register_signals:
        for signum in (signal.SIGINT, signal.SIGTERM):
            signal.signal(signum, lambda received, _frame: _shutdown(scheduler, received))

    return scheduler


def _shutdown(scheduler: BlockingScheduler, signum: int) -> None:
    log.info("scheduler.shutdown_requested", signal=signal.Signals(signum).name)
    scheduler.shutdown(wait=False)
    sys.exit(0)
