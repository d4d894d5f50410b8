"""Scheduler integration for monthly usage resets."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Event, Lock, Thread
from typing import Dict, Optional

from .app.entitlements import UsageResetSummary
from .app.services.entitlements import get_entitlement_engine, get_usage_reset_batch_size

logger = logging.getLogger(__name__)

_scheduler_lock = Lock()
_worker: Optional["_UsageResetWorker"] = None

_RESET_METRICS: Dict[str, object] = {
    "runs": 0,
    "accounts_reset": 0,
    "failures": 0,
    "last_run_at": None,
    "last_success_at": None,
    "last_error": None,
}
_metrics_lock = Lock()


def _record_run_start(started_at: datetime) -> None:
    with _metrics_lock:
        _RESET_METRICS["runs"] = int(_RESET_METRICS.get("runs", 0)) + 1
        _RESET_METRICS["last_run_at"] = started_at


def _record_run_success(completed_at: datetime, summary: UsageResetSummary) -> None:
    with _metrics_lock:
        _RESET_METRICS["accounts_reset"] = int(_RESET_METRICS.get("accounts_reset", 0)) + summary.accounts_reset
        _RESET_METRICS["failures"] = int(_RESET_METRICS.get("failures", 0)) + summary.failures
        _RESET_METRICS["last_success_at"] = completed_at
        _RESET_METRICS["last_error"] = None


def _record_run_failure(error: Exception) -> None:
    with _metrics_lock:
        _RESET_METRICS["failures"] = int(_RESET_METRICS.get("failures", 0)) + 1
        _RESET_METRICS["last_error"] = f"{type(error).__name__}: {error}"


def run_usage_reset_job(*, now: Optional[datetime] = None) -> UsageResetSummary:
    """Reset every account whose usage period has ended, recording run metrics."""

    current_time = now or datetime.now(timezone.utc)
    if current_time.tzinfo is None:
        current_time = current_time.replace(tzinfo=timezone.utc)

    _record_run_start(current_time)
    engine = get_entitlement_engine()
    try:
        summary = engine.reset_expired_periods(current_time, batch_size=get_usage_reset_batch_size())
    except Exception as exc:
        _record_run_failure(exc)
        logger.exception("Usage reset job failed")
        raise
    _record_run_success(current_time, summary)
    logger.info(
        "Usage reset job completed",
        extra={"accounts_reset": summary.accounts_reset, "failures": summary.failures},
    )
    return summary


class _UsageResetWorker(Thread):
    def __init__(self, *, initial_delay: float, interval: float):
        super().__init__(daemon=True, name="usage-reset")
        self._initial_delay = max(0.0, initial_delay)
        self._interval = max(1.0, interval)
        self._stop_event = Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:  # pragma: no cover - thread execution
        if self._stop_event.wait(self._initial_delay):
            return
        while not self._stop_event.is_set():
            try:
                run_usage_reset_job()
            except Exception:
                # Errors are logged inside run_usage_reset_job; continue schedule.
                pass
            if self._stop_event.wait(self._interval):
                break


def start_usage_reset_scheduler(*, interval: float, initial_delay: float = 5.0) -> None:
    global _worker
    with _scheduler_lock:
        if _worker is not None:
            return
        _worker = _UsageResetWorker(initial_delay=initial_delay, interval=interval)
        _worker.start()
        logger.info(
            "Usage reset scheduler started",
            extra={"interval_seconds": round(interval, 2), "initial_delay_seconds": round(initial_delay, 2)},
        )


def shutdown_usage_reset_scheduler() -> None:
    global _worker
    with _scheduler_lock:
        worker = _worker
        if worker is None:
            return
        worker.stop()
        worker.join(timeout=1.0)
        _worker = None
        logger.info("Usage reset scheduler stopped")


def get_usage_reset_metrics() -> Dict[str, object]:
    with _metrics_lock:
        return {
            **_RESET_METRICS,
            "last_run_at": _RESET_METRICS["last_run_at"].isoformat() if _RESET_METRICS.get("last_run_at") else None,
            "last_success_at": (
                _RESET_METRICS["last_success_at"].isoformat() if _RESET_METRICS.get("last_success_at") else None
            ),
        }


def _reset_metrics_for_testing() -> None:  # pragma: no cover - used in tests only
    with _metrics_lock:
        _RESET_METRICS.update(
            {
                "runs": 0,
                "accounts_reset": 0,
                "failures": 0,
                "last_run_at": None,
                "last_success_at": None,
                "last_error": None,
            }
        )


__all__ = [
    "get_usage_reset_metrics",
    "run_usage_reset_job",
    "shutdown_usage_reset_scheduler",
    "start_usage_reset_scheduler",
]
