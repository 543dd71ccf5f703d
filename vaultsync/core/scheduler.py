from __future__ import annotations

import asyncio
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable

from vaultsync.core.pass_lock import SyncBusyError

logger = logging.getLogger("scheduler")

SCHEDULER_POLL_GRANULARITY_SEC = 1.0
SCHEDULER_MIN_INTERVAL_SEC = 60.0

BUSY_SUMMARY_KEY = "skipped_busy"


def _iso_from_ts(ts: object) -> str | None:
    if not isinstance(ts, (int, float)) or isinstance(ts, bool):
        return None
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat()


async def _wait_stop_or_timeout(stop_event: asyncio.Event, timeout_sec: float) -> bool:
    if timeout_sec <= 0:
        return stop_event.is_set()
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout_sec)
        return True
    except asyncio.TimeoutError:
        return False


class SyncScheduler:
    """Serialize sync passes and re-run them on a timer.

    Every pass, scheduled or manual, goes through ``run_pass``, which holds a
    single in-flight lock; a pass requested while another one runs is skipped
    rather than queued. ``interval_provider`` is consulted on every tick and
    returns the interval in seconds, or 0 when automatic sync is off.
    """

    def __init__(
        self,
        run_sync: Callable[[str], dict],
        interval_provider: Callable[[], float],
        *,
        poll_granularity_sec: float = SCHEDULER_POLL_GRANULARITY_SEC,
        min_interval_sec: float = SCHEDULER_MIN_INTERVAL_SEC,
    ):
        self._run_sync = run_sync
        self._interval_provider = interval_provider
        self.poll_granularity_sec = poll_granularity_sec
        self.min_interval_sec = min_interval_sec

        self._run_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._state: dict[str, Any] = {
            "running": False,
            "enabled": False,
            "configured_interval_sec": 0,
            "effective_interval_sec": 0,
            "last_started_at": None,
            "last_finished_at": None,
            "last_run_type": None,
            "last_result": None,
            "last_error": None,
            "next_run_at": None,
            "skipped_busy_count": 0,
            "run_count": 0,
        }

    def _update(self, **kwargs) -> None:
        with self._state_lock:
            self._state.update(kwargs)

    def _incr(self, key: str) -> None:
        with self._state_lock:
            self._state[key] = int(self._state.get(key) or 0) + 1

    def snapshot(self) -> dict[str, Any]:
        with self._state_lock:
            snap = dict(self._state)

        next_run_at = snap.get("next_run_at")
        next_run_in_sec = None
        if isinstance(next_run_at, (int, float)):
            next_run_in_sec = max(int(next_run_at - time.time()), 0)

        return {
            **snap,
            "busy": self.busy,
            "last_started_at": _iso_from_ts(snap.get("last_started_at")),
            "last_finished_at": _iso_from_ts(snap.get("last_finished_at")),
            "next_run_at": _iso_from_ts(next_run_at),
            "next_run_in_sec": next_run_in_sec,
        }

    @property
    def busy(self) -> bool:
        return self._run_lock.locked()

    def effective_interval(self, configured: float) -> float:
        if configured <= 0:
            return 0
        return max(float(configured), self.min_interval_sec)

    def _skip_busy(self, run_type: str) -> dict:
        self._incr("skipped_busy_count")
        logger.warning("sync_skipped sync_busy run_type=%s", run_type)
        return {BUSY_SUMMARY_KEY: True, "run_type": run_type, "errors": 0}

    def run_pass(self, run_type: str = "manual") -> dict:
        """Run one pass unless another is in flight.

        Returns the pass summary, or ``{"skipped_busy": True, ...}`` when the
        in-process lock or the cross-process pass lock was held.
        """
        if not self._run_lock.acquire(blocking=False):
            return self._skip_busy(run_type)

        self._update(last_started_at=time.time(), last_run_type=run_type, last_result="running", last_error=None)
        try:
            summary = self._run_sync(run_type)
        except SyncBusyError as e:
            # Another process (e.g. `vaultsync run-once`) holds the pass lock.
            self._update(last_finished_at=time.time(), last_result="skipped_busy", last_error=str(e))
            return self._skip_busy(run_type)
        except Exception as e:
            self._incr("run_count")
            self._update(last_finished_at=time.time(), last_result="failed", last_error=str(e))
            logger.exception("sync_failed run_type=%s: %s", run_type, e)
            raise
        finally:
            self._run_lock.release()

        fatal = summary.get("fatal_error")
        errors = int(summary.get("errors") or 0)
        self._incr("run_count")
        self._update(
            last_finished_at=time.time(),
            last_result="warning" if (fatal or errors > 0) else "success",
            last_error=str(fatal) if fatal else (f"errors={errors}" if errors > 0 else None),
        )
        logger.info(
            "sync_completed run_type=%s errors=%s created=%s updated=%s deleted=%s",
            run_type,
            errors,
            summary.get("created", 0),
            summary.get("updated", 0),
            summary.get("deleted", 0),
        )
        return summary

    async def _loop(self, stop_event: asyncio.Event) -> None:
        next_run_at_ts: float | None = None
        previous_interval: float | None = None
        self._update(running=True, last_error=None, last_result=None)
        logger.info("scheduler_started")

        try:
            while not stop_event.is_set():
                try:
                    configured = float(self._interval_provider() or 0)
                except Exception as e:
                    logger.warning("scheduler_interval_unavailable: %s", e)
                    configured = 0
                interval = self.effective_interval(configured)
                self._update(
                    enabled=interval > 0,
                    configured_interval_sec=configured,
                    effective_interval_sec=interval,
                )

                if interval <= 0:
                    next_run_at_ts = None
                    previous_interval = None
                    self._update(next_run_at=None)
                    await _wait_stop_or_timeout(stop_event, self.poll_granularity_sec)
                    continue

                now_ts = time.time()
                if next_run_at_ts is None or previous_interval != interval:
                    next_run_at_ts = now_ts + interval
                previous_interval = interval
                self._update(next_run_at=next_run_at_ts)

                wait_sec = next_run_at_ts - now_ts
                if wait_sec > 0:
                    await _wait_stop_or_timeout(stop_event, min(wait_sec, self.poll_granularity_sec))
                    continue

                try:
                    await asyncio.to_thread(self.run_pass, "scheduled")
                except Exception:
                    # run_pass already logged and recorded the failure.
                    pass
                next_run_at_ts = time.time() + interval
                self._update(next_run_at=next_run_at_ts)
        finally:
            self._update(running=False, next_run_at=None)
            logger.info("scheduler_stopped")

    def start(self) -> None:
        """Start the timer loop on the running event loop."""
        if self._task and not self._task.done():
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stop_event), name="vaultsync_scheduler")

    async def stop(self) -> None:
        """Stop the timer loop; a pass already in flight runs to completion."""
        if self._stop_event is not None:
            self._stop_event.set()

        if self._task is not None:
            try:
                await self._task
            except Exception:
                logger.exception("scheduler_stop_error")

        self._task = None
        self._stop_event = None
        self._update(running=False, next_run_at=None)
