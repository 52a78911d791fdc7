from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from threading import Lock
from time import perf_counter
from typing import Any

from stayflow.core.config import settings
from stayflow.scheduling.generator import (
    dispatch_due_messages,
    generate_for_recent_reservations,
    reconcile_future_arrivals,
)
from stayflow.schemas.common import DispatchSummary, GenerationSummary

logger = logging.getLogger(__name__)


class SchedulerBusyError(Exception):
    """A scheduler run was requested while another one is still in progress."""


class _MonitorState:
    def __init__(self) -> None:
        self._lock = Lock()
        self._state: dict[str, Any] = {
            "enabled": settings.feature_message_scheduler,
            "dispatch_enabled": settings.scheduled_dispatch_enabled,
            "running": False,
            "interval_sec": settings.message_scheduler_interval_sec,
            "ticks": 0,
            "last_started_at": None,
            "last_finished_at": None,
            "last_success_at": None,
            "last_duration_ms": None,
            "runs_total": 0,
            "consecutive_failures": 0,
            "last_error": None,
            "last_generation": None,
            "last_reconcile": None,
            "last_dispatch": None,
        }

    def begin_run(self) -> int:
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            if self._state["running"]:
                raise SchedulerBusyError("Message scheduler is already running.")
            self._state["running"] = True
            self._state["last_started_at"] = now
            self._state["last_error"] = None
            self._state["ticks"] = int(self._state["ticks"]) + 1
            return int(self._state["ticks"])

    def complete_success(
        self,
        *,
        duration_ms: float,
        generation: GenerationSummary,
        reconcile: GenerationSummary | None,
        dispatch: DispatchSummary,
    ) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            self._state["running"] = False
            self._state["last_finished_at"] = now
            self._state["last_success_at"] = now
            self._state["last_duration_ms"] = round(duration_ms, 2)
            self._state["runs_total"] = int(self._state["runs_total"]) + 1
            self._state["consecutive_failures"] = 0
            self._state["last_generation"] = generation.model_dump()
            if reconcile is not None:
                self._state["last_reconcile"] = reconcile.model_dump()
            self._state["last_dispatch"] = dispatch.model_dump()
            self._state["dispatch_enabled"] = dispatch.enabled

    def complete_failure(self, *, duration_ms: float, error: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            self._state["running"] = False
            self._state["last_finished_at"] = now
            self._state["last_duration_ms"] = round(duration_ms, 2)
            self._state["runs_total"] = int(self._state["runs_total"]) + 1
            self._state["consecutive_failures"] = int(self._state["consecutive_failures"]) + 1
            self._state["last_error"] = error

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._state)


_monitor_state = _MonitorState()


def _reconcile_due(tick: int) -> bool:
    every = max(1, int(settings.message_reconcile_interval_ticks))
    return tick == 1 or tick % every == 0


def run_message_scheduler_once_now() -> dict[str, Any]:
    tick = _monitor_state.begin_run()
    start = perf_counter()
    try:
        generation = generate_for_recent_reservations()
        reconcile = reconcile_future_arrivals() if _reconcile_due(tick) else None
        dispatch = dispatch_due_messages()
        _monitor_state.complete_success(
            duration_ms=(perf_counter() - start) * 1000,
            generation=generation,
            reconcile=reconcile,
            dispatch=dispatch,
        )
        logger.info(
            "Message scheduler tick ok: tick=%s generation=%s reconcile=%s dispatch=%s",
            tick,
            generation.model_dump(),
            reconcile.model_dump() if reconcile else None,
            dispatch.model_dump(),
        )
    except Exception as exc:  # noqa: BLE001
        _monitor_state.complete_failure(duration_ms=(perf_counter() - start) * 1000, error=str(exc))
        logger.exception("Message scheduler tick failed: tick=%s", tick)
    return _monitor_state.snapshot()


def get_scheduler_monitor_snapshot() -> dict[str, Any]:
    return _monitor_state.snapshot()


async def message_scheduler_loop() -> None:
    interval = max(15, int(settings.message_scheduler_interval_sec))
    logger.info("Message scheduler started (interval_sec=%s)", interval)
    try:
        while True:
            try:
                await asyncio.to_thread(run_message_scheduler_once_now)
            except SchedulerBusyError:
                logger.info("Message scheduler tick skipped: previous run still in progress")
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        logger.info("Message scheduler stopped")
        raise
