"""Periodic statistics logging utility for workers."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from core.logging.utilities import format_cycle_output

logger = logging.getLogger(__name__)

COUNTER_KEYS = ("applied", "discarded", "failed", "retried")


class PeriodicStatsLogger:
    """
    Logs worker counters on a fixed interval with per-cycle deltas.

    get_stats(cycle_count) returns extra fields holding cumulative
    records_applied / records_discarded / records_failed / records_retried.
    """

    def __init__(
        self,
        interval_seconds: int,
        get_stats: Callable[[int], dict[str, Any]],
        stage: str,
        worker_id: str,
    ):
        self.interval_seconds = interval_seconds
        self.get_stats = get_stats
        self.stage = stage
        self.worker_id = worker_id
        self._task: asyncio.Task | None = None
        self._cycle_count = 0
        self._previous: dict[str, int] = {}

    def start(self) -> None:
        if self._task is not None:
            logger.warning("Periodic logger already running")
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @staticmethod
    def _counters(extra: dict[str, Any]) -> dict[str, int]:
        return {key: extra.get(f"records_{key}", 0) for key in COUNTER_KEYS}

    def log_cycle(self) -> None:
        """Emit one cycle line. Cycle 0 carries totals only."""
        extra = self.get_stats(self._cycle_count)
        current = self._counters(extra)

        if self._cycle_count == 0:
            msg = format_cycle_output(0, current["applied"], current["discarded"], current["failed"])
            msg = f"{msg} [cycle output every {self.interval_seconds}s]"
        else:
            deltas = {key: current[key] - self._previous.get(key, 0) for key in COUNTER_KEYS}
            msg = format_cycle_output(
                cycle_count=self._cycle_count,
                applied=current["applied"],
                discarded=current["discarded"],
                failed=current["failed"],
                retried=current["retried"],
                since_last=deltas,
                interval_seconds=self.interval_seconds,
            )
            extra = {**extra, **{f"delta_{k}": v for k, v in deltas.items()}}

        self._previous = current
        logger.info(
            msg,
            extra={
                "worker_id": self.worker_id,
                "stage": self.stage,
                "cycle": self._cycle_count,
                "cycle_id": f"cycle-{self._cycle_count}",
                **extra,
            },
        )

    async def _run(self) -> None:
        self.log_cycle()
        try:
            while True:
                await asyncio.sleep(self.interval_seconds)
                self._cycle_count += 1
                self.log_cycle()
        except asyncio.CancelledError:
            logger.debug("Periodic stats logger task cancelled")
            raise
