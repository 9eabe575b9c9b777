"""Tests for PeriodicStatsLogger."""

import asyncio
import logging

import pytest

from core.logging.periodic_logger import PeriodicStatsLogger


class Counters:
    def __init__(self):
        self.applied = 0
        self.discarded = 0

    def __call__(self, cycle_count):
        return {"records_applied": self.applied, "records_discarded": self.discarded}


class TestPeriodicStatsLogger:

    def test_first_cycle_reports_totals(self, caplog):
        stats = PeriodicStatsLogger(30, Counters(), stage="upsert_consumer", worker_id="w")

        with caplog.at_level(logging.INFO, logger="core.logging.periodic_logger"):
            stats.log_cycle()

        assert "Cycle 0: processed=0" in caplog.records[-1].getMessage()
        assert "[cycle output every 30s]" in caplog.records[-1].getMessage()

    def test_later_cycles_report_deltas(self, caplog):
        counters = Counters()
        stats = PeriodicStatsLogger(10, counters, stage="upsert_consumer", worker_id="w")
        stats.log_cycle()

        counters.applied = 20
        counters.discarded = 5
        stats._cycle_count = 1
        with caplog.at_level(logging.INFO, logger="core.logging.periodic_logger"):
            stats.log_cycle()

        record = caplog.records[-1]
        assert record.getMessage().startswith("Cycle 1: +25 this cycle")
        assert record.delta_applied == 20
        assert record.delta_discarded == 5
        assert record.records_applied == 20

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        stats = PeriodicStatsLogger(3600, Counters(), stage="upsert_consumer", worker_id="w")

        stats.start()
        stats.start()
        await asyncio.sleep(0)
        await stats.stop()
        await stats.stop()

        assert stats._task is None
