"""
Unit tests for the periodic flush scheduler.
"""

import threading
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from usage_board.core.cache import FlushResult
from usage_board.core.scheduler import FLUSH_JOB_ID, FlushScheduler

# Roughly 60ms between ticks
FAST_INTERVAL_MINUTES = 0.001


class TestFlushScheduler:
    """Test scheduling, disabling and shutdown."""

    def test_invalid_interval_rejected(self):
        with pytest.raises(ValueError):
            FlushScheduler(MagicMock(), interval_minutes=0)

    def test_run_once_flushes_when_enabled(self):
        cache = MagicMock()
        cache.flush.return_value = FlushResult(inserted=2)
        scheduler = FlushScheduler(cache)

        assert scheduler.run_once() == FlushResult(inserted=2)
        cache.flush.assert_called_once()

    def test_run_once_skips_when_disabled(self):
        cache = MagicMock()
        scheduler = FlushScheduler(cache, enabled=False)

        assert scheduler.run_once() is None
        cache.flush.assert_not_called()

    def test_flush_error_is_logged_not_raised(self):
        cache = MagicMock()
        cache.flush.side_effect = RuntimeError("boom")
        scheduler = FlushScheduler(cache)

        assert scheduler.run_once() is None

    def test_background_loop_flushes_periodically(self):
        cache = MagicMock()
        flushed = threading.Event()
        cache.flush.side_effect = lambda: flushed.set()
        scheduler = FlushScheduler(cache, interval_minutes=FAST_INTERVAL_MINUTES, flush_on_stop=False)

        scheduler.start()
        try:
            assert flushed.wait(5)
        finally:
            scheduler.stop()

        assert not scheduler.running

    def test_stop_is_prompt_and_drains(self):
        """Stopping does not wait out a long interval and flushes once more."""
        cache = MagicMock()
        scheduler = FlushScheduler(cache, interval_minutes=60)

        scheduler.start()
        assert scheduler.running
        scheduler.stop()

        assert not scheduler.running
        cache.flush.assert_called_once()

    def test_stop_without_drain(self):
        cache = MagicMock()
        scheduler = FlushScheduler(cache, interval_minutes=60, flush_on_stop=False)

        scheduler.start()
        scheduler.stop()

        cache.flush.assert_not_called()

    def test_start_twice_keeps_one_scheduler(self):
        scheduler = FlushScheduler(MagicMock(), interval_minutes=60, flush_on_stop=False)

        scheduler.start()
        first = scheduler.scheduler
        scheduler.start()
        try:
            assert scheduler.scheduler is first
            assert len(first.get_jobs()) == 1
        finally:
            scheduler.stop()

    def test_flush_job_never_overlaps(self):
        scheduler = FlushScheduler(MagicMock(), interval_minutes=60, flush_on_stop=False)

        scheduler.start()
        try:
            job = scheduler.scheduler.get_job(FLUSH_JOB_ID)
            assert job.max_instances == 1
            assert job.coalesce
            assert job.trigger.interval == timedelta(minutes=60)
        finally:
            scheduler.stop()

    def test_restart_after_stop(self):
        """A stopped scheduler can be started again with a single flush job."""
        cache = MagicMock()
        flushed = threading.Event()
        cache.flush.side_effect = lambda: flushed.set()
        scheduler = FlushScheduler(cache, interval_minutes=FAST_INTERVAL_MINUTES, flush_on_stop=False)

        scheduler.start()
        scheduler.stop()
        assert scheduler.scheduler is None
        flushed.clear()

        scheduler.start()
        try:
            assert scheduler.running
            assert len(scheduler.scheduler.get_jobs()) == 1
            assert flushed.wait(5)
        finally:
            scheduler.stop()

        assert not scheduler.running

    def test_stop_waits_for_in_flight_flush(self):
        """stop() returns only after a running flush has finished."""
        cache = MagicMock()
        started = threading.Event()
        release = threading.Event()
        finished = threading.Event()

        def slow_flush():
            started.set()
            release.wait(5)
            finished.set()

        cache.flush.side_effect = slow_flush
        scheduler = FlushScheduler(cache, interval_minutes=FAST_INTERVAL_MINUTES, flush_on_stop=False)

        scheduler.start()
        assert started.wait(5)
        threading.Timer(0.2, release.set).start()
        scheduler.stop()

        assert finished.is_set()
        assert not scheduler.running

    def test_stop_when_not_running_is_noop(self):
        cache = MagicMock()
        FlushScheduler(cache).stop()
        cache.flush.assert_not_called()
