"""
Unit tests for the coalescing write cache.

Tests accumulation, hour bucketing, flush draining and per-row failure
handling.
"""

import os
import sqlite3
import tempfile
import threading
from unittest.mock import MagicMock

from usage_board.core.cache import FlushResult, UsageCache
from usage_board.storage.repository import UsageRepository, initialize_schema


class TestRecord:
    """Test in-memory accumulation."""

    def setup_method(self):
        self.repository = MagicMock()
        self.cache = UsageCache(self.repository)

    def test_first_event_creates_delta(self):
        """A new key starts with a call count of one."""
        self.cache.record(1, "alice", "gpt-4", 10, 3650, 5)

        deltas = self.cache.snapshot()
        assert len(deltas) == 1
        delta = deltas[0]
        assert delta.key == (1, "alice", "gpt-4", 3600)
        assert delta.call_count == 1
        assert delta.quota_consumed == 10
        assert delta.token_used == 5

    def test_same_key_accumulates(self):
        """Events for the same key and hour sum exactly."""
        events = [(10, 5), (20, 7), (3, 0), (0, 100)]
        for quota, tokens in events:
            self.cache.record(1, "alice", "gpt-4", quota, 3600 + 59, tokens)

        deltas = self.cache.snapshot()
        assert len(deltas) == 1
        assert deltas[0].call_count == 4
        assert deltas[0].quota_consumed == 33
        assert deltas[0].token_used == 112

    def test_sub_hour_timestamps_share_bucket(self):
        """Timestamps 100 and 3599 both land in the bucket starting at 0."""
        self.cache.record(1, "alice", "gpt-4", 1, 100, 1)
        self.cache.record(1, "alice", "gpt-4", 1, 3599, 1)

        deltas = self.cache.snapshot()
        assert len(deltas) == 1
        assert deltas[0].bucket_start == 0
        assert deltas[0].call_count == 2

    def test_distinct_keys_stay_separate(self):
        self.cache.record(1, "alice", "gpt-4", 1, 100, 1)
        self.cache.record(1, "alice", "gpt-3", 1, 100, 1)
        self.cache.record(2, "bob", "gpt-4", 1, 100, 1)
        self.cache.record(1, "alice", "gpt-4", 1, 3600, 1)
        assert self.cache.pending_count == 4

    def test_record_performs_no_io(self):
        self.cache.record(1, "alice", "gpt-4", 10, 3650, 5)
        assert self.repository.method_calls == []

    def test_snapshot_is_a_copy(self):
        """Mutating a snapshot does not affect the pending delta."""
        self.cache.record(1, "alice", "gpt-4", 10, 3650, 5)
        self.cache.snapshot()[0].absorb(1000, 1000)
        assert self.cache.snapshot()[0].quota_consumed == 10

    def test_concurrent_records_are_not_lost(self):
        """Many producers hitting one key produce exact totals."""
        def produce():
            for _ in range(500):
                self.cache.record(1, "alice", "gpt-4", 2, 3700, 3)

        threads = [threading.Thread(target=produce) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        delta = self.cache.snapshot()[0]
        assert delta.call_count == 4000
        assert delta.quota_consumed == 8000
        assert delta.token_used == 12000


class TestFlush:
    """Test draining the cache to storage."""

    def test_empty_flush_writes_nothing(self):
        """Flushing with nothing pending never touches storage."""
        repository = MagicMock()
        cache = UsageCache(repository)

        assert cache.flush() == FlushResult()
        repository.save_delta.assert_not_called()

    def test_second_flush_writes_nothing(self):
        """A flush leaves the cache empty."""
        repository = MagicMock()
        repository.save_delta.return_value = "inserted"
        cache = UsageCache(repository)
        cache.record(1, "alice", "gpt-4", 10, 3650, 5)

        assert cache.flush().inserted == 1
        assert cache.pending_count == 0
        cache.flush()
        assert repository.save_delta.call_count == 1

    def test_failed_delta_is_dropped_and_batch_continues(self):
        """A storage error on one row is logged and the rest still flush."""
        repository = MagicMock()
        repository.save_delta.side_effect = [sqlite3.OperationalError("database is locked"), "updated"]
        cache = UsageCache(repository)
        cache.record(1, "alice", "gpt-4", 10, 3650, 5)
        cache.record(2, "bob", "gpt-4", 10, 3650, 5)

        result = cache.flush()

        assert result.failed == 1
        assert result.updated == 1
        assert result.saved == 1
        assert repository.save_delta.call_count == 2
        assert cache.pending_count == 0

        # The failed delta is not retried on the next cycle
        cache.flush()
        assert repository.save_delta.call_count == 2

    def test_events_recorded_during_flush_wait_for_next_cycle(self):
        """Producers are never blocked by, or lost to, an in-flight flush."""
        repository = MagicMock()
        cache = UsageCache(repository)

        def save(delta):
            cache.record(9, "late", "gpt-4", 1, 3650, 1)
            return "inserted"

        repository.save_delta.side_effect = save
        cache.record(1, "alice", "gpt-4", 10, 3650, 5)

        result = cache.flush()

        assert result.inserted == 1
        assert cache.pending_count == 1
        assert cache.snapshot()[0].username == "late"


class TestFlushToDatabase:
    """Test the cache against a real SQLite database."""

    def setup_method(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, "test.db")
        initialize_schema(self.db_path)
        self.repository = UsageRepository(self.db_path)
        self.cache = UsageCache(self.repository)

    def teardown_method(self):
        self.temp_dir.cleanup()

    def test_accumulated_events_produce_one_row(self):
        """Two events in the same hour flush to a single summed row."""
        self.cache.record(1, "alice", "gpt-4", 10, 3650, 5)
        self.cache.record(1, "alice", "gpt-4", 20, 3700, 7)

        result = self.cache.flush()
        assert result.inserted == 1

        records = self.repository.fetch_records(0, 7200, user_id=1)
        assert len(records) == 1
        assert records[0].bucket_start == 3600
        assert records[0].call_count == 2
        assert records[0].quota_consumed == 30
        assert records[0].token_used == 12

    def test_later_flush_increments_existing_row(self):
        """Separate flush cycles for the same key add onto one row."""
        self.cache.record(1, "alice", "gpt-4", 10, 3650, 5)
        self.cache.flush()
        self.cache.record(1, "alice", "gpt-4", 20, 3700, 7)

        result = self.cache.flush()
        assert result.updated == 1

        records = self.repository.fetch_records(0, 7200)
        assert len(records) == 1
        assert records[0].call_count == 2
        assert records[0].quota_consumed == 30
        assert records[0].token_used == 12

    def test_overlapping_flushes_keep_one_row_per_key(self):
        """Concurrent flush calls are serialized and never duplicate rows."""
        def produce_and_flush():
            for _ in range(20):
                self.cache.record(1, "alice", "gpt-4", 1, 3650, 1)
                self.cache.flush()

        threads = [threading.Thread(target=produce_and_flush) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.cache.flush()

        records = self.repository.fetch_records(0, 7200)
        assert len(records) == 1
        assert records[0].call_count == 80
