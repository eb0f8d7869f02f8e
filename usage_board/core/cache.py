"""
Coalescing write cache for usage events.

Accumulates high-frequency usage events in memory, keyed by user,
username, model and hour bucket, and periodically writes the totals to
storage in one pass.
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Dict, List

from usage_board.storage.models import PendingDelta, RecordKey
from usage_board.storage.repository import UsageRepository

from .bucketing import floor_to_hour

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlushResult:
    """Outcome of one flush pass."""
    inserted: int = 0
    updated: int = 0
    failed: int = 0

    @property
    def saved(self) -> int:
        return self.inserted + self.updated


class UsageCache:
    """In-memory accumulator of usage deltas awaiting a flush.

    ``record`` only touches memory under a short lock. ``flush`` swaps the
    pending map for an empty one under that same lock and writes the
    snapshot afterwards, so events recorded during a flush land in the
    next cycle. Deltas that fail to write are logged and dropped.
    """

    def __init__(self, repository: UsageRepository):
        self.repository = repository
        self._pending: Dict[RecordKey, PendingDelta] = {}
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()

    def record(
        self,
        user_id: int,
        username: str,
        model_name: str,
        quota: int,
        created_at: int,
        token_used: int
    ) -> None:
        """Accumulate one usage event into its hour bucket.

        Args:
            user_id: Owning account
            username: Display name at the time of the event
            model_name: Model or resource consumed
            quota: Quota cost of the event
            created_at: Unix timestamp of the event
            token_used: Tokens consumed by the event
        """
        bucket = floor_to_hour(created_at)
        key = (user_id, username, model_name, bucket)

        with self._lock:
            delta = self._pending.get(key)
            if delta is None:
                self._pending[key] = PendingDelta(
                    user_id=user_id,
                    username=username,
                    model_name=model_name,
                    bucket_start=bucket,
                    call_count=1,
                    quota_consumed=quota,
                    token_used=token_used
                )
            else:
                delta.absorb(quota, token_used)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def snapshot(self) -> List[PendingDelta]:
        """Return copies of the pending deltas without draining them."""
        with self._lock:
            return [replace(delta) for delta in self._pending.values()]

    def drain(self) -> List[PendingDelta]:
        """Take every pending delta and leave an empty map in place."""
        with self._lock:
            pending, self._pending = self._pending, {}
        return list(pending.values())

    def flush(self) -> FlushResult:
        """Write all pending deltas to storage.

        Only one flush runs at a time. A flush with nothing pending does
        not touch storage.

        Returns:
            Counts of inserted, updated and failed rows
        """
        with self._flush_lock:
            deltas = self.drain()
            if not deltas:
                logger.debug("No usage data pending, skipping flush")
                return FlushResult()

            inserted = updated = failed = 0
            for delta in deltas:
                try:
                    outcome = self.repository.save_delta(delta)
                except Exception:
                    failed += 1
                    logger.exception(
                        "Failed to save usage data for user=%s model=%s bucket=%s",
                        delta.user_id, delta.model_name, delta.bucket_start
                    )
                    continue
                if outcome == "inserted":
                    inserted += 1
                else:
                    updated += 1

            result = FlushResult(inserted=inserted, updated=updated, failed=failed)
            logger.info(
                "Saved usage data: %d rows (%d inserted, %d updated, %d failed)",
                result.saved, inserted, updated, failed
            )
            return result
