"""
Data models for storage layer.

Defines the hourly usage row, the in-memory pending delta and the
query-time aggregate projection.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional, Tuple

# Model name reported for rows that sum across every model
ALL_MODELS = "all"

RecordKey = Tuple[int, str, str, int]


@dataclass(frozen=True)
class UsageRecord:
    """Durable usage row, one per user, username, model and hour bucket.

    The username is copied at write time and is not updated when the
    account is renamed later.
    """
    user_id: int
    username: str
    model_name: str
    bucket_start: int
    token_used: int = 0
    call_count: int = 0
    quota_consumed: int = 0
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PendingDelta:
    """Unflushed usage accumulated for one composite key since the last flush."""
    user_id: int
    username: str
    model_name: str
    bucket_start: int
    call_count: int = 1
    quota_consumed: int = 0
    token_used: int = 0

    @property
    def key(self) -> RecordKey:
        return (self.user_id, self.username, self.model_name, self.bucket_start)

    def absorb(self, quota: int, token_used: int) -> None:
        """Fold one more usage event into this delta."""
        self.call_count += 1
        self.quota_consumed += quota
        self.token_used += token_used


@dataclass(frozen=True)
class AggregatedStat:
    """Summed usage for one bucket, per model or across all models."""
    bucket_start: int
    model_name: str
    token_used: int
    call_count: int
    quota_consumed: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
