"""
Aggregation queries over stored usage.

Reads go straight to storage and never consult the write cache.
"""

from typing import List, Union

from usage_board.storage.models import AggregatedStat, UsageRecord
from usage_board.storage.repository import UsageRepository

from .bucketing import Granularity, bucket_expression

GranularityLike = Union[Granularity, str]


class StatsQueryEngine:
    """Builds bucketed usage queries for the dashboard.

    Hour is the stored granularity; day, week and month buckets are
    computed at query time from the hourly rows using the timezone offset
    given here.
    """

    def __init__(self, repository: UsageRepository, timezone_offset: int = 0):
        self.repository = repository
        self.timezone_offset = timezone_offset

    def _bucket_sql(self, granularity: Granularity) -> str:
        return bucket_expression(
            granularity, self.repository.family, self.timezone_offset
        ).sql

    def query_by_user(self, user_id: int, start_time: int, end_time: int) -> List[UsageRecord]:
        """Hourly rows for one user, one per model per hour."""
        return self.repository.fetch_records(start_time, end_time, user_id=user_id)

    def query_by_username(self, username: str, start_time: int, end_time: int) -> List[UsageRecord]:
        """Hourly rows recorded under one username."""
        return self.repository.fetch_records(start_time, end_time, username=username)

    def query_by_user_with_granularity(
        self,
        user_id: int,
        start_time: int,
        end_time: int,
        granularity: GranularityLike
    ) -> Union[List[UsageRecord], List[AggregatedStat]]:
        """Per-user usage re-bucketed to the requested granularity.

        Hour returns the stored rows unchanged. Coarser granularities sum
        per model and bucket.
        """
        granularity = Granularity.parse(granularity)
        if granularity is Granularity.HOUR:
            return self.query_by_user(user_id, start_time, end_time)
        return self.repository.fetch_aggregates(
            self._bucket_sql(granularity),
            start_time,
            end_time,
            user_id=user_id,
            group_by_model=True
        )

    def query_global(
        self,
        start_time: int,
        end_time: int,
        username: str = "",
        granularity: GranularityLike = Granularity.HOUR
    ) -> List[AggregatedStat]:
        """Usage across all users, one row per model per bucket.

        Args:
            start_time: Inclusive lower bound, Unix seconds
            end_time: Inclusive upper bound, Unix seconds
            username: Restrict to one username; empty means everyone
            granularity: Bucket width

        Returns:
            Aggregates ordered by bucket ascending
        """
        granularity = Granularity.parse(granularity)
        return self.repository.fetch_aggregates(
            self._bucket_sql(granularity),
            start_time,
            end_time,
            username=username or None,
            group_by_model=True
        )

    def query_global_ungrouped(
        self,
        start_time: int,
        end_time: int,
        username: str = "",
        granularity: GranularityLike = Granularity.HOUR
    ) -> List[AggregatedStat]:
        """Usage across all users and models, one "all" row per bucket."""
        granularity = Granularity.parse(granularity)
        return self.repository.fetch_aggregates(
            self._bucket_sql(granularity),
            start_time,
            end_time,
            username=username or None,
            group_by_model=False
        )
