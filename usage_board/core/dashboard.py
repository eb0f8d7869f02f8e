"""
Dashboard request handling.

Validates query parameters and wraps query results in the
success/message/data envelope the dashboard expects.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .bucketing import Granularity
from .queries import StatsQueryEngine

logger = logging.getLogger(__name__)

# Widest range a single user may request: 30 days
MAX_USER_RANGE_SECONDS = 2592000

INVALID_GRANULARITY_MESSAGE = "invalid granularity, expected one of: hour, day, week, month"
RANGE_TOO_WIDE_MESSAGE = "time range cannot exceed 30 days"


@dataclass
class DashboardResponse:
    """Result envelope returned to the request layer."""
    success: bool
    message: str = ""
    data: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "data": [item.to_dict() for item in self.data],
        }


def _failure(message: str) -> DashboardResponse:
    return DashboardResponse(success=False, message=message)


def get_all_quota_dates(
    engine: StatsQueryEngine,
    start_timestamp: int,
    end_timestamp: int,
    username: str = "",
    granularity: str = "hour",
    group_by_model: bool = True
) -> DashboardResponse:
    """Site-wide usage, optionally for a single username.

    Args:
        engine: Query engine bound to storage
        start_timestamp: Inclusive lower bound, Unix seconds
        end_timestamp: Inclusive upper bound, Unix seconds
        username: Optional username filter; empty means all users
        granularity: One of hour, day, week, month
        group_by_model: One row per model per bucket, or one "all" row per bucket

    Returns:
        DashboardResponse carrying AggregatedStat rows on success
    """
    try:
        unit = Granularity.parse(granularity)
    except ValueError:
        return _failure(INVALID_GRANULARITY_MESSAGE)

    try:
        if group_by_model:
            data = engine.query_global(start_timestamp, end_timestamp, username, unit)
        else:
            data = engine.query_global_ungrouped(start_timestamp, end_timestamp, username, unit)
    except Exception as e:
        logger.error(f"Failed to query usage statistics: {e}")
        return _failure(str(e))

    return DashboardResponse(success=True, data=data)


def get_user_quota_dates(
    engine: StatsQueryEngine,
    user_id: int,
    start_timestamp: int,
    end_timestamp: int,
    granularity: str = "hour"
) -> DashboardResponse:
    """Usage for one user over at most 30 days.

    Hour returns stored UsageRecord rows; coarser granularities return
    AggregatedStat rows per model.
    """
    if end_timestamp - start_timestamp > MAX_USER_RANGE_SECONDS:
        return _failure(RANGE_TOO_WIDE_MESSAGE)

    try:
        unit = Granularity.parse(granularity)
    except ValueError:
        return _failure(INVALID_GRANULARITY_MESSAGE)

    try:
        data = engine.query_by_user_with_granularity(
            user_id, start_timestamp, end_timestamp, unit
        )
    except Exception as e:
        logger.error(f"Failed to query usage statistics for user {user_id}: {e}")
        return _failure(str(e))

    return DashboardResponse(success=True, data=data)
