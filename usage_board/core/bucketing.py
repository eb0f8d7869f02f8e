"""
Time bucketing for usage aggregation.

Maps each (granularity, database family) pair to the SQL expression that
computes a row's bucket start, and mirrors the same arithmetic in Python.

Day and week buckets floor to a fixed width with a modulo expression, so
timestamps before the shifted epoch land in the bucket below rather than
being truncated toward zero. Month buckets need calendar-aware truncation
because months differ in length. Every expression shifts by the configured
timezone offset before truncating and shifts back afterwards, so boundaries
fall on local midnight.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Tuple, Union

from usage_board.storage.db import DatabaseFamily

HOUR_SECONDS = 3600
DAY_SECONDS = 86400
WEEK_SECONDS = 604800
# 1970-01-01 was a Thursday; shifting by three days puts week starts on Monday
MONDAY_OFFSET = 3 * DAY_SECONDS

BUCKET_COLUMN = "bucket_start"


class Granularity(Enum):
    """Bucket widths a dashboard query can ask for."""
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"

    @classmethod
    def parse(cls, value: Union["Granularity", str]) -> "Granularity":
        """Resolve a granularity token.

        Raises:
            ValueError: If the token is not one of hour, day, week, month
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(g.value for g in cls)
            raise ValueError(f"invalid granularity {value!r}, expected one of: {valid}")


@dataclass(frozen=True)
class BucketExpression:
    """SQL that computes a bucket start for one granularity and backend."""
    granularity: Granularity
    family: DatabaseFamily
    sql: str
    calendar: bool = False


def _mod_operator(a: str, b: int) -> str:
    return f"({a} % {b})"


def _mod_function(a: str, b: int) -> str:
    return f"MOD({a}, {b})"


def _fixed_width(width: int, shift: int, mod: Callable[[str, int], str]) -> Callable[[str, int], str]:
    # x - ((x mod w) + w) mod w floors toward negative infinity; plain
    # integer division truncates toward zero on every supported backend
    def build(column: str, tz: int) -> str:
        if shift:
            shifted = f"({column} + {tz} + {shift})"
            tail = f" - {shift} - {tz}"
        else:
            shifted = f"({column} + {tz})"
            tail = f" - {tz}"
        wrapped = f"({mod(shifted, width)} + {width})"
        return f"{shifted} - {mod(wrapped, width)}{tail}"
    return build


def _identity(column: str, tz: int) -> str:
    return column


def _month_postgresql(column: str, tz: int) -> str:
    return (
        f"EXTRACT(EPOCH FROM DATE_TRUNC('month', TO_TIMESTAMP({column} + {tz}))) - {tz}"
    )


def _month_sqlite(column: str, tz: int) -> str:
    return (
        f"CAST(STRFTIME('%s', DATE({column} + {tz}, 'unixepoch', 'start of month')) AS INTEGER) - {tz}"
    )


def _month_mysql(column: str, tz: int) -> str:
    return (
        f"UNIX_TIMESTAMP(DATE_FORMAT(FROM_UNIXTIME({column} + {tz}), '%Y-%m-01')) - {tz}"
    )


_STRATEGIES: Dict[Tuple[Granularity, DatabaseFamily], Callable[[str, int], str]] = {}

for _family in DatabaseFamily:
    _mod = _mod_operator if _family is DatabaseFamily.SQLITE else _mod_function
    _STRATEGIES[(Granularity.HOUR, _family)] = _identity
    _STRATEGIES[(Granularity.DAY, _family)] = _fixed_width(DAY_SECONDS, 0, _mod)
    _STRATEGIES[(Granularity.WEEK, _family)] = _fixed_width(WEEK_SECONDS, MONDAY_OFFSET, _mod)

_STRATEGIES[(Granularity.MONTH, DatabaseFamily.POSTGRESQL)] = _month_postgresql
_STRATEGIES[(Granularity.MONTH, DatabaseFamily.SQLITE)] = _month_sqlite
_STRATEGIES[(Granularity.MONTH, DatabaseFamily.MYSQL)] = _month_mysql


def bucket_expression(
    granularity: Union[Granularity, str],
    family: DatabaseFamily,
    timezone_offset: int = 0,
    column: str = BUCKET_COLUMN
) -> BucketExpression:
    """Build the bucket-start expression for a granularity on a backend.

    Args:
        granularity: Requested bucket width
        family: Backend the SQL will run on
        timezone_offset: Seconds east of UTC used to place bucket boundaries
        column: Column holding the stored hour bucket

    Returns:
        BucketExpression describing the SQL to group and select on
    """
    granularity = Granularity.parse(granularity)
    build = _STRATEGIES[(granularity, family)]
    return BucketExpression(
        granularity=granularity,
        family=family,
        sql=build(column, int(timezone_offset)),
        calendar=granularity is Granularity.MONTH
    )


def floor_to_hour(timestamp: int) -> int:
    """Truncate a Unix timestamp to the start of its hour."""
    timestamp = int(timestamp)
    return timestamp - timestamp % HOUR_SECONDS


def bucket_start(
    timestamp: int,
    granularity: Union[Granularity, str],
    timezone_offset: int = 0
) -> int:
    """Compute in Python the bucket start the SQL expressions produce."""
    granularity = Granularity.parse(granularity)
    timestamp = int(timestamp)
    tz = int(timezone_offset)

    if granularity is Granularity.HOUR:
        return floor_to_hour(timestamp)
    if granularity is Granularity.DAY:
        return ((timestamp + tz) // DAY_SECONDS) * DAY_SECONDS - tz
    if granularity is Granularity.WEEK:
        shifted = timestamp + tz + MONDAY_OFFSET
        return (shifted // WEEK_SECONDS) * WEEK_SECONDS - MONDAY_OFFSET - tz

    local = datetime.fromtimestamp(timestamp + tz, tz=timezone.utc)
    first = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return int(first.timestamp()) - tz
