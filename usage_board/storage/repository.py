"""
Repository pattern for data access.

Handles the insert-or-increment writes used by the flush path and the
range and aggregate reads used by the dashboard queries.
"""

from typing import Any, Callable, List, Optional, Sequence

from .db import DatabaseFamily, get_connection
from .models import ALL_MODELS, AggregatedStat, PendingDelta, RecordKey, UsageRecord

TABLE_NAME = "usage_records"

_RECORD_COLUMNS = (
    "id, user_id, username, model_name, bucket_start, "
    "token_used, call_count, quota_consumed"
)


class UsageRepository:
    """Repository for reading and writing hourly usage rows.

    SQLite is used through ``get_connection`` unless a DB-API ``connect``
    callable is supplied, which is how MySQL and PostgreSQL drivers are
    plugged in. The database family decides the parameter marker.
    """

    def __init__(
        self,
        db_path: str = "usage_board.db",
        family: DatabaseFamily = DatabaseFamily.SQLITE,
        connect: Optional[Callable[[], Any]] = None
    ):
        """Initialize the repository.

        Args:
            db_path: Path to SQLite database file
            family: Backend family of the connections this repository uses
            connect: Optional zero-argument connection factory
        """
        self.db_path = db_path
        self.family = family
        self._connect = connect or (lambda: get_connection(self.db_path))

    @property
    def placeholder(self) -> str:
        return self.family.placeholder

    def connect(self):
        return self._connect()

    def find_record_id(self, conn, key: RecordKey) -> Optional[int]:
        """Return the id of the row matching the composite key, or None."""
        p = self.placeholder
        cursor = conn.cursor()
        cursor.execute(
            f"SELECT id FROM {TABLE_NAME} "
            f"WHERE user_id = {p} AND username = {p} AND model_name = {p} AND bucket_start = {p}",
            key
        )
        row = cursor.fetchone()
        return row[0] if row else None

    def increase_record(self, conn, delta: PendingDelta) -> int:
        """Add a delta's counters onto the existing row for its key.

        Returns:
            Number of rows touched
        """
        p = self.placeholder
        cursor = conn.cursor()
        cursor.execute(
            f"UPDATE {TABLE_NAME} SET "
            f"call_count = call_count + {p}, "
            f"quota_consumed = quota_consumed + {p}, "
            f"token_used = token_used + {p} "
            f"WHERE user_id = {p} AND username = {p} AND model_name = {p} AND bucket_start = {p}",
            (delta.call_count, delta.quota_consumed, delta.token_used) + delta.key
        )
        return cursor.rowcount

    def insert_record(self, conn, delta: PendingDelta) -> None:
        """Insert a new row seeded from a delta."""
        p = self.placeholder
        cursor = conn.cursor()
        cursor.execute(
            f"INSERT INTO {TABLE_NAME} "
            f"(user_id, username, model_name, bucket_start, token_used, call_count, quota_consumed) "
            f"VALUES ({p}, {p}, {p}, {p}, {p}, {p}, {p})",
            delta.key + (delta.token_used, delta.call_count, delta.quota_consumed)
        )

    def save_delta(self, delta: PendingDelta) -> str:
        """Persist one delta, incrementing the matching row or inserting it.

        This is a check-then-write sequence, not an atomic upsert, so it is
        only safe while a single flush writes at a time.

        Returns:
            "updated" if an existing row was incremented, "inserted" otherwise

        Raises:
            Any driver error; the transaction is rolled back first
        """
        conn = self.connect()
        try:
            if self.find_record_id(conn, delta.key) is not None:
                self.increase_record(conn, delta)
                outcome = "updated"
            else:
                self.insert_record(conn, delta)
                outcome = "inserted"
            conn.commit()
            return outcome
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def fetch_records(
        self,
        start_time: int,
        end_time: int,
        user_id: Optional[int] = None,
        username: Optional[str] = None
    ) -> List[UsageRecord]:
        """Fetch raw hourly rows whose bucket falls in [start_time, end_time].

        Args:
            start_time: Inclusive lower bound, Unix seconds
            end_time: Inclusive upper bound, Unix seconds
            user_id: Optional owning account filter
            username: Optional username filter

        Returns:
            Rows ordered by bucket ascending
        """
        where, params = self._range_filter(start_time, end_time, user_id, username)
        query = (
            f"SELECT {_RECORD_COLUMNS} FROM {TABLE_NAME} WHERE {where} "
            f"ORDER BY bucket_start ASC, model_name ASC, id ASC"
        )
        rows = self._fetch_all(query, params)
        return [
            UsageRecord(
                id=row[0],
                user_id=row[1],
                username=row[2],
                model_name=row[3],
                bucket_start=int(row[4]),
                token_used=int(row[5]),
                call_count=int(row[6]),
                quota_consumed=int(row[7])
            )
            for row in rows
        ]

    def fetch_aggregates(
        self,
        bucket_sql: str,
        start_time: int,
        end_time: int,
        user_id: Optional[int] = None,
        username: Optional[str] = None,
        group_by_model: bool = True
    ) -> List[AggregatedStat]:
        """Sum usage per bucket (and per model) over a time range.

        Args:
            bucket_sql: SQL expression computing each row's bucket start
            start_time: Inclusive lower bound on the stored hour bucket
            end_time: Inclusive upper bound on the stored hour bucket
            user_id: Optional owning account filter
            username: Optional username filter
            group_by_model: Keep one row per model, or collapse models into "all"

        Returns:
            Aggregates ordered by bucket ascending
        """
        if self.placeholder == "%s":
            # format-style drivers treat a bare % as a parameter marker
            bucket_sql = bucket_sql.replace("%", "%%")

        where, params = self._range_filter(start_time, end_time, user_id, username)
        sums = "SUM(token_used), SUM(call_count), SUM(quota_consumed)"
        if group_by_model:
            query = (
                f"SELECT {bucket_sql} AS bucket, model_name, {sums} "
                f"FROM {TABLE_NAME} WHERE {where} "
                f"GROUP BY model_name, {bucket_sql} "
                f"ORDER BY bucket ASC, model_name ASC"
            )
        else:
            query = (
                f"SELECT {bucket_sql} AS bucket, {sums} "
                f"FROM {TABLE_NAME} WHERE {where} "
                f"GROUP BY {bucket_sql} "
                f"ORDER BY bucket ASC"
            )

        stats = []
        for row in self._fetch_all(query, params):
            if group_by_model:
                bucket, model_name, tokens, calls, quota = row
            else:
                bucket, tokens, calls, quota = row
                model_name = ALL_MODELS
            stats.append(AggregatedStat(
                bucket_start=int(bucket),
                model_name=model_name,
                token_used=int(tokens or 0),
                call_count=int(calls or 0),
                quota_consumed=int(quota or 0)
            ))
        return stats

    def _range_filter(
        self,
        start_time: int,
        end_time: int,
        user_id: Optional[int],
        username: Optional[str]
    ):
        p = self.placeholder
        conditions = [f"bucket_start >= {p}", f"bucket_start <= {p}"]
        params: List[Any] = [start_time, end_time]
        if user_id is not None:
            conditions.append(f"user_id = {p}")
            params.append(user_id)
        if username:
            conditions.append(f"username = {p}")
            params.append(username)
        return " AND ".join(conditions), params

    def _fetch_all(self, query: str, params: Sequence[Any]) -> List[tuple]:
        conn = self.connect()
        try:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()
        finally:
            conn.close()


def initialize_schema(db_path: str = "usage_board.db") -> None:
    """Create the usage_records table and its indexes if they don't exist.

    The unique index guarantees a single row per user, username, model
    and hour bucket.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                username TEXT NOT NULL DEFAULT '',
                model_name TEXT NOT NULL DEFAULT '',
                bucket_start INTEGER NOT NULL,
                token_used INTEGER NOT NULL DEFAULT 0,
                call_count INTEGER NOT NULL DEFAULT 0,
                quota_consumed INTEGER NOT NULL DEFAULT 0
            )
        """)
        conn.execute(f"""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_usage_records_key
            ON {TABLE_NAME} (user_id, username, model_name, bucket_start)
        """)
        conn.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_usage_records_bucket
            ON {TABLE_NAME} (bucket_start)
        """)
        conn.commit()
    finally:
        conn.close()
