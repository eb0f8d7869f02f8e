"""
Usage statistics service.

Wires the repository, write cache, flush scheduler and query engine
together for one process.
"""

import logging
from typing import Any, Callable, Optional

from usage_board.config.loader import DashboardConfig, default_config
from usage_board.storage.db import DatabaseFamily
from usage_board.storage.repository import UsageRepository, initialize_schema

from .cache import FlushResult, UsageCache
from .queries import StatsQueryEngine
from .scheduler import FlushScheduler

logger = logging.getLogger(__name__)


class StatsAggregator:
    """Owns the usage cache and everything that reads or drains it.

    Producers call ``record``; dashboard reads go through ``engine``.
    """

    def __init__(
        self,
        config: Optional[DashboardConfig] = None,
        connect: Optional[Callable[[], Any]] = None
    ):
        """Build the service from configuration.

        Args:
            config: Dashboard configuration; defaults when omitted
            connect: Optional DB-API connection factory for non-SQLite backends
        """
        self.config = config or default_config()
        export = self.config.data_export
        database = self.config.database

        self._owns_sqlite = connect is None and database.family is DatabaseFamily.SQLITE
        self.repository = UsageRepository(
            db_path=database.path, family=database.family, connect=connect
        )
        self.cache = UsageCache(self.repository)
        self.engine = StatsQueryEngine(self.repository, export.timezone_offset)
        self.scheduler = FlushScheduler(
            self.cache,
            interval_minutes=export.interval_minutes,
            enabled=export.enabled
        )

    def record(
        self,
        user_id: int,
        username: str,
        model_name: str,
        quota: int,
        created_at: int,
        token_used: int
    ) -> None:
        self.cache.record(user_id, username, model_name, quota, created_at, token_used)

    def flush(self) -> FlushResult:
        return self.cache.flush()

    def start(self) -> None:
        """Prepare storage and start periodic flushing.

        The schema is only created for the built-in SQLite connection;
        other backends manage their own schema.
        """
        if self._owns_sqlite:
            initialize_schema(self.repository.db_path)
        logger.info(f"Usage statistics service using {self.repository.family.value} storage")
        self.scheduler.start()

    def shutdown(self) -> None:
        """Stop periodic flushing, draining anything still cached."""
        if self.scheduler.running:
            self.scheduler.stop()
        elif self.scheduler.flush_on_stop:
            self.scheduler.run_once()


# Process-wide aggregator instance
_default_aggregator: Optional[StatsAggregator] = None


def get_aggregator(config: Optional[DashboardConfig] = None) -> StatsAggregator:
    """Get the process-wide aggregator, creating it on first use.

    Args:
        config: Configuration used only when the instance is first created

    Returns:
        The shared StatsAggregator
    """
    global _default_aggregator
    if _default_aggregator is None:
        _default_aggregator = StatsAggregator(config)
    return _default_aggregator


def reset_aggregator() -> None:
    """Shut down and forget the process-wide aggregator."""
    global _default_aggregator
    if _default_aggregator is not None:
        _default_aggregator.shutdown()
    _default_aggregator = None
