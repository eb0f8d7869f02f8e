"""
Database connection management.

Provides the SQLite connection used by default and the database family
indicator used to pick dialect-specific SQL.
"""

import sqlite3
from enum import Enum
from pathlib import Path


class DatabaseFamily(Enum):
    """Supported relational backends."""
    MYSQL = "mysql"
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"

    @property
    def placeholder(self) -> str:
        """DB-API parameter marker used by the usual driver for this family."""
        if self is DatabaseFamily.SQLITE:
            return "?"
        return "%s"


def get_connection(db_path: str = "usage_board.db") -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection that waits on locked databases instead of failing
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=30)
    return conn
