# usage_board/demo/seed_demo_data.py

import time

from usage_board.core.cache import FlushResult, UsageCache
from usage_board.storage.repository import UsageRepository, initialize_schema

DEMO_EVENTS = [
    # (user_id, username, model_name, quota, seconds_ago, token_used)
    (1, "alice", "gpt-4", 1200, 0, 1500),
    (1, "alice", "gpt-4", 3400, 60, 4200),
    (1, "alice", "gpt-3.5-turbo", 150, 3600, 900),
    (2, "bob", "gpt-4", 900, 7200, 1100),
    (2, "bob", "claude-3-haiku", 80, 86400, 2300),
    (3, "carol", "gpt-3.5-turbo", 40, 3 * 86400, 600),
]


def seed_demo_data(db_path: str = "usage_board.db") -> FlushResult:
    """Record the demo events through the cache and flush them."""
    initialize_schema(db_path)
    cache = UsageCache(UsageRepository(db_path))

    now = int(time.time())
    for user_id, username, model_name, quota, seconds_ago, token_used in DEMO_EVENTS:
        cache.record(user_id, username, model_name, quota, now - seconds_ago, token_used)

    return cache.flush()


if __name__ == "__main__":
    result = seed_demo_data()
    print(f"Demo usage data inserted ({result.saved} rows)")
