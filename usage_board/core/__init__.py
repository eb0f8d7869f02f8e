"""
Core modules for Usage Board.

This package contains the write cache, flush scheduling, time bucketing
and the aggregation queries behind the usage dashboard.
"""
