# psmf/server/partitioner.py
"""
Key → partition routing.

- ratings go to workers by user key
- pull / push go to servers by item key (abs: ids may be negative)
"""


def route_user(user_id: int, worker_parallelism: int) -> int:
    return user_id % worker_parallelism


def route_key(key: int, server_parallelism: int) -> int:
    return abs(key) % server_parallelism
