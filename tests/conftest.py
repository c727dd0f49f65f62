# tests/conftest.py
from __future__ import annotations

import time

import pytest
from loguru import logger


@pytest.fixture(autouse=True)
def disable_file_logger():
    logger.remove()
    logger.add(lambda msg: None)  # or sys.stderr
    yield


@pytest.fixture
def eventually():
    """
    轮询直到 predicate() 为真（线程相关测试用，避免裸 sleep）

    用法：
        assert eventually(lambda: len(client.pulls) == 2)
    """

    def _wait(predicate, timeout: float = 5.0, interval: float = 0.005) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()

    return _wait
