# tests/worker/conftest.py
from __future__ import annotations

import threading
import time
from typing import List, Optional, Tuple

import numpy as np
import pytest

from psmf.core.types import EndMarker, ModelRecord, Rating
from psmf.engines.factor_initializer import ZeroInitializer
from psmf.engines.sgd_updater import SGDUpdater
from psmf.transport.client import ParameterServerClient
from psmf.worker.policy import PerRatingPolicy, PullTicket, build_policy
from psmf.worker.worker import MFWorker, WorkerState


class FakeClient(ParameterServerClient):
    """
    记录 pull / push / output，不自动回答（测试手动调用 on_pull_answer）
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.pulls: List[Tuple[int, Optional[int]]] = []
        self.pushes: List[Tuple[int, np.ndarray]] = []
        self.outputs: List[ModelRecord] = []

    def pull(self, item_id, request_id=None):
        with self._lock:
            self.pulls.append((item_id, request_id))

    def push(self, item_id, delta):
        with self._lock:
            self.pushes.append((item_id, np.array(delta)))

    def output(self, record):
        with self._lock:
            self.outputs.append(record)

    # ---------- 断言辅助 ----------
    def num_pulls(self) -> int:
        with self._lock:
            return len(self.pulls)

    def pull_at(self, i: int) -> Tuple[int, Optional[int]]:
        with self._lock:
            return self.pulls[i]


class OrderedPerRatingPolicy(PerRatingPolicy):
    """Arrival order instead of shuffling, so tests know which pull is which."""

    def schedule(self, rng):
        for r in self._ratings:
            yield PullTicket(r.item_id, (r.user_id, r.value))


@pytest.fixture
def make_worker():
    """
    Factory fixture: MFWorker + FakeClient

        worker, client = make_worker(read_parallelism=2, pull_limit=1)
    """
    created: List[MFWorker] = []

    def _make(
            *,
            index: int = 0,
            read_parallelism: int = 1,
            iterations: int = 1,
            pull_limit: int = 10,
            policy="per_rating",
            learning_rate: float = 0.1,
            num_factors: int = 2,
            initializer=None,
    ):
        client = FakeClient()
        worker = MFWorker(
            index,
            read_parallelism=read_parallelism,
            iterations=iterations,
            pull_limit=pull_limit,
            policy=build_policy(policy) if isinstance(policy, str) else policy,
            updater=SGDUpdater(learning_rate),
            initializer=initializer or ZeroInitializer(num_factors),
            client=client,
            seed=7,
        )
        created.append(worker)
        return worker, client

    yield _make

    # teardown: release training threads still blocked on unanswered pulls
    for worker in created:
        worker.cancel()


@pytest.fixture
def answer_all():
    """
    按 pull 发出的顺序逐个回答，直到 worker DONE / FAILED 或超时。
    返回每次回答前观察到的 in_flight 最大值。
    """

    def _answer(worker, client, vector=(1.0, 0.0), timeout: float = 5.0) -> int:
        answered = 0
        peak = 0
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if worker.state in (WorkerState.DONE, WorkerState.FAILED):
                break
            if answered < client.num_pulls():
                peak = max(peak, worker.in_flight)
                item_id, request_id = client.pull_at(answered)
                worker.on_pull_answer(item_id, np.array(vector), request_id)
                answered += 1
            else:
                time.sleep(0.002)
        return peak

    return _answer


@pytest.fixture
def feed():
    """ratings 之后为每个 source 发一个 EndMarker。"""

    def _feed(worker, ratings, sources=(0,)):
        for r in ratings:
            worker.on_record(r)
        for s in sources:
            worker.on_record(EndMarker(worker.index, s))

    return _feed


@pytest.fixture
def ratings() -> List[Rating]:
    return [
        Rating(1, 10, 5.0),
        Rating(2, 10, 3.0),
        Rating(1, 20, 4.0),
    ]


@pytest.fixture
def ordered_policy():
    return OrderedPerRatingPolicy()
