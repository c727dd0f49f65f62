# psmf/transport/local.py
from __future__ import annotations

import queue
import threading
from typing import Dict, List, Optional

import numpy as np

from psmf import logs
from psmf.core.types import ModelRecord
from psmf.engines.factor_initializer import FactorInitializer
from psmf.server.partitioner import route_key
from psmf.server.store import ServerStore
from psmf.transport.client import ParameterServerClient

_STOP = object()


class OutputCollector:
    """线程安全的下游 sink：收集所有 ModelRecord。"""

    def __init__(self):
        self._records: List[ModelRecord] = []
        self._lock = threading.Lock()

    def collect(self, record: ModelRecord) -> None:
        with self._lock:
            self._records.append(record)

    def records(self) -> List[ModelRecord]:
        with self._lock:
            return list(self._records)

    def user_records(self) -> List[ModelRecord]:
        return [r for r in self.records() if r.kind == "user"]

    def item_records(self) -> List[ModelRecord]:
        return [r for r in self.records() if r.kind == "item"]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class LocalClient(ParameterServerClient):
    """One worker's view of the in-process parameter server."""

    def __init__(self, server: "LocalParameterServer", worker_index: int):
        self._server = server
        self.worker_index = worker_index

    def pull(self, item_id: int, request_id: Optional[int] = None) -> None:
        self._server._enqueue(item_id, ("pull", self.worker_index, item_id, request_id))

    def push(self, item_id: int, delta: np.ndarray) -> None:
        self._server._enqueue(item_id, ("push", item_id, np.array(delta, dtype=np.float64)))

    def output(self, record: ModelRecord) -> None:
        self._server.output.collect(record)


class LocalParameterServer:
    """
    LocalParameterServer（进程内 PS transport）

    - 每个 server 分区：一个 ServerStore + 一个 FIFO queue + 一个线程
    - pull / push 按 abs(item) % server_parallelism 路由
    - 同一分区单线程按到达顺序处理 → 同一 key 的 pull answer 保序
    - pull answer 在 server 线程上直接回调 worker.on_pull_answer
    """

    def __init__(
            self,
            server_parallelism: int,
            num_factors: int,
            initializer: FactorInitializer,
            output: Optional[OutputCollector] = None,
    ):
        if server_parallelism <= 0:
            raise ValueError(f"server_parallelism must be positive, got {server_parallelism}")

        self.server_parallelism = server_parallelism
        self.output = output if output is not None else OutputCollector()
        self.stores = [
            ServerStore(i, num_factors, initializer) for i in range(server_parallelism)
        ]

        self._queues: List[queue.Queue] = [queue.Queue() for _ in self.stores]
        self._threads: List[threading.Thread] = []
        self._workers: Dict[int, object] = {}
        self.errors: List[BaseException] = []
        self._errors_lock = threading.Lock()

    # --------------------------------------------------
    # wiring
    # --------------------------------------------------
    def register(self, worker) -> LocalClient:
        client = LocalClient(self, worker.index)
        self._workers[worker.index] = worker
        worker.bind(client)
        return client

    def store_for(self, key: int) -> ServerStore:
        return self.stores[route_key(key, self.server_parallelism)]

    # --------------------------------------------------
    # lifecycle
    # --------------------------------------------------
    def start(self) -> None:
        for i in range(self.server_parallelism):
            t = threading.Thread(
                target=self._serve, args=(i,), name=f"psmf-server-{i}", daemon=True
            )
            t.start()
            self._threads.append(t)
        logs.info(f"[LocalPS] started servers={self.server_parallelism}")

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Messages already queued (late pushes) are applied before the
        partition threads exit.
        """
        for q in self._queues:
            q.put(_STOP)
        for t in self._threads:
            t.join(timeout)
        self._threads = []
        logs.info("[LocalPS] stopped")

    def close(self) -> List[ModelRecord]:
        records: List[ModelRecord] = []
        for store in self.stores:
            for record in store.close():
                self.output.collect(record)
                records.append(record)
        return records

    def snapshot(self) -> Dict[int, np.ndarray]:
        params: Dict[int, np.ndarray] = {}
        for store in self.stores:
            params.update(store.snapshot())
        return params

    # --------------------------------------------------
    # internal
    # --------------------------------------------------
    def _enqueue(self, key: int, message) -> None:
        self._queues[route_key(key, self.server_parallelism)].put(message)

    def _serve(self, index: int) -> None:
        store = self.stores[index]
        q = self._queues[index]

        while True:
            message = q.get()
            if message is _STOP:
                break

            try:
                if message[0] == "pull":
                    _, worker_index, item_id, request_id = message
                    vec = store.pull(item_id)
                    self._workers[worker_index].on_pull_answer(item_id, vec, request_id)
                else:
                    _, item_id, delta = message
                    store.push(item_id, delta)
            except Exception as exc:
                # 已由 worker 记录（protocol violation）或交给 job 处理；本分区继续服务其它 worker
                logs.exception(f"[LocalPS {index}] failed to deliver {message[0]}")
                with self._errors_lock:
                    self.errors.append(exc)
