# psmf/server/store.py
from __future__ import annotations

import threading
from typing import Dict, List

import numpy as np

from psmf import logs
from psmf.core.types import ModelRecord
from psmf.engines.factor_initializer import FactorInitializer


class ServerStore:
    """
    ServerStore（一个 server 分区）

    语义：
    - pull(key)：不存在则用 initializer 懒初始化（每个 key 恰好一次），返回副本
    - push(key, delta)：store[key] ← store[key] + delta，无回复
    - 分区之间互不协调；本分区是其 key 的唯一写者
    """

    def __init__(self, index: int, num_factors: int, initializer: FactorInitializer):
        self.index = index
        self.num_factors = num_factors
        self._init = initializer
        self._params: Dict[int, np.ndarray] = {}
        self._lock = threading.Lock()

        self.pulls_served = 0
        self.pushes_applied = 0

    # --------------------------------------------------
    def _get_or_init(self, key: int) -> np.ndarray:
        vec = self._params.get(key)
        if vec is None:
            vec = np.asarray(self._init(key), dtype=np.float64)
            self._params[key] = vec
        return vec

    def pull(self, key: int) -> np.ndarray:
        with self._lock:
            self.pulls_served += 1
            return self._get_or_init(key).copy()

    def push(self, key: int, delta: np.ndarray) -> None:
        delta = np.asarray(delta, dtype=np.float64)
        if delta.shape != (self.num_factors,):
            raise ValueError(
                f"[ServerStore {self.index}] delta for key={key} has shape "
                f"{delta.shape}, expected ({self.num_factors},)"
            )

        with self._lock:
            self._params[key] = self._get_or_init(key) + delta
            self.pushes_applied += 1

    # --------------------------------------------------
    def __contains__(self, key: int) -> bool:
        with self._lock:
            return key in self._params

    def __len__(self) -> int:
        with self._lock:
            return len(self._params)

    def snapshot(self) -> Dict[int, np.ndarray]:
        with self._lock:
            return {k: v.copy() for k, v in self._params.items()}

    def close(self) -> List[ModelRecord]:
        """Final item vectors of this partition."""
        records = [
            ModelRecord("item", key, vec)
            for key, vec in sorted(self.snapshot().items())
        ]
        logs.info(
            f"[ServerStore {self.index}] close items={len(records)} "
            f"pulls={self.pulls_served} pushes={self.pushes_applied}"
        )
        return records
