# psmf/engines/factor_initializer.py
from __future__ import annotations

import threading
from typing import Optional, Protocol, Union

import numpy as np


class FactorInitializer(Protocol):
    """
    keyed factory：init(key) → 初始向量（或标量）

    worker 用它初始化 user 向量，server 用它初始化 item 向量。
    """

    def __call__(self, key: int) -> Union[np.ndarray, float]:
        ...


class RandomFactorInitializer:
    """
    每个分量 ~ U[0, 1)。

    一个实例可能被多个线程共享（worker 的 answer handler / server 线程），
    Generator 本身不是线程安全的，所以加锁。
    """

    def __init__(self, num_factors: int, seed: Optional[int] = None):
        if num_factors <= 0:
            raise ValueError(f"num_factors must be positive, got {num_factors}")
        self.num_factors = num_factors
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()

    def __call__(self, key: int) -> np.ndarray:
        with self._lock:
            return self._rng.random(self.num_factors)


class PseudoRandomFactorInitializer:
    """
    Deterministic per key: the vector depends only on (seed, key),
    never on the order in which keys are first seen.
    """

    def __init__(self, num_factors: int, seed: int = 0):
        if num_factors <= 0:
            raise ValueError(f"num_factors must be positive, got {num_factors}")
        self.num_factors = num_factors
        self.seed = seed

    def __call__(self, key: int) -> np.ndarray:
        # SeedSequence 不接受负数
        rng = np.random.default_rng([self.seed, abs(key), int(key < 0)])
        return rng.random(self.num_factors)


class ZeroInitializer:
    """Scalar 0.0 (num_factors=None) or a zero vector; for non-factorized models."""

    def __init__(self, num_factors: Optional[int] = None):
        self.num_factors = num_factors

    def __call__(self, key: int) -> Union[np.ndarray, float]:
        if self.num_factors is None:
            return 0.0
        return np.zeros(self.num_factors)


def build_initializer(
        name: str,
        num_factors: int,
        seed: Optional[int] = None,
) -> FactorInitializer:
    if name == "random":
        return RandomFactorInitializer(num_factors, seed=seed)
    if name == "pseudo_random":
        return PseudoRandomFactorInitializer(num_factors, seed=seed or 0)

    raise ValueError(
        f"Unknown initializer {name!r}. Available: random, pseudo_random"
    )
