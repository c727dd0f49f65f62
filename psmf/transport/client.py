# psmf/transport/client.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from psmf.core.types import ModelRecord


class ParameterServerClient(ABC):
    """
    Worker 侧看到的 PS 接口（最小契约）

    - pull：异步；答案稍后通过 worker.on_pull_answer(item, vec, request_id) 回来
    - push：异步，fire-and-forget
    - output：向下游发出一条结果

    不要求线程安全：worker 只在持有自己的锁时调用。
    """

    @abstractmethod
    def pull(self, item_id: int, request_id: Optional[int] = None) -> None:
        ...

    @abstractmethod
    def push(self, item_id: int, delta: np.ndarray) -> None:
        ...

    @abstractmethod
    def output(self, record: ModelRecord) -> None:
        ...
