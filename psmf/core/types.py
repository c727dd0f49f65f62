# psmf/core/types.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Union

import numpy as np

UserId = int
ItemId = int
Vector = np.ndarray


@dataclass(frozen=True, slots=True)
class Rating:
    """A user rates an item with a real value."""

    user_id: UserId
    item_id: ItemId
    value: float


@dataclass(frozen=True, slots=True)
class EndMarker:
    """
    "source_partition has no more ratings for target_worker".

    Exactly one per (worker, source partition) pair.
    """

    target_worker: int
    source_partition: int


WorkerInput = Union[Rating, EndMarker]


@dataclass(frozen=True, slots=True, eq=False)
class ModelRecord:
    """
    ModelRecord（唯一输出类型）

    - kind="user": worker 发出的 user 向量（每条 rating 一次，或 close 时一次）
    - kind="item": server 关闭时发出的最终 item 向量
    """

    kind: Literal["user", "item"]
    key: int
    vector: Vector

    def __repr__(self) -> str:
        return f"ModelRecord({self.kind}, {self.key}, {np.round(self.vector, 4).tolist()})"
