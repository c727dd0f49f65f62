# psmf/worker/policy.py
from __future__ import annotations

import random
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterator, List, Optional, Tuple

from psmf.core.types import Rating

# (user_id, rating value)
UserRating = Tuple[int, float]


@dataclass(frozen=True, slots=True)
class PullTicket:
    """One pull the training thread is about to issue."""

    item_id: int
    payload: Optional[UserRating] = None


@dataclass(frozen=True, slots=True)
class PendingPull:
    request_id: int
    payload: Optional[UserRating]


class TrainingPolicy(ABC):
    """
    Buffering / scheduling strategy of one worker partition.

    The worker calls every method while holding its own lock, so
    implementations keep plain (non thread-safe) containers.

    Hooks:
      - buffer:   ingestion, before the barrier
      - schedule: pulls of one iteration (training thread)
      - register: a pull is about to be issued → per-item FIFO
      - claim:    a pull answer arrived → (user, rating) pairs to apply
    """

    name: str = ""

    # per-rating emits a user record per processed rating,
    # per-item emits final user vectors on close instead
    emit_per_rating: bool = True

    # iteration k fully answered before iteration k+1 dispatches
    drain_between_iterations: bool = False

    def __init__(self):
        self._pending: Dict[int, Deque[PendingPull]] = defaultdict(deque)

    # --------------------------------------------------
    # hooks
    # --------------------------------------------------
    @abstractmethod
    def buffer(self, rating: Rating) -> None:
        ...

    @abstractmethod
    def schedule(self, rng: random.Random) -> Iterator[PullTicket]:
        ...

    @abstractmethod
    def num_buffered(self) -> int:
        ...

    def register(self, ticket: PullTicket, request_id: int) -> None:
        self._pending[ticket.item_id].append(PendingPull(request_id, ticket.payload))

    def claim(
            self,
            item_id: int,
            request_id: Optional[int],
            rng: random.Random,
    ) -> List[UserRating]:
        """
        FIFO：取出该 item 最早登记的 pending pull。

        request_id 为 None 时按位置匹配（依赖 transport 对同一 key 保序）；
        否则必须与队首一致。失败抛 LookupError，由 worker 转成 ProtocolViolation。
        """
        queue = self._pending.get(item_id)
        if not queue:
            raise LookupError(f"no pending pull for item={item_id}")

        head = queue[0]
        if request_id is not None and head.request_id != request_id:
            raise LookupError(
                f"out-of-order answer for item={item_id}: "
                f"expected request_id={head.request_id}, got {request_id}"
            )

        queue.popleft()
        if not queue:
            del self._pending[item_id]

        return self._ratings_for(item_id, head, rng)

    @abstractmethod
    def _ratings_for(
            self,
            item_id: int,
            pending: PendingPull,
            rng: random.Random,
    ) -> List[UserRating]:
        ...

    def num_pending(self) -> int:
        return sum(len(q) for q in self._pending.values())


class PerRatingPolicy(TrainingPolicy):
    """
    每次迭代打乱全部 rating，每条 rating 一个 pull；
    answer 按 FIFO 对应到最早登记的 (user, rating)。
    """

    name = "per_rating"
    emit_per_rating = True
    drain_between_iterations = False

    def __init__(self):
        super().__init__()
        self._ratings: List[Rating] = []

    def buffer(self, rating: Rating) -> None:
        self._ratings.append(rating)

    def num_buffered(self) -> int:
        return len(self._ratings)

    def schedule(self, rng: random.Random) -> Iterator[PullTicket]:
        order = list(self._ratings)
        rng.shuffle(order)
        for r in order:
            yield PullTicket(r.item_id, (r.user_id, r.value))

    def _ratings_for(self, item_id, pending, rng) -> List[UserRating]:
        return [pending.payload]


class PerItemBatchedPolicy(TrainingPolicy):
    """
    每次迭代每个 item 一个 pull；answer 到达时把该 item 的
    全部 rating 以随机顺序应用一遍（每条 rating 各自 push）。
    """

    name = "per_item"
    emit_per_rating = False
    drain_between_iterations = True

    def __init__(self):
        super().__init__()
        # ratings stored by item, so one pull answer serves all users of the item
        self._item_ratings: Dict[int, List[UserRating]] = {}

    def buffer(self, rating: Rating) -> None:
        self._item_ratings.setdefault(rating.item_id, []).append(
            (rating.user_id, rating.value)
        )

    def num_buffered(self) -> int:
        return sum(len(v) for v in self._item_ratings.values())

    def schedule(self, rng: random.Random) -> Iterator[PullTicket]:
        for item_id in list(self._item_ratings):
            yield PullTicket(item_id)

    def _ratings_for(self, item_id, pending, rng) -> List[UserRating]:
        pairs = list(self._item_ratings[item_id])
        rng.shuffle(pairs)
        return pairs


_POLICY_REGISTRY = {
    PerRatingPolicy.name: PerRatingPolicy,
    PerItemBatchedPolicy.name: PerItemBatchedPolicy,
}


def build_policy(name: str) -> TrainingPolicy:
    if name not in _POLICY_REGISTRY:
        available = ", ".join(_POLICY_REGISTRY)
        raise ValueError(f"No TrainingPolicy {name!r}. Available: {available}")
    return _POLICY_REGISTRY[name]()
