# psmf/worker/worker.py
from __future__ import annotations

import random
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Dict, List, Optional, Set

import numpy as np

from psmf import logs
from psmf.core.types import EndMarker, ModelRecord, Rating, WorkerInput
from psmf.engines.factor_initializer import FactorInitializer
from psmf.engines.sgd_updater import SGDUpdater
from psmf.transport.client import ParameterServerClient
from psmf.utils.errors import (
    DuplicateEndMarkerError,
    LateRatingError,
    ProtocolViolation,
    UnexpectedPullAnswerError,
)
from psmf.worker.policy import PullTicket, TrainingPolicy


class WorkerState(str, Enum):
    BUFFERING = "buffering"
    TRAINING = "training"
    DRAINING = "draining"
    DONE = "done"
    FAILED = "failed"


class MFWorker:
    """
    MFWorker（一个 worker 分区的训练状态机）

        BUFFERING → TRAINING → DRAINING → DONE
                         ↘ FAILED（protocol violation / 训练线程异常）

    三个执行上下文共享本对象的状态，全部由同一把锁（self._cond）串行化：
      1. ingestion：on_record（runtime 调用，不阻塞）
      2. training thread：barrier 满足后启动，唯一会在 backpressure 上等待的一方
      3. pull answer：on_pull_answer（transport 线程调用）

    PS client 视为非线程安全：所有 pull / push / output 都在持锁状态下发出。
    """

    def __init__(
            self,
            index: int,
            *,
            read_parallelism: int,
            iterations: int,
            pull_limit: int,
            policy: TrainingPolicy,
            updater: SGDUpdater,
            initializer: FactorInitializer,
            client: Optional[ParameterServerClient] = None,
            seed: Optional[int] = None,
    ):
        if pull_limit <= 0:
            raise ValueError(f"pull_limit must be positive, got {pull_limit}")

        self.index = index
        self.read_parallelism = read_parallelism
        self.iterations = iterations
        self.pull_limit = pull_limit
        self.policy = policy
        self.updater = updater
        self._init = initializer
        self._client = client
        self._rng = random.Random(None if seed is None else seed * 1_000_003 + index)

        self._cond = threading.Condition()

        # -------- guarded by self._cond --------
        self.user_vectors: Dict[int, np.ndarray] = {}
        self._eof_sources: Set[int] = set()
        self._state = WorkerState.BUFFERING
        self._in_flight = 0
        self._next_request_id = 0
        self._cancelled = False
        self._error: Optional[BaseException] = None

        # counters
        self.ratings_received = 0
        self.max_in_flight = 0
        self.pulls_issued = 0
        self.answers_handled = 0
        self.pushes_sent = 0
        self.records_emitted = 0

        self._executor: Optional[ThreadPoolExecutor] = None
        self._future: Optional[Future] = None

    # --------------------------------------------------
    # wiring
    # --------------------------------------------------
    def bind(self, client: ParameterServerClient) -> None:
        with self._cond:
            if self._state is not WorkerState.BUFFERING:
                raise RuntimeError(f"[Worker {self.index}] cannot rebind after training started")
            self._client = client

    # --------------------------------------------------
    # read-only views
    # --------------------------------------------------
    @property
    def state(self) -> WorkerState:
        with self._cond:
            return self._state

    @property
    def in_flight(self) -> int:
        with self._cond:
            return self._in_flight

    @property
    def error(self) -> Optional[BaseException]:
        with self._cond:
            return self._error

    @property
    def training_future(self) -> Optional[Future]:
        return self._future

    def stats(self) -> Dict[str, int]:
        with self._cond:
            return {
                "ratings_received": self.ratings_received,
                "pulls_issued": self.pulls_issued,
                "answers_handled": self.answers_handled,
                "pushes_sent": self.pushes_sent,
                "records_emitted": self.records_emitted,
                "max_in_flight": self.max_in_flight,
            }

    # --------------------------------------------------
    # ① ingestion
    # --------------------------------------------------
    def on_record(self, data: WorkerInput) -> None:
        with self._cond:
            if self._state is WorkerState.FAILED:
                raise self._error

            if isinstance(data, EndMarker):
                self._on_end_marker(data)
            elif isinstance(data, Rating):
                self._on_rating(data)
            else:
                raise TypeError(f"[Worker {self.index}] unexpected record {data!r}")

    def _on_rating(self, rating: Rating) -> None:
        # EOF 不会同时到达：barrier 之后再来 rating 说明上游违约
        if self._state is not WorkerState.BUFFERING:
            raise self._abort(LateRatingError(
                self.index,
                f"rating {rating} received after the training thread started",
            ))

        self.policy.buffer(rating)
        self.ratings_received += 1

    def _on_end_marker(self, marker: EndMarker) -> None:
        source = marker.source_partition

        if marker.target_worker != self.index:
            raise self._abort(ProtocolViolation(
                self.index,
                f"end marker addressed to worker {marker.target_worker}",
            ))
        if not 0 <= source < self.read_parallelism:
            raise self._abort(ProtocolViolation(
                self.index,
                f"end marker from unknown source {source} "
                f"(read_parallelism={self.read_parallelism})",
            ))
        if source in self._eof_sources:
            raise self._abort(DuplicateEndMarkerError(
                self.index, f"duplicate end marker from source {source}",
            ))

        # 最后一个 EOF 前先检查 client，失败时 marker 不记账，bind 后可重发
        if len(self._eof_sources) + 1 >= self.read_parallelism and self._client is None:
            raise RuntimeError(f"[Worker {self.index}] no ParameterServerClient bound")

        self._eof_sources.add(source)
        logs.info(
            f"[Worker {self.index}] EOF from source={source} "
            f"({len(self._eof_sources)}/{self.read_parallelism})"
        )

        if len(self._eof_sources) >= self.read_parallelism:
            self._start_training()

    # --------------------------------------------------
    # ② training thread
    # --------------------------------------------------
    def _start_training(self) -> None:
        logs.info(
            f"[Worker {self.index}] barrier reached, ratings={self.policy.num_buffered()} "
            f"policy={self.policy.name} iterations={self.iterations}"
        )
        self._state = WorkerState.TRAINING

        # 独立线程：不阻塞 pull answer，否则要等所有 pull 发完才开始计算
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"psmf-worker-{self.index}"
        )
        self._future = self._executor.submit(self._train_loop)
        self._executor.shutdown(wait=False)

    def _train_loop(self) -> None:
        logs.debug(f"[Worker {self.index}] training thread started")
        try:
            for iteration in range(1, self.iterations + 1):
                with self._cond:
                    if self._stopped():
                        break
                    tickets = list(self.policy.schedule(self._rng))

                for ticket in tickets:
                    if not self._dispatch(ticket):
                        break

                if self.policy.drain_between_iterations:
                    with self._cond:
                        self._cond.wait_for(lambda: self._in_flight == 0 or self._stopped())

                logs.debug(f"[Worker {self.index}] iteration {iteration} dispatched")

            with self._cond:
                if self._state is WorkerState.TRAINING:
                    self._state = WorkerState.DRAINING
                    self._maybe_done()
                self._cond.notify_all()

            logs.debug(f"[Worker {self.index}] pulls finished")

        except Exception as exc:
            with self._cond:
                if self._error is None:
                    self._error = exc
                self._state = WorkerState.FAILED
                self._cond.notify_all()
            logs.exception(f"[Worker {self.index}] training thread failed")
            raise

    def _dispatch(self, ticket: PullTicket) -> bool:
        """Issue one pull under backpressure. False once stopped."""
        with self._cond:
            while self._in_flight >= self.pull_limit and not self._stopped():
                self._cond.wait()

            if self._stopped():
                return False

            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)

            request_id = self._next_request_id
            self._next_request_id += 1

            self.policy.register(ticket, request_id)
            self._client.pull(ticket.item_id, request_id=request_id)
            self.pulls_issued += 1

            logs.debug(f"[Worker {self.index}] pull inc: {self._in_flight}")
            return True

    # --------------------------------------------------
    # ③ pull answer
    # --------------------------------------------------
    def on_pull_answer(
            self,
            item_id: int,
            vector: np.ndarray,
            request_id: Optional[int] = None,
    ) -> None:
        with self._cond:
            if self._state is WorkerState.FAILED:
                logs.debug(
                    f"[Worker {self.index}] aborted, dropping answer item={item_id}"
                )
                return

            if self._in_flight <= 0:
                raise self._abort(UnexpectedPullAnswerError(
                    self.index, f"answer for item={item_id} with no pull in flight",
                ))

            try:
                pairs = self.policy.claim(item_id, request_id, self._rng)
            except LookupError as e:
                raise self._abort(UnexpectedPullAnswerError(self.index, str(e))) from e

            try:
                self._apply(item_id, vector, pairs)
            except Exception as e:
                # bad vector / failing client: FAILED 并唤醒 producer，join 会重新抛出
                self._abort(e)
                raise

            self._in_flight -= 1
            self.answers_handled += 1
            logs.debug(f"[Worker {self.index}] pull dec: {self._in_flight}")

            self._maybe_done()
            self._cond.notify_all()

    def _apply(self, item_id: int, vector: np.ndarray, pairs) -> None:
        item_vec = np.asarray(vector, dtype=np.float64)

        for user_id, rating in pairs:
            user_vec = self._user_vector(user_id)
            delta_user, delta_item = self.updater.delta(rating, user_vec, item_vec)
            self.user_vectors[user_id] = user_vec + delta_user

            if self.policy.emit_per_rating:
                self._client.output(
                    ModelRecord("user", user_id, self.user_vectors[user_id].copy())
                )
                self.records_emitted += 1

            self._client.push(item_id, delta_item)
            self.pushes_sent += 1

    def _user_vector(self, user_id: int) -> np.ndarray:
        vec = self.user_vectors.get(user_id)
        if vec is None:
            vec = np.asarray(self._init(user_id), dtype=np.float64)
            self.user_vectors[user_id] = vec
        return vec

    # --------------------------------------------------
    # lifecycle
    # --------------------------------------------------
    def _stopped(self) -> bool:
        return self._cancelled or self._state is WorkerState.FAILED

    def _maybe_done(self) -> None:
        if self._state is WorkerState.DRAINING and self._in_flight == 0:
            self._state = WorkerState.DONE
            logs.info(
                f"[Worker {self.index}] done pulls={self.pulls_issued} "
                f"pushes={self.pushes_sent} users={len(self.user_vectors)}"
            )

    def _abort(self, exc: Exception) -> Exception:
        """Mark FAILED and wake the training thread. Caller raises."""
        self._error = exc
        self._state = WorkerState.FAILED
        self._cond.notify_all()
        if isinstance(exc, ProtocolViolation):
            logs.error(f"[Worker {self.index}] protocol violation: {exc}")
        else:
            logs.error(f"[Worker {self.index}] pull answer failed: {exc!r}")
        return exc

    def cancel(self) -> None:
        """
        Stop dispatching new pulls (checked between iterations and
        between dispatches). Pulls already issued still drain.
        """
        with self._cond:
            if self._cancelled:
                return
            self._cancelled = True
            self._cond.notify_all()
        logs.warning(f"[Worker {self.index}] cancelled")

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for DONE. Re-raises the error of a FAILED worker.
        False on timeout (including "barrier never reached").
        """
        with self._cond:
            finished = self._cond.wait_for(
                lambda: self._state in (WorkerState.DONE, WorkerState.FAILED),
                timeout,
            )
            if self._error is not None:
                raise self._error
            return finished

    def close(self) -> List[ModelRecord]:
        """
        per_item policy emits the final user vectors here;
        per_rating already emitted one record per processed rating.
        """
        with self._cond:
            records: List[ModelRecord] = []
            if not self.policy.emit_per_rating and self._client is not None:
                for user_id, vec in sorted(self.user_vectors.items()):
                    record = ModelRecord("user", user_id, vec.copy())
                    self._client.output(record)
                    records.append(record)
                self.records_emitted += len(records)

            logs.info(
                f"[Worker {self.index}] close state={self._state.value} "
                f"users={len(self.user_vectors)} final_records={len(records)}"
            )
            return records
