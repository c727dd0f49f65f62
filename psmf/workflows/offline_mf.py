# psmf/workflows/offline_mf.py
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from psmf import logs
from psmf.config.training_config import MFConfig
from psmf.core.types import ModelRecord, Rating
from psmf.engines.factor_initializer import FactorInitializer, build_initializer
from psmf.engines.sgd_updater import SGDUpdater
from psmf.ingest.source import SourcePartition, split_sources
from psmf.observability.instrumentation import Instrumentation, NoOpInstrumentation
from psmf.pipeline.parallel.executor import ParallelExecutor
from psmf.pipeline.parallel.types import ParallelKind
from psmf.transport.local import LocalParameterServer
from psmf.worker.policy import build_policy
from psmf.worker.worker import MFWorker


@dataclass
class MFResult:
    """
    MFResult（一次 offline MF 训练的纯内存结果）

    - records：下游收到的全部 ModelRecord（user 更新 + 最终 item 向量）
    - drained：所有 worker 是否在 iteration_wait_time 内排空
    """

    records: List[ModelRecord]
    user_vectors: Dict[int, np.ndarray]
    item_vectors: Dict[int, np.ndarray]
    drained: bool
    metrics: Dict[str, Any] = field(default_factory=dict)

    def user_records(self) -> List[ModelRecord]:
        return [r for r in self.records if r.kind == "user"]

    def item_records(self) -> List[ModelRecord]:
        return [r for r in self.records if r.kind == "item"]

    def predict(self, user_id: int, item_id: int) -> float:
        return float(np.dot(self.user_vectors[user_id], self.item_vectors[item_id]))

    def rmse(self, ratings: Sequence[Rating]) -> float:
        errors = [
            r.value - self.predict(r.user_id, r.item_id)
            for r in ratings
            if r.user_id in self.user_vectors and r.item_id in self.item_vectors
        ]
        if not errors:
            return float("nan")
        return float(np.sqrt(np.mean(np.square(errors))))


def _initializer(cfg: MFConfig, offset: int) -> FactorInitializer:
    # random: distinct streams for server / each worker; pseudo_random: keyed anyway
    seed = cfg.seed
    if cfg.initializer == "random" and seed is not None:
        seed = seed + offset
    return build_initializer(cfg.initializer, cfg.num_factors, seed)


def build_workers(cfg: MFConfig, read_parallelism: int) -> List[MFWorker]:
    updater = SGDUpdater(cfg.learning_rate, cfg.regularization)
    return [
        MFWorker(
            i,
            read_parallelism=read_parallelism,
            iterations=cfg.iterations,
            pull_limit=cfg.pull_limit,
            policy=build_policy(cfg.policy),
            updater=updater,
            initializer=_initializer(cfg, offset=i + 1),
            seed=cfg.seed,
        )
        for i in range(cfg.worker_parallelism)
    ]


def ps_offline_mf(
        ratings: Sequence[Rating],
        cfg: MFConfig,
        *,
        inst: Optional[Instrumentation] = None,
        run_id: str = "offline_mf",
) -> MFResult:
    """Split ratings into cfg.read_parallelism sources and train."""
    sources = split_sources(ratings, cfg.read_parallelism)
    return run_offline_mf(sources, cfg, inst=inst, run_id=run_id)


@logs.catch("offline MF job failed")
def run_offline_mf(
        sources: Sequence[SourcePartition],
        cfg: MFConfig,
        *,
        inst: Optional[Instrumentation] = None,
        run_id: str = "offline_mf",
) -> MFResult:
    """
    Offline MF over a parameter server:

      sources ──route by user──▶ workers (buffer, barrier)
      workers ──pull item──▶ servers ──answer──▶ workers (SGD, emit user)
      workers ──push Δitem──▶ servers (additive)

    read_parallelism is the number of sources, as in the dataflow runtime.
    """
    inst = inst if inst is not None else NoOpInstrumentation()
    read_parallelism = len(sources)
    if read_parallelism == 0:
        raise ValueError("at least one source partition is required")

    logs.info(
        f"[OfflineMF] START run_id={run_id} sources={read_parallelism} "
        f"workers={cfg.worker_parallelism} servers={cfg.server_parallelism} "
        f"policy={cfg.policy} iterations={cfg.iterations} pull_limit={cfg.pull_limit}"
    )

    server = LocalParameterServer(
        cfg.server_parallelism, cfg.num_factors, _initializer(cfg, offset=0)
    )
    workers = build_workers(cfg, read_parallelism)
    for w in workers:
        server.register(w)

    server.start()
    drained = True
    try:
        with inst.timer("ingest"):
            ParallelExecutor.run(
                kind=ParallelKind.SOURCE,
                items=sources,
                handler=lambda source: source.run(workers),
            )

        with inst.timer("train"):
            deadline = time.monotonic() + cfg.iteration_wait_time
            for w in workers:
                remaining = max(deadline - time.monotonic(), 0.0)
                if not w.join(timeout=remaining):
                    drained = False
                    logs.warning(
                        f"[OfflineMF] worker {w.index} not drained within "
                        f"{cfg.iteration_wait_time}s (state={w.state.value}, "
                        f"in_flight={w.in_flight})"
                    )
                    w.cancel()
    except BaseException:
        for w in workers:
            w.cancel()
        raise
    finally:
        server.stop(timeout=cfg.iteration_wait_time)

    if server.errors:
        raise server.errors[0]

    with inst.timer("close"):
        for w in workers:
            w.close()
        server.close()

    for w in workers:
        inst.record_worker_stats(w.stats())
    inst.metrics.record("drained", drained)
    inst.generate_timeline_report(run_id)

    user_vectors: Dict[int, np.ndarray] = {}
    for w in workers:
        for user_id, vec in w.user_vectors.items():
            user_vectors[user_id] = vec.copy()

    result = MFResult(
        records=server.output.records(),
        user_vectors=user_vectors,
        item_vectors=server.snapshot(),
        drained=drained,
        metrics=dict(inst.metrics.metrics),
    )

    logs.info(
        f"[OfflineMF] DONE run_id={run_id} users={len(user_vectors)} "
        f"items={len(result.item_vectors)} records={len(result.records)} drained={drained}"
    )
    return result
