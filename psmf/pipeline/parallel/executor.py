# psmf/pipeline/parallel/executor.py
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Iterable, TypeVar

from psmf.pipeline.parallel.types import ParallelKind
from psmf import logs

T = TypeVar("T")


class ParallelExecutor:
    """
    ParallelExecutor（线程版）

    - source 分区直接调用进程内 worker 的 on_record，不能跨进程，所以用线程池
    - workers == 1 时顺序执行
    - 任一 handler 抛异常：等待其余完成后抛出第一个异常
    """

    @staticmethod
    def run(
            *,
            kind: ParallelKind,
            items: Iterable[T],
            handler: Callable[[T], Any],
            max_workers: int | None = None,
    ) -> list[Any]:
        items = list(items)
        if not items:
            logs.info(f"[ParallelExecutor] kind={kind.value} no items to process")
            return []

        workers = ParallelExecutor._resolve_workers(items, max_workers)

        logs.info(
            f"[ParallelExecutor] start "
            f"kind={kind.value} total={len(items)} workers={workers}"
        )

        if workers == 1:
            return ParallelExecutor._run_sequential(items, handler)
        return ParallelExecutor._run_parallel(items, handler, workers, kind)

    # ---------------- internal ----------------

    @staticmethod
    def _resolve_workers(items: list, max_workers: int | None) -> int:
        if max_workers is None:
            return len(items)
        return max(1, min(max_workers, len(items)))

    @staticmethod
    def _run_sequential(items: list, handler: Callable[[Any], Any]) -> list[Any]:
        return [handler(item) for item in items]

    @staticmethod
    def _run_parallel(
            items: list,
            handler: Callable[[Any], Any],
            workers: int,
            kind: ParallelKind,
    ) -> list[Any]:
        results = []
        first_error: BaseException | None = None

        with ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix=f"psmf-{kind.value}"
        ) as pool:
            futures = {pool.submit(handler, item): item for item in items}

            for fut in as_completed(futures):
                exc = fut.exception()
                if exc is not None:
                    logs.error(f"[ParallelExecutor] {kind.value} failed: {exc}")
                    if first_error is None:
                        first_error = exc
                    continue
                results.append(fut.result())

        if first_error is not None:
            raise first_error
        return results
