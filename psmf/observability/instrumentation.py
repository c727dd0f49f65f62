#!filepath: psmf/observability/instrumentation.py
from __future__ import annotations

import time
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict

from psmf.observability.metrics import MetricRecorder
from psmf.observability.timeline_reporter import TimelineReporter


@dataclass
class Instrumentation:
    """
    训练任务 Instrumentation：

    - timer(name)：阶段计时，record=True 时写入 timeline
    - metrics：MetricRecorder（pull / push / 输出条数等）
    - 不在热路径打日志
    """

    enabled: bool = True

    def __post_init__(self):
        self.metrics = MetricRecorder(enabled=self.enabled)

        # timeline: OrderedDict[phase_name, elapsed_seconds]
        self.timeline: Dict[str, float] = OrderedDict()

    def timer(self, name: str, *, record: bool = True):
        inst = self

        @contextmanager
        def _ctx():
            if not inst.enabled:
                yield
                return

            start = time.perf_counter()
            try:
                yield
            finally:
                if record:
                    inst.timeline[name] = time.perf_counter() - start

        return _ctx()

    def record_worker_stats(self, stats: Dict[str, int]) -> None:
        """Accumulate one worker's counters; max_in_flight keeps the maximum."""
        for name, value in stats.items():
            if name == "max_in_flight":
                current = self.metrics.get(name, 0)
                self.metrics.incr(name, max(value - current, 0))
            else:
                self.metrics.incr(name, value)

    def generate_timeline_report(self, run_id: str):
        TimelineReporter(self.timeline, run_id).print()


class NoOpInstrumentation:
    """Instrumentation disabled 时使用。"""

    def __init__(self):
        self.metrics = MetricRecorder(enabled=False)
        self.timeline: Dict[str, float] = {}

    def timer(self, name: str, *, record: bool = True):
        return _NoOpTimer()

    def record_worker_stats(self, stats: Dict[str, int]) -> None:
        pass

    def generate_timeline_report(self, run_id: str):
        pass


class _NoOpTimer:
    def __enter__(self):
        pass

    def __exit__(self, exc_type, exc, tb):
        pass
