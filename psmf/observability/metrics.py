#!filepath: psmf/observability/metrics.py
import threading
from dataclasses import dataclass, field
from typing import Dict, Any
from psmf import logs


@dataclass
class MetricRecorder:
    """
    指标记录（线程安全）
    - record：覆盖写，并打一条日志（冷路径）
    - incr：计数器累加，不打日志（worker / server 线程热路径可用）
    """

    enabled: bool = True
    metrics: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()

    def record(self, name: str, value: Any):
        if not self.enabled:
            return
        with self._lock:
            self.metrics[name] = value
        logs.info(f"[Metric] {name} = {value}")

    def incr(self, name: str, value: int = 1):
        if not self.enabled:
            return
        with self._lock:
            self.metrics[name] = self.metrics.get(name, 0) + value

    def get(self, name: str, default=None):
        with self._lock:
            return self.metrics.get(name, default)
