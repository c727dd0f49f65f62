from .policy import (
    TrainingPolicy,
    PerRatingPolicy,
    PerItemBatchedPolicy,
    PullTicket,
    build_policy,
)
from .worker import MFWorker, WorkerState

__all__ = [
    "TrainingPolicy",
    "PerRatingPolicy",
    "PerItemBatchedPolicy",
    "PullTicket",
    "build_policy",
    "MFWorker",
    "WorkerState",
]
