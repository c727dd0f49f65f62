# psmf/config/training_config.py
from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class MFConfig(BaseModel):
    """
    MFConfig（一次 offline MF 训练任务的全部参数）

    - 并行度：read（source 分区）/ worker / server
    - pull_limit：单个 worker 同时在途的 pull 上限（backpressure）
    - iteration_wait_time：job 等待异步管线排空的宽限期（秒）
    """

    # model
    num_factors: int = Field(10, gt=0)
    learning_rate: float = Field(0.01, gt=0)
    regularization: float = Field(0.0, ge=0)
    iterations: int = Field(1, gt=0)

    # flow control
    pull_limit: int = Field(1000, gt=0)

    # parallelism
    worker_parallelism: int = Field(1, gt=0)
    server_parallelism: int = Field(1, gt=0)
    read_parallelism: int = Field(1, gt=0)

    iteration_wait_time: float = Field(60.0, gt=0)

    # strategy
    policy: Literal["per_rating", "per_item"] = "per_rating"
    initializer: Literal["random", "pseudo_random"] = "random"
    seed: Optional[int] = None
