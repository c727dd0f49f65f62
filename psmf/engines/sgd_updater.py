# psmf/engines/sgd_updater.py
from __future__ import annotations

from typing import Tuple

import numpy as np


class SGDUpdater:
    """
    SGD Update Rule（纯函数，无状态）

        predicted = u · v
        error     = r - predicted
        Δu        = η (error · v - λ u)
        Δv        = η (error · u - λ v)

    λ = 0 时即原始 MF-SGD 规则。Δu 由 worker 本地应用，Δv push 给 server。
    """

    def __init__(self, learning_rate: float, regularization: float = 0.0):
        self.learning_rate = learning_rate
        self.regularization = regularization

    def delta(
            self,
            rating: float,
            user_vec: np.ndarray,
            item_vec: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray]:
        if user_vec.shape != item_vec.shape:
            raise ValueError(
                f"factor shape mismatch: user={user_vec.shape} item={item_vec.shape}"
            )

        error = rating - float(np.dot(user_vec, item_vec))

        eta = self.learning_rate
        lam = self.regularization

        delta_user = eta * (error * item_vec - lam * user_vec)
        delta_item = eta * (error * user_vec - lam * item_vec)
        return delta_user, delta_item

    @staticmethod
    def predict(user_vec: np.ndarray, item_vec: np.ndarray) -> float:
        return float(np.dot(user_vec, item_vec))
