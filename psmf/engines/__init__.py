"""
Atomic engines (no I/O, no threads of their own).

- factor_initializer: keyed initial vectors
- sgd_updater: the SGD update rule
"""
from .factor_initializer import (
    FactorInitializer,
    RandomFactorInitializer,
    PseudoRandomFactorInitializer,
    ZeroInitializer,
    build_initializer,
)
from .sgd_updater import SGDUpdater

__all__ = [
    "FactorInitializer",
    "RandomFactorInitializer",
    "PseudoRandomFactorInitializer",
    "ZeroInitializer",
    "build_initializer",
    "SGDUpdater",
]
