"""Probability models for hmmcast.

Discrete hidden Markov models trained with Baum-Welch, the random source and
scratch buffers they use, and the ensemble helpers that average several
independently initialised models into one forecast.
"""

from .buffers import BufferPool
from .ensemble import (
    EnsembleError,
    EnsembleTask,
    aggregate_predictions,
    forecast_ensemble,
    member_seeds,
    run_ensemble_member,
)
from .model import MISSING, DiscreteHMM, TrainSummary
from .random_pool import RandomPool

__all__ = [
    "MISSING",
    "BufferPool",
    "DiscreteHMM",
    "EnsembleError",
    "EnsembleTask",
    "RandomPool",
    "TrainSummary",
    "aggregate_predictions",
    "forecast_ensemble",
    "member_seeds",
    "run_ensemble_member",
]
