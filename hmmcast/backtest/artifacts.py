from __future__ import annotations

"""Helpers for persisting walk-forward results.

CSV for the per-record forecast timeline, JSON for the summary tally and a
numpy archive for a fitted model's parameters.
"""

import json
from pathlib import Path
from typing import Union

import numpy as np

from hmmcast.prob.model import DiscreteHMM
from .walkforward import BacktestTally, WalkForwardResult

PathLike = Union[str, Path]


def save_forecast_timeline(result: WalkForwardResult, path: PathLike) -> None:
    """Save one row per processed record (status, profit, forecast) to CSV."""

    result.to_frame().to_csv(path, index=False)


def save_tally(tally: BacktestTally, path: PathLike) -> None:
    """Dump profit, accuracy and bet counts to JSON."""

    with open(path, "w", encoding="utf-8") as f:
        json.dump(tally.to_dict(), f, indent=2)


def save_model_parameters(model: DiscreteHMM, path: PathLike) -> None:
    np.savez(
        path,
        start=np.asarray(model.start_probability),
        transition=np.asarray(model.transition),
        emission=np.asarray(model.emission),
    )


def load_model_parameters(path: PathLike) -> DiscreteHMM:
    """Rebuild a model from an archive written by :func:`save_model_parameters`."""

    with np.load(path) as data:
        emission = data["emission"]
        model = DiscreteHMM(emission.shape[0], emission.shape[1])
        model.set_parameters(data["start"], data["transition"], emission)
    return model
