"""Ensembles of independently initialised HMMs.

Each member is a fresh :class:`~hmmcast.prob.model.DiscreteHMM` seeded on its
own, trained on the same observation sequence and asked for the same number
of forecast steps.  The per-step observation distributions of all members are
averaged with equal weights.
"""

from __future__ import annotations

import logging
from concurrent.futures import wait
from dataclasses import dataclass
from typing import Callable, List, Sequence

import numpy as np

from hmmcast.config import HMMConfig
from .model import DiscreteHMM
from .random_pool import RandomPool

logger = logging.getLogger(__name__)

# enough uniforms to initialise pi, A and B of the configured model
_INIT_POOL_SIZE = 4096


class EnsembleError(RuntimeError):
    """Raised when a chunk's ensemble cannot produce a forecast."""


@dataclass(frozen=True)
class EnsembleTask:
    """Payload handed to a worker for one ensemble member."""

    sequence: np.ndarray
    n_states: int
    n_observations: int
    max_iter: int
    tol: float
    steps: int
    seed: int | None = None

    @classmethod
    def build(cls, sequence: Sequence[int] | np.ndarray, cfg: HMMConfig, steps: int, seed: int | None) -> "EnsembleTask":
        return cls(
            sequence=readonly_sequence(sequence),
            n_states=cfg.n_states,
            n_observations=cfg.n_observations,
            max_iter=cfg.max_iter,
            tol=cfg.tol,
            steps=steps,
            seed=seed,
        )


MemberFn = Callable[[EnsembleTask], np.ndarray]


def readonly_sequence(sequence: Sequence[int] | np.ndarray) -> np.ndarray:
    """Copy ``sequence`` into an int array that cannot be written to.

    An array that is already a read-only int64 vector is returned as is, so
    every member of one chunk shares the same snapshot.
    """
    if (
        isinstance(sequence, np.ndarray)
        and sequence.dtype == np.int64
        and sequence.ndim == 1
        and not sequence.flags.writeable
    ):
        return sequence
    arr = np.array(sequence, dtype=np.int64).reshape(-1)
    arr.flags.writeable = False
    return arr


def run_ensemble_member(task: EnsembleTask) -> np.ndarray:
    """Train one randomly initialised model and forecast ``task.steps`` ahead."""
    size = max(_INIT_POOL_SIZE, task.n_states * (1 + task.n_states + task.n_observations))
    model = DiscreteHMM(task.n_states, task.n_observations, rng=RandomPool(size=size, seed=task.seed))
    model.train(task.sequence, task.max_iter, task.tol)
    return model.predict_steps(task.sequence, task.steps)


def member_seeds(seed_sequence: np.random.SeedSequence, k: int) -> List[int]:
    """Derive ``k`` independent integer seeds from ``seed_sequence``."""
    return [int(child.generate_state(1)[0]) for child in seed_sequence.spawn(k)]


def aggregate_predictions(predictions: Sequence[np.ndarray]) -> np.ndarray:
    """Unweighted mean of the members' ``(steps, M)`` forecasts."""
    if len(predictions) == 0:
        raise ValueError("cannot aggregate an empty ensemble")
    shapes = {np.shape(p) for p in predictions}
    if len(shapes) != 1:
        raise ValueError(f"ensemble members disagree on forecast shape: {sorted(shapes)}")
    stacked = np.stack([np.asarray(p, dtype=float) for p in predictions])
    return stacked.mean(axis=0)


def forecast_ensemble(
    pool,
    sequence: Sequence[int] | np.ndarray,
    steps: int,
    hmm_cfg: HMMConfig,
    seeds: Sequence[int | None],
    on_failure: str = "abort",
    member_fn: MemberFn = run_ensemble_member,
) -> np.ndarray:
    """Train ``len(seeds)`` members in ``pool`` and average their forecasts.

    Blocks until every member has finished.  With ``on_failure="abort"`` the
    first failed member turns into an :class:`EnsembleError`; with ``"drop"``
    failed members are skipped and the average runs over the survivors.
    """
    if len(seeds) == 0:
        raise ValueError("an ensemble needs at least one member")
    snapshot = readonly_sequence(sequence)
    futures = [
        pool.submit(member_fn, EnsembleTask.build(snapshot, hmm_cfg, steps, seed))
        for seed in seeds
    ]
    wait(futures)

    results: List[np.ndarray] = []
    failures: List[BaseException] = []
    for idx, fut in enumerate(futures):
        exc = fut.exception()
        if exc is None:
            results.append(fut.result())
            continue
        failures.append(exc)
        if on_failure == "abort":
            raise EnsembleError(f"ensemble member {idx} failed: {exc!r}") from exc
        logger.warning("dropping ensemble member %d: %r", idx, exc)

    if not results:
        raise EnsembleError(f"all {len(futures)} ensemble members failed") from failures[0]
    if failures:
        logger.warning("ensemble averaged over %d of %d members", len(results), len(futures))
    return aggregate_predictions(results)
