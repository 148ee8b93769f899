"""Discrete-observation hidden Markov model trained with Baum-Welch.

The model keeps three distributions:

* ``pi``  initial state distribution, shape ``(N,)``
* ``A``   state transition matrix, shape ``(N, N)``
* ``B``   emission matrix over the observation alphabet, shape ``(N, M)``

plus a transposed copy of ``A`` that is refreshed after every change to
``A``.  The forward recursion and the forecast loop read it row by row.

Observation sequences are integer arrays with values in ``[0, M)``; the
sentinel :data:`MISSING` marks an unresolved position.  Its emission
probability is taken as 1 in the forward and backward passes and it does not
contribute to the re-estimated emission matrix.

Both recursions are scaled per time step, so long sequences never underflow.
A forward step whose mass drops to zero ends training early instead of
raising, and every zero denominator is replaced by :data:`EPSILON`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .buffers import BufferPool
from .random_pool import RandomPool

logger = logging.getLogger(__name__)

MISSING = -1
EPSILON = 1e-20
INIT_FLOOR = 1e-10


@dataclass
class TrainSummary:
    """Outcome of :meth:`DiscreteHMM.train`."""

    iterations: int = 0
    log_likelihood: float = float("-inf")
    converged: bool = False
    collapsed: bool = False


def _reestimate_rows(numer: np.ndarray, denom: np.ndarray, previous: np.ndarray) -> np.ndarray:
    """Divide accumulated counts row-wise.

    Rows without any accumulated mass keep their previous distribution.
    """
    denom = np.where(denom == 0, EPSILON, denom)
    rows = numer / denom[:, None]
    empty = numer.sum(axis=1) == 0
    if empty.any():
        rows[empty] = previous[empty]
    return rows


class DiscreteHMM:
    """HMM with categorical emissions.

    Parameters
    ----------
    n_states : int
        Number of hidden states ``N``.
    n_observations : int
        Size ``M`` of the observation alphabet.
    rng : RandomPool, optional
        Source of the uniform values used by :meth:`initialize`.
    buffers : BufferPool, optional
        Scratch arrays for the training tensors.  Owned by this model.
    """

    def __init__(
        self,
        n_states: int,
        n_observations: int,
        rng: RandomPool | None = None,
        buffers: BufferPool | None = None,
    ) -> None:
        if n_states < 1 or n_observations < 1:
            raise ValueError("n_states and n_observations must be positive")
        self.n_states = int(n_states)
        self.n_observations = int(n_observations)
        self.rng = rng if rng is not None else RandomPool()
        self.buffers = buffers if buffers is not None else BufferPool()

        n, m = self.n_states, self.n_observations
        self._pi = np.zeros(n)
        self._A = np.zeros((n, n))
        self._At = np.zeros((n, n))
        self._B = np.zeros((n, m))
        self.initialize()

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    @staticmethod
    def _readonly(arr: np.ndarray) -> np.ndarray:
        view = arr.view()
        view.flags.writeable = False
        return view

    @property
    def start_probability(self) -> np.ndarray:
        return self._readonly(self._pi)

    @property
    def transition(self) -> np.ndarray:
        return self._readonly(self._A)

    @property
    def emission(self) -> np.ndarray:
        return self._readonly(self._B)

    def set_parameters(self, start: Sequence[float], transition: np.ndarray, emission: np.ndarray) -> None:
        """Overwrite ``pi``, ``A`` and ``B`` (shapes must match the model)."""
        n, m = self.n_states, self.n_observations
        start = np.asarray(start, dtype=float)
        transition = np.asarray(transition, dtype=float)
        emission = np.asarray(emission, dtype=float)
        if start.shape != (n,) or transition.shape != (n, n) or emission.shape != (n, m):
            raise ValueError(
                f"expected shapes {(n,)}, {(n, n)}, {(n, m)}; "
                f"got {start.shape}, {transition.shape}, {emission.shape}"
            )
        self._pi[:] = start
        self._A[:] = transition
        self._B[:] = emission
        self._sync_transpose()

    def initialize(self) -> None:
        """Randomise every distribution.  EM cannot leave a symmetric start."""
        self._fill_random_normalized(self._pi)
        for i in range(self.n_states):
            self._fill_random_normalized(self._A[i])
            self._fill_random_normalized(self._B[i])
        self._sync_transpose()

    def _fill_random_normalized(self, row: np.ndarray) -> None:
        values = np.maximum(self.rng.next_batch(row.size), INIT_FLOOR)
        row[:] = values / values.sum()

    def _sync_transpose(self) -> None:
        self._At[:] = self._A.T

    # ------------------------------------------------------------------
    # Recursions
    # ------------------------------------------------------------------

    def _as_sequence(self, observations: Sequence[int] | np.ndarray) -> np.ndarray:
        obs = np.asarray(observations, dtype=np.int64).reshape(-1)
        if obs.size and (obs.min() < MISSING or obs.max() >= self.n_observations):
            raise ValueError(
                f"observations must lie in [0, {self.n_observations}) or equal MISSING ({MISSING})"
            )
        return obs

    def _emission_rows(self, obs: np.ndarray, out: np.ndarray) -> np.ndarray:
        """``out[t, i] = B[i, obs[t]]``, or 1 where ``obs[t]`` is missing."""
        observed = obs != MISSING
        out[observed] = self._B[:, obs[observed]].T
        out[~observed] = 1.0
        return out

    def _forward(self, emis: np.ndarray, alpha: np.ndarray) -> float:
        """Scaled forward pass.

        Fills ``alpha`` with the filtered state distribution of every step and
        returns the log-likelihood, or ``-inf`` once a step has no mass left
        (the remaining rows are then zeroed).
        """
        log_likelihood = 0.0
        np.multiply(self._pi, emis[0], out=alpha[0])
        for t in range(emis.shape[0]):
            if t > 0:
                np.dot(self._At, alpha[t - 1], out=alpha[t])
                alpha[t] *= emis[t]
            total = alpha[t].sum()
            if not total > 0:
                alpha[t:] = 0.0
                return float("-inf")
            alpha[t] /= total
            log_likelihood += np.log(total)
        return float(log_likelihood)

    def _backward(self, emis: np.ndarray, beta: np.ndarray) -> None:
        T = emis.shape[0]
        beta[T - 1] = 1.0
        for t in range(T - 2, -1, -1):
            np.dot(self._A, emis[t + 1] * beta[t + 1], out=beta[t])
            total = beta[t].sum()
            if total == 0:
                total = EPSILON
            beta[t] /= total

    def _expectations(
        self,
        emis: np.ndarray,
        alpha: np.ndarray,
        beta: np.ndarray,
        gamma: np.ndarray,
        xi: np.ndarray,
    ) -> None:
        # xi[t, i, j] ~ alpha[t, i] * A[i, j] * e[t + 1, j] * beta[t + 1, j]
        np.multiply(alpha[:-1, :, None], self._A[None, :, :], out=xi)
        xi *= (emis[1:] * beta[1:])[:, None, :]
        denom = xi.sum(axis=(1, 2))
        denom[denom == 0] = EPSILON
        xi /= denom[:, None, None]
        np.sum(xi, axis=2, out=gamma[:-1])

        last = alpha[-1].sum()
        gamma[-1] = alpha[-1] / (last if last != 0 else EPSILON)

    def emission_counts(self, obs: np.ndarray, gamma: np.ndarray) -> np.ndarray:
        """Expected ``(N, M)`` emission counts over the resolved positions."""
        counts = np.zeros((self.n_observations, self.n_states))
        observed = obs != MISSING
        np.add.at(counts, obs[observed], gamma[observed])
        return counts.T

    def _maximize(self, obs: np.ndarray, gamma: np.ndarray, xi: np.ndarray) -> None:
        observed = obs != MISSING
        self._pi[:] = gamma[0]
        self._A[:] = _reestimate_rows(xi.sum(axis=0), gamma[:-1].sum(axis=0), self._A)
        self._B[:] = _reestimate_rows(
            self.emission_counts(obs, gamma), gamma[observed].sum(axis=0), self._B
        )
        self._sync_transpose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def train(
        self,
        observations: Sequence[int] | np.ndarray,
        max_iter: int = 100,
        tol: float = 0.0,
    ) -> TrainSummary:
        """Fit the parameters to ``observations`` with Baum-Welch.

        Sequences shorter than two leave the model untouched.  Training stops
        after ``max_iter`` rounds, when the log-likelihood moves by less than
        ``tol`` (if ``tol > 0``), or when the forward pass collapses.
        """
        obs = self._as_sequence(observations)
        summary = TrainSummary()
        T = obs.size
        if T < 2:
            return summary

        n = self.n_states
        previous = float("-inf")
        self._sync_transpose()
        shapes = ((T, n), (T, n), (T, n), (T, n), (T - 1, n, n))
        with self.buffers.scratch(*shapes) as (emis, alpha, beta, gamma, xi):
            for it in range(max_iter):
                self._emission_rows(obs, emis)
                log_likelihood = self._forward(emis, alpha)
                if log_likelihood == float("-inf"):
                    summary.collapsed = True
                    logger.warning("forward pass collapsed at iteration %d; keeping last parameters", it)
                    break
                summary.log_likelihood = log_likelihood

                if tol > 0 and it > 0 and abs(log_likelihood - previous) < tol:
                    summary.converged = True
                    break
                previous = log_likelihood

                self._backward(emis, beta)
                self._expectations(emis, alpha, beta, gamma, xi)
                self._maximize(obs, gamma, xi)
                summary.iterations += 1

        logger.debug(
            "trained on %d observations: iterations=%d ll=%.4f converged=%s",
            T, summary.iterations, summary.log_likelihood, summary.converged,
        )
        return summary

    def score(self, observations: Sequence[int] | np.ndarray) -> float:
        """Log-likelihood of ``observations`` under the current parameters."""
        obs = self._as_sequence(observations)
        if obs.size == 0:
            return 0.0
        shape = (obs.size, self.n_states)
        with self.buffers.scratch(shape, shape) as (emis, alpha):
            self._emission_rows(obs, emis)
            return self._forward(emis, alpha)

    def _filtered_state(self, obs: np.ndarray) -> np.ndarray:
        if obs.size == 0:
            state = self._pi.copy()
        else:
            shape = (obs.size, self.n_states)
            with self.buffers.scratch(shape, shape) as (emis, alpha):
                self._emission_rows(obs, emis)
                self._forward(emis, alpha)
                state = alpha[-1].copy()
        total = state.sum()
        if total == 0:
            return np.full(self.n_states, 1.0 / self.n_states)
        return state / total

    def predict_steps(self, observations: Sequence[int] | np.ndarray, steps: int) -> np.ndarray:
        """Observation distributions for the next ``steps`` positions.

        Returns an array of shape ``(steps, M)``; row ``s`` is the
        distribution ``s + 1`` steps after the last observation.
        """
        if steps < 0:
            raise ValueError("steps must be >= 0")
        state = self._filtered_state(self._as_sequence(observations))
        out = np.empty((steps, self.n_observations))
        for s in range(steps):
            state = self._At @ state
            out[s] = state @ self._B
        return out

    def predict_next(self, observations: Sequence[int] | np.ndarray, steps: int = 1) -> np.ndarray:
        """Distribution ``steps`` positions ahead (last row of :meth:`predict_steps`)."""
        if steps < 1:
            raise ValueError("steps must be >= 1")
        return self.predict_steps(observations, steps)[-1]
