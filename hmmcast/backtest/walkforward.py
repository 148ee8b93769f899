"""Walk-forward backtest driven by an HMM ensemble.

Target records are processed in fixed-size chunks.  Before each chunk an
ensemble of freshly initialised models is trained on the observation codes of
everything revealed so far and asked for one forecast per record in the
chunk.  Each record is then handed, with its averaged forecast and the running
statistics, to an external decision function; once the record's outcome is
known its code is appended to the sequence and the statistics are updated
before the next record.  Nothing revealed inside a chunk reaches that chunk's
training (no lookahead).

The decision function, the statistics update and the record-to-code mapping
are collaborators supplied by the caller::

    decide(probabilities, stats, decision_config) -> bets
    update_stats(stats, record) -> new stats or None
    observation_code(record) -> int
    settle(bets, record) -> (profit, wins)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from hmmcast.config import WalkForwardConfig
from hmmcast.parallel import TaskPool
from hmmcast.prob.ensemble import (
    EnsembleError,
    MemberFn,
    forecast_ensemble,
    member_seeds,
    readonly_sequence,
    run_ensemble_member,
)
from .records import race_observation_code, settle_bets

logger = logging.getLogger(__name__)

DecideFn = Callable[[np.ndarray, Any, Mapping[str, Any]], Iterable[int]]
UpdateStatsFn = Callable[[Any, Any], Any]
ObservationCodeFn = Callable[[Any], int]
SettleFn = Callable[[Sequence[int], Any], Tuple[float, int]]

WIN = "WIN"
LOSS = "LOSS"
OPEN = "OPEN"
PENDING = "PENDING"
SKIPPED = "SKIPPED"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class BacktestTally:
    total_profit: float = 0.0
    correct_predictions: int = 0
    total_predictions: int = 0
    total_bet_cost: int = 0
    skipped: int = 0

    @property
    def roi(self) -> float:
        """Profit as a percentage of the units staked."""
        if self.total_bet_cost <= 0:
            return 0.0
        return self.total_profit / self.total_bet_cost * 100.0

    @property
    def accuracy(self) -> float:
        """Percentage of bet-on resolved records with at least one winning bet."""
        return self.correct_predictions / (self.total_predictions or 1) * 100.0

    def record(self, bets: Sequence[int], profit: float, wins: int) -> None:
        if bets:
            self.total_profit += profit
            self.total_bet_cost += len(bets)
            self.total_predictions += 1
            if wins > 0:
                self.correct_predictions += 1
        else:
            self.skipped += 1

    def to_dict(self) -> dict:
        out = asdict(self)
        out["roi"] = self.roi
        out["accuracy"] = self.accuracy
        return out


@dataclass
class StepResult:
    chunk: int
    position: int
    symbol: Optional[int]
    probabilities: np.ndarray
    bets: Tuple[int, ...]
    status: str
    profit: float
    cumulative_profit: float


@dataclass
class WalkForwardResult:
    steps: List[StepResult] = field(default_factory=list)
    tally: BacktestTally = field(default_factory=BacktestTally)
    sequence_length: int = 0
    history_length: int = 0
    chunks: int = 0

    def to_frame(self) -> pd.DataFrame:
        """One row per processed record, with the averaged forecast as ``p_<k>`` columns."""
        rows = []
        for s in self.steps:
            row = {
                "chunk": s.chunk,
                "position": s.position,
                "symbol": s.symbol,
                "bets": " ".join(str(b) for b in s.bets),
                "status": s.status,
                "profit": s.profit,
                "cumulative_profit": s.cumulative_profit,
            }
            row.update({f"p_{k}": float(p) for k, p in enumerate(s.probabilities)})
            rows.append(row)
        return pd.DataFrame(rows)


def _status(bets: Sequence[int], resolved: bool, wins: int) -> str:
    if bets:
        if not resolved:
            return OPEN
        return WIN if wins > 0 else LOSS
    return SKIPPED if resolved else PENDING


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

class WalkForwardController:
    """Runs the chunked train / aggregate / decide / reveal loop.

    Parameters
    ----------
    config : WalkForwardConfig
        Chunk size, pool size and model / ensemble settings.
    decide : callable
        ``decide(probabilities, stats, config.decision)`` returning the slots
        to bet on for one record.
    update_stats : callable, optional
        Folds a revealed record into the running statistics.  A non-``None``
        return value replaces the statistics object.
    observation_code, settle : callable
        Record-to-symbol mapping and bet settlement.  Default to the race
        helpers in :mod:`hmmcast.backtest.records`.
    pool : TaskPool, optional
        Pool to train ensemble members in.  When omitted the controller
        starts its own for each run and shuts it down afterwards.
    member_fn : callable
        Train-and-forecast function executed for every ensemble member.

    After a run, or after a chunk failed, ``history``, ``sequence`` and
    ``stats`` hold the state as of the last completed record.
    """

    def __init__(
        self,
        config: WalkForwardConfig,
        decide: DecideFn,
        update_stats: Optional[UpdateStatsFn] = None,
        observation_code: ObservationCodeFn = race_observation_code,
        settle: SettleFn = settle_bets,
        pool: Optional[TaskPool] = None,
        member_fn: MemberFn = run_ensemble_member,
    ) -> None:
        self.config = config
        self.decide = decide
        self.update_stats = update_stats
        self.observation_code = observation_code
        self.settle = settle
        self.pool = pool
        self.member_fn = member_fn

        self.history: List[Any] = []
        self.sequence: List[int] = []
        self.stats: Any = None

    def _is_resolved(self, record: Any) -> bool:
        return getattr(record, "resolved_symbol", None) is not None

    def _reveal(self, record: Any) -> None:
        if self._is_resolved(record):
            self.sequence.append(int(self.observation_code(record)))
            if self.update_stats is not None:
                updated = self.update_stats(self.stats, record)
                if updated is not None:
                    self.stats = updated
        self.history.append(record)

    def run(self, history: Iterable[Any], targets: Sequence[Any], stats: Any = None) -> WalkForwardResult:
        cfg = self.config
        self.history = list(history)
        self.sequence = [int(self.observation_code(r)) for r in self.history if self._is_resolved(r)]
        self.stats = stats

        result = WalkForwardResult()
        seeds_root = np.random.SeedSequence(cfg.ensemble.seed)
        logger.info(
            "walk-forward start: history=%d sequence=%d targets=%d chunk=%d ensemble=%d workers=%d",
            len(self.history), len(self.sequence), len(targets),
            cfg.chunk_size, cfg.ensemble.size, cfg.workers,
        )

        own_pool = self.pool is None and len(targets) > 0
        pool = TaskPool(cfg.workers, cfg.backend) if own_pool else self.pool
        try:
            for chunk_idx, start in enumerate(range(0, len(targets), cfg.chunk_size)):
                chunk = targets[start:start + cfg.chunk_size]
                snapshot = readonly_sequence(self.sequence)
                try:
                    forecasts = forecast_ensemble(
                        pool,
                        snapshot,
                        steps=len(chunk),
                        hmm_cfg=cfg.hmm,
                        seeds=member_seeds(seeds_root, cfg.ensemble.size),
                        on_failure=cfg.ensemble.on_member_failure,
                        member_fn=self.member_fn,
                    )
                except EnsembleError:
                    logger.exception("chunk %d aborted; state left at %d records", chunk_idx, len(self.history))
                    raise

                for j, record in enumerate(chunk):
                    probs = forecasts[j]
                    bets = tuple(int(b) for b in self.decide(probs, self.stats, cfg.decision))
                    resolved = self._is_resolved(record)
                    profit, wins = 0.0, 0
                    if resolved:
                        profit, wins = self.settle(bets, record)
                        result.tally.record(bets, profit, wins)
                    result.steps.append(
                        StepResult(
                            chunk=chunk_idx,
                            position=start + j,
                            symbol=getattr(record, "resolved_symbol", None),
                            probabilities=probs,
                            bets=bets,
                            status=_status(bets, resolved, wins),
                            profit=profit,
                            cumulative_profit=result.tally.total_profit,
                        )
                    )
                    self._reveal(record)

                result.chunks += 1
                logger.info(
                    "chunk %d done: records=%d sequence=%d profit=%.2f",
                    chunk_idx, len(chunk), len(self.sequence), result.tally.total_profit,
                )
        finally:
            if own_pool:
                pool.shutdown()

        result.sequence_length = len(self.sequence)
        result.history_length = len(self.history)
        logger.info(
            "walk-forward done: chunks=%d roi=%.2f%% accuracy=%.2f%% bets=%d skipped=%d",
            result.chunks, result.tally.roi, result.tally.accuracy,
            result.tally.total_bet_cost, result.tally.skipped,
        )
        return result
