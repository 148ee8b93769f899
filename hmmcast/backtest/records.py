# hmmcast/backtest/records.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

N_SLOTS = 6
# payout multipliers at or below LOW are bucket 0, at or below HIGH bucket 1
PAYOUT_BUCKET_EDGES = (5.5, 9.6)
N_BUCKETS = len(PAYOUT_BUCKET_EDGES) + 1


@dataclass(frozen=True)
class RaceRecord:
    """One race outcome as seen by the backtest.

    ``winning_slot`` is 1-based and ``None`` while the race is unresolved.
    """

    day: int
    venue: str
    time: str
    race_number: int
    payouts: Tuple[float, ...]
    winning_slot: Optional[int] = None
    winning_payout: Optional[float] = None

    @property
    def resolved_symbol(self) -> Optional[int]:
        return self.winning_slot

    @property
    def is_resolved(self) -> bool:
        return self.winning_slot is not None


def payout_bucket(payout: float) -> int:
    low, high = PAYOUT_BUCKET_EDGES
    if payout <= low:
        return 0
    if payout <= high:
        return 1
    return 2


def race_observation_code(record: RaceRecord) -> int:
    """Observation symbol of a resolved race: winning slot crossed with payout bucket."""
    if record.winning_slot is None or record.winning_payout is None:
        raise ValueError(f"race {record.venue} #{record.race_number} on day {record.day} is unresolved")
    if not 1 <= record.winning_slot <= N_SLOTS:
        raise ValueError(f"winning slot must be in 1..{N_SLOTS}, got {record.winning_slot}")
    return (record.winning_slot - 1) * N_BUCKETS + payout_bucket(record.winning_payout)


def settle_bets(bets: Iterable[int], record: RaceRecord) -> Tuple[float, int]:
    """Profit and number of winning bets, one unit staked per bet."""
    profit = 0.0
    wins = 0
    for slot in bets:
        if slot == record.winning_slot:
            profit += float(record.winning_payout) - 1.0
            wins += 1
        else:
            profit -= 1.0
    return profit, wins
