import pytest

from hmmcast.backtest import RaceRecord, payout_bucket, race_observation_code, settle_bets

PAYOUTS = (2.0, 4.5, 6.0, 8.0, 12.0, 20.0)


def _race(slot, payout, number=1):
    return RaceRecord(day=1, venue="Tokyo", time="10:00", race_number=number,
                      payouts=PAYOUTS, winning_slot=slot, winning_payout=payout)


@pytest.mark.parametrize(
    "payout,bucket",
    [(1.0, 0), (5.5, 0), (5.6, 1), (9.6, 1), (9.7, 2), (50.0, 2)],
)
def test_payout_bucket_edges(payout, bucket):
    assert payout_bucket(payout) == bucket


def test_observation_code():
    assert race_observation_code(_race(1, 2.0)) == 0
    assert race_observation_code(_race(2, 7.0)) == 4
    assert race_observation_code(_race(6, 20.0)) == 17


def test_unresolved_race_has_no_code():
    pending = _race(None, None)
    assert not pending.is_resolved
    assert pending.resolved_symbol is None
    with pytest.raises(ValueError):
        race_observation_code(pending)
    with pytest.raises(ValueError):
        race_observation_code(_race(7, 3.0))


def test_settle_bets():
    race = _race(3, 6.0)
    assert settle_bets([3], race) == (pytest.approx(5.0), 1)
    assert settle_bets([1, 3, 5], race) == (pytest.approx(3.0), 1)
    assert settle_bets([1, 2], race) == (pytest.approx(-2.0), 0)
    assert settle_bets([], race) == (0.0, 0)
