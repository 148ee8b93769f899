import json

import numpy as np
import pandas as pd

from hmmcast.backtest import (
    BacktestTally,
    StepResult,
    WalkForwardResult,
    load_model_parameters,
    save_forecast_timeline,
    save_model_parameters,
    save_tally,
)
from hmmcast.prob import DiscreteHMM, RandomPool


def _result():
    res = WalkForwardResult(chunks=1, sequence_length=4, history_length=4)
    probs = np.array([0.25, 0.5, 0.25])
    res.steps.append(StepResult(0, 0, 2, probs, (2,), "WIN", 3.0, 3.0))
    res.steps.append(StepResult(0, 1, None, probs, (), "PENDING", 0.0, 3.0))
    res.tally.record((2,), 3.0, 1)
    return res


def test_save_forecast_timeline(tmp_path):
    out = tmp_path / "timeline.csv"
    save_forecast_timeline(_result(), out)
    df = pd.read_csv(out)
    assert list(df["status"]) == ["WIN", "PENDING"]
    assert df["p_1"].tolist() == [0.5, 0.5]
    assert df["cumulative_profit"].iloc[-1] == 3.0


def test_save_tally(tmp_path):
    tally = BacktestTally(total_profit=-1.5, correct_predictions=1, total_predictions=4,
                          total_bet_cost=6, skipped=2)
    out = tmp_path / "tally.json"
    save_tally(tally, out)
    data = json.loads(out.read_text())
    assert data["roi"] == -25.0
    assert data["accuracy"] == 25.0
    assert data["skipped"] == 2


def test_model_parameters_round_trip(tmp_path):
    model = DiscreteHMM(3, 4, rng=RandomPool(size=64, seed=2))
    model.train([0, 1, 2, 3, 1, 2], max_iter=5)
    out = tmp_path / "model.npz"
    save_model_parameters(model, out)
    loaded = load_model_parameters(out)
    np.testing.assert_array_equal(loaded.transition, model.transition)
    np.testing.assert_array_equal(loaded.emission, model.emission)
    np.testing.assert_array_equal(loaded.start_probability, model.start_probability)
    np.testing.assert_allclose(loaded.predict_steps([0, 1], 2), model.predict_steps([0, 1], 2))


def test_empty_tally_ratios():
    tally = BacktestTally()
    assert tally.roi == 0.0
    assert tally.accuracy == 0.0
