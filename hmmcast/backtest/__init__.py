"""Walk-forward backtesting on top of the HMM ensemble."""

from .artifacts import load_model_parameters, save_forecast_timeline, save_model_parameters, save_tally
from .records import RaceRecord, payout_bucket, race_observation_code, settle_bets
from .walkforward import BacktestTally, StepResult, WalkForwardController, WalkForwardResult

__all__ = [
    "BacktestTally",
    "RaceRecord",
    "StepResult",
    "WalkForwardController",
    "WalkForwardResult",
    "load_model_parameters",
    "payout_bucket",
    "race_observation_code",
    "save_forecast_timeline",
    "save_model_parameters",
    "save_tally",
    "settle_bets",
]
