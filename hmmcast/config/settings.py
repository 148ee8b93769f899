# hmmcast/config/settings.py
from __future__ import annotations

from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Dict, Literal, Optional
import yaml


BACKENDS = ("process", "thread")
FAILURE_POLICIES = ("abort", "drop")


# -----------------------------
# Dataclasses (schema)
# -----------------------------

@dataclass(frozen=True)
class HMMConfig:
    """Shape and training budget of a single ensemble member."""

    n_states: int = 8
    n_observations: int = 18              # 6 slots * 3 payout buckets
    max_iter: int = 600
    tol: float = 5e-3                     # |delta log-likelihood| for early stop; 0 disables

    def __post_init__(self) -> None:
        if self.n_states < 1 or self.n_observations < 1:
            raise ValueError("n_states and n_observations must be positive")
        if self.max_iter < 0:
            raise ValueError("max_iter must be >= 0")
        if self.tol < 0:
            raise ValueError("tol must be >= 0")


@dataclass(frozen=True)
class EnsembleConfig:
    size: int = 120
    seed: Optional[int] = None
    on_member_failure: Literal["abort", "drop"] = "abort"

    def __post_init__(self) -> None:
        if self.size < 1:
            raise ValueError("ensemble size must be >= 1")
        if self.on_member_failure not in FAILURE_POLICIES:
            raise ValueError(f"on_member_failure must be one of {FAILURE_POLICIES}")


@dataclass(frozen=True)
class WalkForwardConfig:
    chunk_size: int = 3                   # records revealed together; also the forecast horizon
    workers: int = 4
    backend: Literal["process", "thread"] = "process"

    hmm: HMMConfig = HMMConfig()
    ensemble: EnsembleConfig = EnsembleConfig()

    # opaque settings for the decision collaborator (bet limit, weights, ...)
    decision: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if self.workers < 1:
            raise ValueError("workers must be >= 1")
        if self.backend not in BACKENDS:
            raise ValueError(f"backend must be one of {BACKENDS}")

    # -----------------------------
    # YAML helpers
    # -----------------------------

    @staticmethod
    def _filter_kwargs(cls, data: Any) -> Dict[str, Any]:
        """
        Keep only keys that exist on the dataclass `cls`.
        This makes parsing forgiving to unknown/extra YAML keys.
        """
        if not isinstance(data, dict):
            return {}
        valid = cls.__dataclass_fields__.keys()  # type: ignore[attr-defined]
        return {k: v for k, v in data.items() if k in valid}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "WalkForwardConfig":
        d = d or {}

        def mk(subcls, key):
            return subcls(**cls._filter_kwargs(subcls, d.get(key, {})))

        top = cls._filter_kwargs(cls, d)
        top.pop("hmm", None)
        top.pop("ensemble", None)
        top["decision"] = dict(d.get("decision") or {})
        return cls(hmm=mk(HMMConfig, "hmm"), ensemble=mk(EnsembleConfig, "ensemble"), **top)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "WalkForwardConfig":
        d = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        return cls.from_dict(d)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
