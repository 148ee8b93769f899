"""Configuration package.

Holds the walk-forward/HMM settings schema and a helper for reading YAML
files.  The forecasting core only consumes the plain values carried by
:class:`WalkForwardConfig`; reading them from disk is a convenience layer
on top.
"""

from pathlib import Path

import yaml

from .settings import EnsembleConfig, HMMConfig, WalkForwardConfig

EXAMPLE_CONFIG = Path(__file__).parent / "walkforward.example.yaml"


def load_yaml(path: Path) -> dict:
    """Load a YAML file and return its contents as a dictionary.

    Args:
        path: Path to the YAML file.
    Returns:
        A dictionary representing the parsed YAML content (empty for an
        empty file).
    """
    with Path(path).open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


__all__ = [
    "EXAMPLE_CONFIG",
    "EnsembleConfig",
    "HMMConfig",
    "WalkForwardConfig",
    "load_yaml",
]
