import json
import math
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import yaml

from cnmf.utils import get_logger

logger = get_logger(__name__)


@dataclass
class FitConfig:
    """
    Every option recognized by fit_cnmf.

    Parameters
    ----------
    L : int, default=10
        Motif length (number of lags).
    K : int, default=5
        Number of motifs/components.
    alg : str, default="mult"
        Algorithm tag: "mult", "hals", "anls" or "sep".
    max_itr : int, default=100
        Maximum number of update iterations.
    max_time : float, default=inf
        Wall-clock budget in seconds, checked between iterations.
    l1_H, l2_H, l1_W, l2_W : float, default=0
        L1 / L2 penalties on H and W. Not supported by "anls".
    check_convergence : bool, default=False
        Stop early once the loss plateaus.
    tol : float, default=1e-4
        Plateau tolerance on consecutive loss differences.
    patience : int, default=3
        Number of consecutive differences that must stay below tol.
    seed : int or None, default=None
        Seed for the random initialization.
    initW, initH : array or None
        Initial values overriding the random initialization.
    sep_init : bool, default=False
        Bootstrap with the separable algorithm before iterating.
    alg_options : dict
        Extra keyword options forwarded to the algorithm.
    """

    L: int = 10
    K: int = 5
    alg: str = "mult"
    max_itr: int = 100
    max_time: float = math.inf
    l1_H: float = 0.0
    l2_H: float = 0.0
    l1_W: float = 0.0
    l2_W: float = 0.0
    check_convergence: bool = False
    tol: float = 1e-4
    patience: int = 3
    seed: Optional[int] = None
    initW: Optional[np.ndarray] = None
    initH: Optional[np.ndarray] = None
    sep_init: bool = False
    alg_options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # JSON/YAML configs may carry whole numbers as floats, e.g. patience: 3.0
        self.L = _as_count("L", self.L, minimum=0)
        self.K = _as_count("K", self.K, minimum=0)
        self.patience = _as_count("patience", self.patience, minimum=0)
        if not (isinstance(self.max_itr, float) and math.isinf(self.max_itr)):
            self.max_itr = _as_count("max_itr", self.max_itr, minimum=0)

    @property
    def regularization(self) -> Dict[str, float]:
        return dict(
            l1_H=float(self.l1_H),
            l2_H=float(self.l2_H),
            l1_W=float(self.l1_W),
            l2_W=float(self.l2_W),
        )

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "FitConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ValueError(
                f"Unknown fit option(s): {unknown}. Valid options: {sorted(known)}"
            )
        return cls(**raw)

    def to_kwargs(self) -> Dict[str, Any]:
        return asdict(self)


def _as_count(name: str, value, minimum: int) -> int:
    """Whole-number option as an int, raising ValueError otherwise."""
    try:
        as_float = float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name} must be a whole number, got {value!r}") from e
    if isinstance(value, bool) or not as_float.is_integer():
        raise ValueError(f"{name} must be a whole number, got {value!r}")
    if as_float < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value!r}")
    return int(as_float)

def load_fit_config(config_path: Optional[Path]) -> FitConfig:
    """
    Load fit options from a JSON or YAML file.

    Expected format (keys are FitConfig field names):

    JSON:
    {
      "L": 12,
      "K": 3,
      "alg": "hals",
      "max_itr": 200,
      "check_convergence": true,
      "alg_options": {}
    }

    YAML equivalent is also supported.
    """
    if config_path is None:
        return FitConfig()

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Fit config file not found: {config_path}")

    suffix = config_path.suffix.lower()
    if suffix == ".json":
        with config_path.open("r") as f:
            raw = json.load(f)
    elif suffix in (".yml", ".yaml"):
        with config_path.open("r") as f:
            raw = yaml.safe_load(f)
    else:
        raise ValueError(
            f"Unsupported config file extension '{suffix}'. "
            "Use .json, .yaml or .yml."
        )

    if raw is None:
        logger.warning(f"Config file {config_path} is empty; using defaults.")
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(
            f"Config file {config_path} must hold a mapping, got {type(raw).__name__}"
        )
    if isinstance(raw.get("max_time"), str):
        raw["max_time"] = float(raw["max_time"])

    cfg = FitConfig.from_dict(raw)
    logger.info(f"Loaded fit config from {config_path}: {cfg}")
    return cfg
