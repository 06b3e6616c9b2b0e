import sys
import random
import logging
import argparse
from pathlib import Path

import numpy as np


# ---- One base for everything ----
BASE_LOGGER = "cnmf"
_BASE = logging.getLogger(BASE_LOGGER)  # the only logger we configure here


def setup_logging(
    log_path: str | Path | None, level: str = "INFO"
) -> logging.Logger:
    """Configure the base logger once (file + console)."""
    if getattr(_BASE, "_configured", False):
        return _BASE

    _BASE.handlers.clear()
    _BASE.setLevel(getattr(logging, level.upper(), logging.INFO))
    fmt = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(funcName)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Optional file handler
    if log_path:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(log_path), encoding="utf-8")
        fh.setFormatter(fmt)
        _BASE.addHandler(fh)

    # Console handler
    sh = logging.StreamHandler(sys.stdout)
    sh.setFormatter(fmt)
    _BASE.addHandler(sh)

    # Do not bubble to the *root* logger
    _BASE.propagate = False
    _BASE._configured = True
    return _BASE


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a child logger that inherits the base handlers."""
    if not name:
        return _BASE
    # Modules of this package already live under the base name
    if name == BASE_LOGGER or name.startswith(BASE_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{BASE_LOGGER}.{name}")


logger = get_logger(__name__)


def str2bool(v):
    if isinstance(v, bool):
        return v
    if v.lower() in ("yes", "true", "t", "1"):
        return True
    elif v.lower() in ("no", "false", "f", "0"):
        return False
    else:
        raise argparse.ArgumentTypeError(
            "Expected a boolean value (true/false)"
        )


def set_seed(seed: int = 42):
    """Set seed for reproducibility across random and numpy."""
    random.seed(seed)
    np.random.seed(seed)


def parse_range(arg: str):
    """
    Parse a CLI argument that can be either:
      - a colon-separated range 'START:END' (inclusive of START, exclusive of END),
      - or a comma-separated list 'a,b,c'.
    Returns a Python range or a list of ints.
    """
    if not arg or arg.strip() == "":
        return None

    try:
        if ":" in arg:
            start, end = arg.split(":")
            return range(int(start), int(end))
        return [int(x.strip()) for x in arg.split(",") if x.strip()]
    except ValueError as e:
        raise argparse.ArgumentTypeError(
            f"Invalid range format: {arg}. Use START:END or a,b,c"
        ) from e

