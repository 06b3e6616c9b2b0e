import math
import time
from dataclasses import dataclass
from itertools import product
from typing import Any, Dict, Iterable, NamedTuple, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.utils.validation import check_array
from tqdm import tqdm

from cnmf.algorithms import (
    ALGORITHMS,
    Algorithm,
    ConfigurationError,
    get_algorithm,
)
from cnmf.common import (
    check_components,
    check_dims,
    check_lags,
    compute_loss,
    tensor_conv,
)
from cnmf.config import FitConfig
from cnmf.utils import get_logger

logger = get_logger(__name__)


class InitializationError(ValueError):
    """Raised when the random initialization cannot be scaled to the data."""


class FitRecord(NamedTuple):
    iteration: int
    time: float  # cumulative wall-clock seconds
    loss: float


def _frozen(arr) -> np.ndarray:
    out = np.array(arr, dtype=np.float64, copy=True)
    out.setflags(write=False)
    return out


@dataclass(frozen=True, eq=False)
class CNMFResults:
    """Holds results from a single convolutive NMF fit."""

    data: np.ndarray
    W: np.ndarray
    H: np.ndarray
    history: Tuple[FitRecord, ...]
    l1_H: float
    l2_H: float
    l1_W: float
    l2_W: float
    alg: Algorithm

    def __post_init__(self):
        object.__setattr__(self, "data", _frozen(self.data))
        object.__setattr__(self, "W", _frozen(self.W))
        object.__setattr__(self, "H", _frozen(self.H))
        object.__setattr__(self, "history", tuple(FitRecord(*r) for r in self.history))
        object.__setattr__(self, "alg", Algorithm.parse(self.alg))

    @property
    def time_hist(self) -> np.ndarray:
        return np.array([r.time for r in self.history], dtype=np.float64)

    @property
    def loss_hist(self) -> np.ndarray:
        return np.array([r.loss for r in self.history], dtype=np.float64)

    @property
    def num_lags(self) -> int:
        """Width of each motif."""
        return self.W.shape[0]

    @property
    def num_units(self) -> int:
        """Number of measured time series."""
        return self.W.shape[1]

    @property
    def num_components(self) -> int:
        """Number of model motifs."""
        return self.W.shape[2]

    @property
    def num_iter(self) -> int:
        """Number of recorded history entries (initial loss included)."""
        return len(self.history)

    def reconstruct(self) -> np.ndarray:
        return tensor_conv(self.W, self.H)

    def sortperm(self) -> np.ndarray:
        """
        Unit ordering that reveals sequences.

        Each unit is keyed by the component where it carries the most
        (norm-normalized) weight and by the lag of its peak within that
        component; units are sorted by component, then by lag.
        """
        norms = np.linalg.norm(self.W, axis=(0, 1))
        W_norm = self.W / np.where(norms > 0, norms, 1.0)

        # (N, K): weight of each unit per component, summed over lags
        sum_over_lags = W_norm.sum(axis=0)
        max_component = np.argmax(sum_over_lags, axis=1)

        units = np.arange(self.num_units)
        max_lag = np.argmax(W_norm[:, units, max_component], axis=0)

        return np.lexsort((max_lag, max_component))


def converged(loss_hist, patience: int, tol: float) -> bool:
    """True iff the last `patience` loss differences are all below tol."""
    loss_hist = np.asarray(loss_hist, dtype=float)
    patience = int(patience)

    # If we have not run for `patience` iterations, we have not converged.
    if len(loss_hist) <= patience:
        return False

    d_loss = np.diff(loss_hist[-(patience + 1) :])
    return bool(np.all(np.abs(d_loss) < tol))


def init_rand(
    data: np.ndarray,
    L: int,
    K: int,
    rng: Optional[np.random.Generator] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Initialize randomly, scaling to minimize square error.

    The scale alpha = <data, est> / ||est||^2 is split evenly between W and H.
    A non-positive alpha (data anti-correlated with a non-negative estimate,
    e.g. all-negative data) raises InitializationError.
    """
    N, T = data.shape
    check_components(K)
    check_lags(T, L)
    rng = rng if rng is not None else np.random.default_rng()

    W = rng.random((L, N, K))
    H = rng.random((K, T))

    est = tensor_conv(W, H)
    est_norm2 = float(np.sum(est * est))
    alpha = float(np.dot(data.ravel(), est.ravel())) / est_norm2 if est_norm2 > 0 else math.nan
    if not np.isfinite(alpha) or alpha <= 0:
        raise InitializationError(
            f"Cannot scale random initialization to the data (alpha={alpha}); "
            "pass initW/initH or use non-negative data"
        )

    W *= math.sqrt(alpha)
    H *= math.sqrt(alpha)
    return W, H


def fit_cnmf(data, config: Optional[FitConfig] = None, **kwargs) -> CNMFResults:
    """
    Fit a convolutive NMF model, data ≈ tensor_conv(W, H).

    Options come from `config` and/or keyword arguments (keywords win); see
    FitConfig for the full list.
    ANLS with any nonzero regularization weight raises ConfigurationError
    before initialization, so even max_itr=0 fails.
    """
    cfg = config if config is not None else FitConfig()
    if kwargs:
        cfg = FitConfig.from_dict({**cfg.to_kwargs(), **kwargs})

    data = check_array(data, dtype=np.float64, ensure_2d=True, copy=True)
    alg = Algorithm.parse(cfg.alg)
    plugin = get_algorithm(alg)
    reg = cfg.regularization
    max_itr = cfg.max_itr

    # Fatal before any work is done
    if not alg.supports_regularization and any(v != 0 for v in reg.values()):
        raise ConfigurationError(
            f"Regularization not supported with {alg.value.upper()} (got {reg})"
        )

    N, T = data.shape
    logger.info(
        f"alg={alg.value},N={N},T={T},L={cfg.L},K={cfg.K}\n"
        f"max_itr={max_itr},max_time={cfg.max_time},reg={reg}\n"
        f"check_convergence={cfg.check_convergence},tol={cfg.tol},patience={cfg.patience},"
        f"sep_init={cfg.sep_init},seed={cfg.seed}"
    )

    # Initialize
    rng = np.random.default_rng(cfg.seed)
    if cfg.initW is None or cfg.initH is None:
        W, H = init_rand(data, cfg.L, cfg.K, rng)
    if cfg.initW is not None:
        W = np.array(cfg.initW, dtype=np.float64)
    if cfg.initH is not None:
        H = np.array(cfg.initH, dtype=np.float64)
    check_dims(data, W, H)

    meta = None

    # Set up optimization tracking
    history = [FitRecord(0, 0.0, compute_loss(data, W, H))]

    # Use separable algorithm if applicable
    if alg is Algorithm.SEP or cfg.sep_init:
        t0 = time.perf_counter()
        W, H = ALGORITHMS[Algorithm.SEP].fit(
            data, cfg.K, cfg.L, rng=rng, **cfg.alg_options
        )
        dur = time.perf_counter() - t0
        W = np.asarray(W, dtype=np.float64)
        H = np.asarray(H, dtype=np.float64)

        if alg is Algorithm.SEP:
            history.append(FitRecord(1, history[-1].time + dur, compute_loss(data, W, H)))
            max_itr = 0
        else:
            history = [FitRecord(0, 0.0, compute_loss(data, W, H))]
        logger.info(f"Separable bootstrap done in {dur:.3f}s, loss={history[-1].loss:.6e}")

    # Update
    itr = 1
    while itr <= max_itr and history[-1].time <= cfg.max_time:
        t0 = time.perf_counter()
        loss, meta = plugin.update(data, W, H, meta, rng=rng, **reg, **cfg.alg_options)
        dur = time.perf_counter() - t0

        # Record time and loss
        history.append(FitRecord(itr, history[-1].time + dur, float(loss)))
        logger.debug(f"it:{itr:03d},loss={loss:.6e},dt={dur:.4f}s")
        itr += 1

        # Check convergence
        if cfg.check_convergence and converged(
            [r.loss for r in history], cfg.patience, cfg.tol
        ):
            logger.info(
                f"it:{itr - 1} Converged (|d_loss| < tol={cfg.tol} for {cfg.patience} iters)"
            )
            break
    else:
        if max_itr > 0 and history[-1].time > cfg.max_time:
            logger.info(f"Time budget max_time={cfg.max_time}s exhausted after {itr - 1} iters")

    logger.info(
        f"Final summary: alg={alg.value},iters={len(history) - 1},"
        f"loss={history[-1].loss:.6e},time={history[-1].time:.3f}s"
    )

    return CNMFResults(
        data=data,
        W=W,
        H=H,
        history=tuple(history),
        alg=alg,
        **reg,
    )


def parameter_sweep(
    data,
    L_vals: Iterable[int] = (7,),
    K_vals: Iterable[int] = (3,),
    alg_vals: Iterable = ("mult",),
    **fit_kwargs: Any,
) -> Dict[Tuple[int, int, Algorithm], CNMFResults]:
    """
    Fit several models with varying parameters.

    One fit per (L, K, alg) in the cartesian product; remaining keyword
    arguments are shared fit options.
    """
    combos = list(product(list(L_vals), list(K_vals), [Algorithm.parse(a) for a in alg_vals]))
    logger.info(f"Total (L,K,alg) combinations to process: {len(combos)}")

    all_results: Dict[Tuple[int, int, Algorithm], CNMFResults] = {}
    for L, K, alg in tqdm(combos, desc="cnmf sweep"):
        all_results[(L, K, alg)] = fit_cnmf(data, L=L, K=K, alg=alg, **fit_kwargs)
    return all_results


def sweep_summary(results: Dict[Tuple[int, int, Algorithm], CNMFResults]) -> pd.DataFrame:
    """One row per fitted (L, K, alg) with its final loss, iterations and time."""
    rows = []
    for (L, K, alg), r in results.items():
        rows.append(
            dict(
                L=L,
                K=K,
                alg=Algorithm.parse(alg).value,
                loss=float(r.loss_hist[-1]),
                n_iter=r.num_iter - 1,
                time=float(r.time_hist[-1]),
            )
        )
    return pd.DataFrame(rows, columns=["L", "K", "alg", "loss", "n_iter", "time"])
