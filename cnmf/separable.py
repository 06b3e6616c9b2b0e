"""
Separable bootstrap for convolutive NMF.

Assumes every motif appears, un-overlapped, somewhere in the data. All
length-L windows of the data are flattened into the columns of a
(L*N, T-L+1) matrix; the successive projection algorithm picks the K most
extreme windows, which become the motifs. H is then the non-negative least
squares fit given those motifs.
"""
from typing import Optional, Tuple

import numpy as np

from cnmf.anls import solve_H_nnls
from cnmf.common import check_components, check_lags, loss_from_est, tensor_conv
from cnmf.utils import get_logger

logger = get_logger(__name__)


def fit(
    data: np.ndarray,
    K: int,
    L: int,
    *,
    rng: Optional[np.random.Generator] = None,
    lsq_max_iter: Optional[int] = None,
    **kwargs,
) -> Tuple[np.ndarray, np.ndarray]:
    N, T = data.shape
    check_components(K)
    check_lags(T, L)
    rng = rng if rng is not None else np.random.default_rng()

    windows = window_matrix(data, L)
    picks = successive_projection(windows, K, rng)
    logger.info(f"Separable motifs start at t={picks}")

    W = np.stack([windows[:, j].reshape(L, N) for j in picks], axis=2)
    W = np.maximum(W, 0.0)

    H = np.zeros((K, T))
    solve_H_nnls(data, W, H, max_iter=lsq_max_iter)
    return W, H


def update(
    data: np.ndarray,
    W: np.ndarray,
    H: np.ndarray,
    meta,
    *,
    lsq_max_iter: Optional[int] = None,
    **kwargs,
):
    """Refit H for the current motifs; W is left as found."""
    solve_H_nnls(data, W, H, max_iter=lsq_max_iter)
    return loss_from_est(data, tensor_conv(W, H)), meta


def window_matrix(data: np.ndarray, L: int) -> np.ndarray:
    """Column t is data[:, t:t+L] flattened lag-major, shape (L*N, T-L+1)."""
    N, T = data.shape
    windows = np.lib.stride_tricks.sliding_window_view(data, L, axis=1)
    # (N, T-L+1, L) -> (T-L+1, L, N) -> (L*N, T-L+1)
    return windows.transpose(1, 2, 0).reshape(T - L + 1, L * N).T


def successive_projection(
    X: np.ndarray, K: int, rng: np.random.Generator
) -> list[int]:
    """Indices of K columns of X picked by the successive projection algorithm."""
    R = np.array(X, dtype=float)
    n_cols = R.shape[1]
    picks: list[int] = []
    for _ in range(K):
        norms = np.einsum("ij,ij->j", R, R)
        norms[picks] = -1.0
        j = int(np.argmax(norms))
        if norms[j] <= 0.0:
            # Data is exhausted; fill up with random unused windows
            unused = np.setdiff1d(np.arange(n_cols), picks)
            pool = unused if unused.size else np.arange(n_cols)
            j = int(rng.choice(pool))
            logger.warning(f"Residual windows exhausted, picking t={j} at random")
        else:
            u = R[:, j] / np.sqrt(norms[j])
            R -= np.outer(u, u @ R)
        picks.append(j)
    return picks
