"""
Alternating non-negative least squares for convolutive NMF.

Each unit's row of the unfolded W is an independent NNLS problem against
shift_and_stack(H, L); H is a single bound-constrained least squares problem
on the sparse convolution matrix of W. Regularization is not supported.
"""
from typing import Optional

import numpy as np
from scipy.optimize import lsq_linear, nnls

from cnmf.common import (
    conv_matrix,
    fold_W,
    loss_from_est,
    shift_and_stack,
    tensor_conv,
)
from cnmf.utils import get_logger

logger = get_logger(__name__)


def update(
    data: np.ndarray,
    W: np.ndarray,
    H: np.ndarray,
    meta,
    *,
    l1_H: float = 0.0,
    l2_H: float = 0.0,
    l1_W: float = 0.0,
    l2_W: float = 0.0,
    lsq_max_iter: Optional[int] = None,
    **kwargs,
):
    if any(r != 0 for r in (l1_H, l2_H, l1_W, l2_W)):
        raise ValueError("Regularization not supported with ANLS")

    solve_W_nnls(data, W, H)
    solve_H_nnls(data, W, H, max_iter=lsq_max_iter)

    return loss_from_est(data, tensor_conv(W, H)), meta


def solve_W_nnls(data: np.ndarray, W: np.ndarray, H: np.ndarray) -> np.ndarray:
    """Exact NNLS update of W with H fixed. Mutates W."""
    L = W.shape[0]
    Hs_T = shift_and_stack(H, L).T

    Wu = np.empty((W.shape[1], Hs_T.shape[1]))
    for n in range(data.shape[0]):
        Wu[n], _ = nnls(Hs_T, data[n])

    W[:] = fold_W(Wu, L)
    return W


def solve_H_nnls(
    data: np.ndarray,
    W: np.ndarray,
    H: np.ndarray,
    max_iter: Optional[int] = None,
) -> np.ndarray:
    """Bound-constrained least squares update of H with W fixed. Mutates H."""
    K, T = H.shape
    A = conv_matrix(W, T)
    res = lsq_linear(
        A,
        data.ravel(),
        bounds=(0.0, np.inf),
        method="trf",
        lsmr_tol="auto",
        max_iter=max_iter,
    )
    if not res.success:
        logger.warning(f"H least squares did not converge: {res.message}")

    H[:] = res.x.reshape(K, T)
    return H
