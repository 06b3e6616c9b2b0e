"""Multiplicative updates for convolutive NMF."""
from dataclasses import dataclass

import numpy as np

from cnmf.common import (
    loss_from_est,
    shift_cols,
    tensor_conv,
    tensor_transconv,
)
from cnmf.utils import get_logger

logger = get_logger(__name__)

EPSILON = np.finfo(float).eps


@dataclass
class MultMeta:
    est: np.ndarray  # current reconstruction, (N, T)


def update(
    data: np.ndarray,
    W: np.ndarray,
    H: np.ndarray,
    meta: MultMeta | None,
    *,
    l1_H: float = 0.0,
    l2_H: float = 0.0,
    l1_W: float = 0.0,
    l2_W: float = 0.0,
    **kwargs,
):
    """One round of multiplicative updates on W then H. Requires data >= 0."""
    if meta is None:
        if np.any(data < 0):
            raise ValueError("Multiplicative updates need non-negative data")
        meta = MultMeta(est=tensor_conv(W, H))

    _update_W(data, W, H, meta.est, l1_W, l2_W)
    meta.est = tensor_conv(W, H)

    _update_H(data, W, H, meta.est, l1_H, l2_H)
    meta.est = tensor_conv(W, H)

    return loss_from_est(data, meta.est), meta


def _update_W(data, W, H, est, l1_W, l2_W):
    L = W.shape[0]
    T = H.shape[1]
    for lag in range(min(L, T)):
        H_lag = shift_cols(H, lag)
        num = shift_cols(data, -lag) @ H_lag.T
        denom = shift_cols(est, -lag) @ H_lag.T + l2_W * W[lag] + l1_W
        W[lag] *= num / (denom + EPSILON)


def _update_H(data, W, H, est, l1_H, l2_H):
    num = tensor_transconv(W, data)
    denom = tensor_transconv(W, est) + l2_H * H + l1_H
    H *= num / (denom + EPSILON)


def fit_H(data: np.ndarray, W: np.ndarray, H: np.ndarray, n_iter: int = 50):
    """Multiplicative updates on H only, W held fixed. Mutates H."""
    for _ in range(n_iter):
        _update_H(data, W, H, tensor_conv(W, H), 0.0, 0.0)
    return H
