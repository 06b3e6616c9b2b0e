"""
Hierarchical alternating least squares for convolutive NMF.

W is updated one column at a time on its (N, L*K) unfolding against
shift_and_stack(H, L), which is exact coordinate descent. H is updated one
row (component) at a time with a projected gradient step sized by a
Lipschitz bound of that component's convolution operator, so every block
step is non-increasing in the objective

    0.5 ||tensor_conv(W, H) - data||^2
        + l1_W |W|_1 + 0.5 l2_W ||W||^2 + l1_H |H|_1 + 0.5 l2_H ||H||^2
"""
import logging
from dataclasses import dataclass

import numpy as np

from cnmf.common import (
    fold_W,
    loss_from_est,
    shift_and_stack,
    tensor_conv,
    tensor_transconv,
    unfold_W,
)
from cnmf.utils import get_logger

logger = get_logger(__name__)

EPSILON = np.finfo(float).eps


@dataclass
class HalsMeta:
    est: np.ndarray  # current reconstruction, (N, T)


def update(
    data: np.ndarray,
    W: np.ndarray,
    H: np.ndarray,
    meta: HalsMeta | None,
    *,
    l1_H: float = 0.0,
    l2_H: float = 0.0,
    l1_W: float = 0.0,
    l2_W: float = 0.0,
    **kwargs,
):
    if meta is None:
        meta = HalsMeta(est=tensor_conv(W, H))

    _update_W(data, W, H, l1_W, l2_W)
    meta.est = tensor_conv(W, H)

    _update_H(data, W, H, meta, l1_H, l2_H)

    return loss_from_est(data, meta.est), meta


def _update_W(data, W, H, l1_W, l2_W):
    L = W.shape[0]
    Hs = shift_and_stack(H, L)
    HHt = Hs @ Hs.T
    XHt = data @ Hs.T

    Wu = unfold_W(W).copy()
    for j in range(Wu.shape[1]):
        hh = HHt[j, j]
        if hh + l2_W <= EPSILON:
            continue
        # XHt[:, j] - (Wu @ HHt[:, j] - hh * Wu[:, j]) is data minus the other columns
        num = XHt[:, j] - Wu @ HHt[:, j] + hh * Wu[:, j] - l1_W
        Wu[:, j] = np.maximum(num / (hh + l2_W), 0.0)

    W[:] = fold_W(Wu, L)


def _update_H(data, W, H, meta, l1_H, l2_H):
    K = H.shape[0]
    for k in range(K):
        Wk = W[:, :, k : k + 1]
        lip = float(np.sum(np.linalg.norm(Wk[:, :, 0], axis=1))) ** 2 + l2_H
        if lip <= EPSILON:
            continue

        grad = tensor_transconv(Wk, meta.est - data)[0] + l2_H * H[k] + l1_H
        h_new = np.maximum(H[k] - grad / lip, 0.0)

        delta = h_new - H[k]
        H[k] = h_new
        meta.est += tensor_conv(Wk, delta[None, :])

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"H row k={k} lip={lip:.3e} step_norm={np.linalg.norm(delta):.3e}"
            )
