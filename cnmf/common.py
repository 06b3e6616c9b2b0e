"""
Tensor convolution algebra shared by the fit driver and every algorithm.

Shapes used throughout:
  - W    : (L, N, K)  motifs, indexed (lag, unit, component)
  - H    : (K, T)     activations
  - data : (N, T)     observed multivariate time series
"""
import numpy as np
from scipy import sparse
from typing import Tuple


class ShapeError(ValueError):
    """Raised when W, H and data do not describe the same factorization."""


def shift_cols(X: np.ndarray, lag: int) -> np.ndarray:
    """
    Column-truncated view of X.

    lag <= 0 drops the first |lag| columns, lag > 0 drops the last lag columns.
    No padding is materialized.
    """
    T = X.shape[1]
    if lag <= 0:
        return X[:, -lag:T]
    return X[:, : T - lag]


def s_dot(Wl: np.ndarray, H: np.ndarray, lag: int) -> np.ndarray:
    """Product of a motif slice with a lag-shifted slice of H."""
    T = H.shape[1]
    if lag < 0:
        return Wl @ H[:, -lag:T]
    return Wl @ H[:, : T - lag]


def tensor_conv(W: np.ndarray, H: np.ndarray) -> np.ndarray:
    """
    Forward model: causal convolution of the motifs with the activations.

        pred[:, lag:] += W[lag] @ H[:, :T-lag]    for lag in 0..L-1

    Activation H[k, t] contributes motif k to times t, ..., t+L-1.
    """
    L, N, K = W.shape
    T = H.shape[1]

    pred = np.zeros((N, T))
    for lag in range(min(L, T)):
        pred[:, lag:] += s_dot(W[lag], H, lag)
    return pred


def tensor_transconv(W: np.ndarray, X: np.ndarray) -> np.ndarray:
    """
    Adjoint of tensor_conv with respect to H.

        result[:, :T-lag] += W[lag].T @ X[:, lag:]    for lag in 0..L-1
    """
    L, N, K = W.shape
    T = X.shape[1]

    result = np.zeros((K, T))
    for lag in range(min(L, T)):
        result[:, : T - lag] += W[lag].T @ shift_cols(X, -lag)
    return result


# Readable aliases for the two operators
reconstruct = tensor_conv
transconvolve = tensor_transconv


def compute_resids(data: np.ndarray, W: np.ndarray, H: np.ndarray) -> np.ndarray:
    """Matrix of residuals, reconstruction minus data."""
    return tensor_conv(W, H) - data


def compute_loss(data: np.ndarray, W: np.ndarray, H: np.ndarray) -> float:
    """
    Normalized quadratic loss ||tensor_conv(W, H) - data|| / ||data||.

    For an all-zero data matrix the unnormalized residual norm is returned.
    """
    return loss_from_est(data, tensor_conv(W, H))


def loss_from_est(data: np.ndarray, est: np.ndarray) -> float:
    """compute_loss for an already computed reconstruction."""
    resid_norm = float(np.linalg.norm(est - data))
    data_norm = float(np.linalg.norm(data))
    if data_norm == 0.0:
        return resid_norm
    return resid_norm / data_norm


def shift_and_stack(H: np.ndarray, L: int) -> np.ndarray:
    """
    Stack L lag-shifted, zero-padded copies of H into an (L*K, T) matrix.

    With W unfolded as (N, L*K) so that column lag*K + k holds W[lag, :, k],
    W_unfold @ shift_and_stack(H, L) equals tensor_conv(W, H).
    """
    K, T = H.shape

    H_stacked = np.zeros((L * K, T))
    for lag in range(min(L, T)):
        H_stacked[K * lag : K * (lag + 1), lag:] = shift_cols(H, lag)
    return H_stacked


def conv_matrix(W: np.ndarray, T: int) -> sparse.csr_matrix:
    """
    Sparse (N*T, K*T) matrix A of the forward model, linear in H:

        A @ H.ravel() == tensor_conv(W, H).ravel()

    Row n*T + t, column k*T + s holds W[t - s, n, k] for 0 <= t - s < L.
    """
    L, N, K = W.shape

    rows, cols, vals = [], [], []
    for lag in range(min(L, T)):
        t = np.arange(lag, T)
        n_idx = np.arange(N)[:, None, None]
        k_idx = np.arange(K)[None, :, None]
        shape = (N, K, T - lag)
        rows.append(np.broadcast_to(n_idx * T + t, shape).ravel())
        cols.append(np.broadcast_to(k_idx * T + (t - lag), shape).ravel())
        vals.append(np.broadcast_to(W[lag][:, :, None], shape).ravel())

    A = sparse.coo_matrix(
        (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
        shape=(N * T, K * T),
    )
    return A.tocsr()


def unfold_W(W: np.ndarray) -> np.ndarray:
    """(L, N, K) -> (N, L*K), the layout matching shift_and_stack."""
    L, N, K = W.shape
    return W.transpose(1, 0, 2).reshape(N, L * K)


def fold_W(W_unfold: np.ndarray, L: int) -> np.ndarray:
    """Inverse of unfold_W."""
    N, LK = W_unfold.shape
    return W_unfold.reshape(N, L, LK // L).transpose(1, 0, 2)


def unpack_dims(W: np.ndarray, H: np.ndarray) -> Tuple[int, int, int, int]:
    """Returns (N, T, K, L)."""
    L, N, K = W.shape
    T = H.shape[1]
    return N, T, K, L


def check_dims(data: np.ndarray, W: np.ndarray, H: np.ndarray) -> None:
    """Raise ShapeError unless data (N,T), W (L,N,K) and H (K,T) agree and T >= L."""
    if np.ndim(data) != 2:
        raise ShapeError(f"data must be 2-D (N, T), got shape {np.shape(data)}")
    if np.ndim(W) != 3:
        raise ShapeError(f"W must be 3-D (L, N, K), got shape {np.shape(W)}")
    if np.ndim(H) != 2:
        raise ShapeError(f"H must be 2-D (K, T), got shape {np.shape(H)}")

    N, T = data.shape
    L, N_w, K = W.shape
    K_h, T_h = H.shape
    if N_w != N:
        raise ShapeError(
            f"W has {N_w} units but data has {N} rows (W {W.shape}, data {data.shape})"
        )
    if K_h != K:
        raise ShapeError(
            f"W has {K} components but H has {K_h} rows (W {W.shape}, H {H.shape})"
        )
    if T_h != T:
        raise ShapeError(
            f"H has {T_h} time steps but data has {T} (H {H.shape}, data {data.shape})"
        )
    check_components(K)
    check_lags(T, L)


def check_lags(T: int, L: int) -> None:
    if L < 1:
        raise ShapeError(f"motif length L must be >= 1, got {L}")
    if T < L:
        raise ShapeError(f"need at least L={L} time steps, data has T={T}")


def check_components(K: int) -> None:
    if K < 1:
        raise ShapeError(f"number of components K must be >= 1, got {K}")
