# Implementation: convolutive NMF (scikit-learn style)
import numpy as np
from sklearn.base import BaseEstimator, TransformerMixin
from sklearn.utils.validation import check_array, check_is_fitted

from cnmf.common import check_lags, tensor_conv
from cnmf.model import CNMFResults, fit_cnmf
from cnmf.mult import fit_H
from cnmf.utils import get_logger

logger = get_logger(__name__)


class ConvolutiveNMF(BaseEstimator, TransformerMixin):
    """
    Convolutive non-negative matrix factorization:
        X ≈ Σ_lag W[lag] @ shift(H, lag)
    where:
      - X ∈ R^{N×T}      (units × time)
      - W ∈ R^{L×N×K}    (K motifs of L lags over N units)
      - H ∈ R^{K×T}      (activation of each motif over time)

    Samples are the N units (rows) and features the T time steps, so
    transform() expects new data with the same units and returns activations.
    """

    def __init__(
        self,
        n_components: int = 5,
        n_lags: int = 10,
        alg: str = "mult",
        max_iter: int = 100,
        max_time: float = np.inf,
        l1_H: float = 0.0,
        l2_H: float = 0.0,
        l1_W: float = 0.0,
        l2_W: float = 0.0,
        check_convergence: bool = False,
        tol: float = 1e-4,
        patience: int = 3,
        random_state=None,
        sep_init: bool = False,
        transform_iter: int = 50,
    ):
        """
        Parameters
        ----------
        n_components : int, default=5
            Number of motifs K
        n_lags : int, default=10
            Motif length L
        alg : str, default="mult"
            One of "mult", "hals", "anls", "sep"
        max_iter : int, default=100
            Maximum number of iterations
        check_convergence, tol, patience
            Plateau early stopping, see cnmf.model.converged
        random_state : int or None, default=None
            Seed for the random initialization
        transform_iter : int, default=50
            Multiplicative H iterations used by transform()
        """
        self.n_components = n_components
        self.n_lags = n_lags
        self.alg = alg
        self.max_iter = max_iter
        self.max_time = max_time
        self.l1_H = l1_H
        self.l2_H = l2_H
        self.l1_W = l1_W
        self.l2_W = l2_W
        self.check_convergence = check_convergence
        self.tol = tol
        self.patience = patience
        self.random_state = random_state
        self.sep_init = sep_init
        self.transform_iter = transform_iter

    def fit(self, X, y=None):
        X = check_array(X, dtype=np.float64, ensure_2d=True)
        _ = y
        results = fit_cnmf(
            X,
            L=self.n_lags,
            K=self.n_components,
            alg=self.alg,
            max_itr=self.max_iter,
            max_time=self.max_time,
            l1_H=self.l1_H,
            l2_H=self.l2_H,
            l1_W=self.l1_W,
            l2_W=self.l2_W,
            check_convergence=self.check_convergence,
            tol=self.tol,
            patience=self.patience,
            seed=self.random_state,
            sep_init=self.sep_init,
        )
        self._set_fitted(results)
        return self

    def _set_fitted(self, results: CNMFResults):
        self.results_ = results
        self.W_ = results.W
        self.H_ = results.H
        self.loss_history_ = results.loss_hist
        self.n_iter_ = results.num_iter - 1
        self.reconstruction_err_ = float(results.loss_hist[-1])

    def transform(self, X):
        """Activations of the fitted motifs in X, W held fixed."""
        check_is_fitted(self, "W_")
        X = check_array(X, dtype=np.float64, ensure_2d=True)
        N, T = X.shape
        if N != self.W_.shape[1]:
            raise ValueError(
                f"X has {N} units, the model was fitted on {self.W_.shape[1]}"
            )
        check_lags(T, self.n_lags)
        if np.any(X < 0):
            raise ValueError("transform needs non-negative data")

        W = np.array(self.W_)
        H = np.full((self.n_components, T), float(np.mean(self.H_)) + 1e-3)
        return fit_H(X, W, H, n_iter=self.transform_iter)

    def fit_transform(self, X, y=None):
        return self.fit(X, y).H_.copy()

    def reconstruct(self) -> np.ndarray:
        check_is_fitted(self, "W_")
        return tensor_conv(self.W_, self.H_)
