"""
Convolutive non-negative matrix factorization of multivariate time series.

Decomposes a (units x time) matrix into K short temporal motifs W and a
sparse activation schedule H, data ≈ Σ_lag W[lag] @ shift(H, lag).
"""

from cnmf.algorithms import (
    ALGORITHMS,
    Algorithm,
    ConfigurationError,
    UnknownAlgorithmError,
)
from cnmf.common import (
    ShapeError,
    compute_loss,
    compute_resids,
    reconstruct,
    shift_and_stack,
    shift_cols,
    tensor_conv,
    tensor_transconv,
    transconvolve,
)
from cnmf.config import FitConfig, load_fit_config
from cnmf.model import (
    CNMFResults,
    FitRecord,
    InitializationError,
    converged,
    fit_cnmf,
    init_rand,
    parameter_sweep,
    sweep_summary,
)

__version__ = "0.1.0"
