import numpy as np
import pytest

from cnmf.common import tensor_conv


@pytest.fixture
def planted():
    """Non-negative data built from 2 motifs of 3 lags over 6 units, 40 steps."""
    rng = np.random.default_rng(0)
    W = rng.random((3, 6, 2))
    H = (rng.random((2, 40)) < 0.15) * rng.random((2, 40))
    data = tensor_conv(W, H) + 0.01 * rng.random((6, 40))
    return data, W, H
