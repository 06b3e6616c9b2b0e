import pytest

np = pytest.importorskip("numpy")

from cnmf.common import (
    ShapeError,
    check_dims,
    compute_loss,
    compute_resids,
    conv_matrix,
    fold_W,
    reconstruct,
    s_dot,
    shift_and_stack,
    shift_cols,
    tensor_conv,
    tensor_transconv,
    transconvolve,
    unfold_W,
    unpack_dims,
)


def test_shift_cols_zero_lag_is_identity():
    X = np.arange(12.0).reshape(3, 4)
    assert np.array_equal(shift_cols(X, 0), X)


def test_shift_cols_truncates_without_padding():
    X = np.arange(10.0).reshape(2, 5)
    assert np.array_equal(shift_cols(X, 2), X[:, :3])
    assert np.array_equal(shift_cols(X, -2), X[:, 2:])
    assert shift_cols(X, 1).shape == (2, 4)


def test_s_dot_matches_shifted_product():
    rng = np.random.default_rng(1)
    Wl, H = rng.random((3, 2)), rng.random((2, 6))
    assert np.allclose(s_dot(Wl, H, 2), Wl @ H[:, :4])
    assert np.allclose(s_dot(Wl, H, -2), Wl @ H[:, 2:])


def test_reconstruct_end_to_end_example():
    # lag 0 drives unit 1 only, lag 1 drives unit 2 only
    W = np.array([[[1.0], [0.0]], [[0.0], [1.0]]])
    H = np.array([[1.0, 1.0, 1.0, 1.0]])
    expected = np.array([[1.0, 1.0, 1.0, 1.0], [0.0, 1.0, 1.0, 1.0]])
    assert np.array_equal(reconstruct(W, H), expected)


def test_tensor_conv_single_impulse_plays_motif():
    rng = np.random.default_rng(2)
    W = rng.random((4, 3, 2))
    H = np.zeros((2, 10))
    H[1, 3] = 2.0
    pred = tensor_conv(W, H)
    assert np.allclose(pred[:, 3:7], 2.0 * W[:, :, 1].T)
    assert np.allclose(pred[:, :3], 0.0)
    assert np.allclose(pred[:, 7:], 0.0)


def test_transconv_is_adjoint_of_conv():
    rng = np.random.default_rng(3)
    L, N, K, T = 4, 5, 3, 20
    W = rng.standard_normal((L, N, K))
    H = rng.standard_normal((K, T))
    X = rng.standard_normal((N, T))

    lhs = np.sum(tensor_conv(W, H) * X)
    rhs = np.sum(H * tensor_transconv(W, X))
    assert pytest.approx(lhs, rel=1e-10, abs=1e-10) == rhs

    # Same identity on the region untouched by edge truncation
    Xc = X.copy()
    Xc[:, : L - 1] = 0.0
    Hc = H.copy()
    Hc[:, T - L + 1 :] = 0.0
    lhs_c = np.sum(tensor_conv(W, Hc)[:, L - 1 :] * Xc[:, L - 1 :])
    rhs_c = np.sum(Hc[:, : T - L + 1] * transconvolve(W, Xc)[:, : T - L + 1])
    assert pytest.approx(lhs_c, rel=1e-10, abs=1e-10) == rhs_c


def test_shift_and_stack_reproduces_conv():
    rng = np.random.default_rng(4)
    W = rng.random((3, 4, 2))
    H = rng.random((2, 9))
    Hs = shift_and_stack(H, 3)
    assert Hs.shape == (6, 9)
    # zero padding, not truncation
    assert np.all(Hs[2:4, 0] == 0.0)
    assert np.all(Hs[4:6, :2] == 0.0)
    assert np.allclose(unfold_W(W) @ Hs, tensor_conv(W, H))


def test_fold_inverts_unfold():
    W = np.arange(24.0).reshape(2, 3, 4)
    assert np.array_equal(fold_W(unfold_W(W), 2), W)


def test_conv_matrix_matches_conv():
    rng = np.random.default_rng(5)
    W = rng.random((3, 4, 2))
    H = rng.random((2, 8))
    A = conv_matrix(W, 8)
    assert A.shape == (32, 16)
    assert np.allclose(A @ H.ravel(), tensor_conv(W, H).ravel())


def test_loss_zero_for_exact_reconstruction_and_positive_otherwise():
    rng = np.random.default_rng(6)
    W = rng.random((2, 3, 2))
    H = rng.random((2, 7))
    data = tensor_conv(W, H)
    assert compute_loss(data, W, H) == 0.0
    assert np.allclose(compute_resids(data, W, H), 0.0)

    noisy = data + 0.1
    loss = compute_loss(noisy, W, H)
    assert loss > 0
    expected = np.linalg.norm(data - noisy) / np.linalg.norm(noisy)
    assert pytest.approx(expected) == loss


def test_loss_on_zero_data_is_residual_norm():
    W = np.ones((2, 2, 1))
    H = np.zeros((1, 5))
    assert compute_loss(np.zeros((2, 5)), W, H) == 0.0
    H[0, 0] = 1.0
    assert compute_loss(np.zeros((2, 5)), W, H) == pytest.approx(2.0)


def test_unpack_dims():
    assert unpack_dims(np.zeros((3, 4, 2)), np.zeros((2, 9))) == (4, 9, 2, 3)


@pytest.mark.parametrize(
    "W_shape,H_shape,match",
    [
        ((2, 5, 2), (2, 10), "units"),
        ((2, 4, 3), (2, 10), "components"),
        ((2, 4, 2), (2, 11), "time steps"),
        ((12, 4, 2), (2, 10), "at least L"),
    ],
)
def test_check_dims_rejects_inconsistent_shapes(W_shape, H_shape, match):
    with pytest.raises(ShapeError, match=match):
        check_dims(np.zeros((4, 10)), np.zeros(W_shape), np.zeros(H_shape))
