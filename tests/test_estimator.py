import pytest

np = pytest.importorskip("numpy")
pytest.importorskip("sklearn")

from sklearn.base import clone
from sklearn.exceptions import NotFittedError

from cnmf.estimator import ConvolutiveNMF


def test_fit_sets_learned_attributes(planted):
    data, _, _ = planted
    est = ConvolutiveNMF(n_components=2, n_lags=3, max_iter=5, random_state=0).fit(data)
    assert est.W_.shape == (3, 6, 2)
    assert est.H_.shape == (2, 40)
    assert est.n_iter_ == 5
    assert len(est.loss_history_) == 6
    assert est.reconstruct().shape == data.shape
    assert est.reconstruction_err_ == pytest.approx(est.loss_history_[-1])


def test_transform_returns_activations_for_new_data(planted):
    data, _, _ = planted
    est = ConvolutiveNMF(n_components=2, n_lags=3, alg="hals", max_iter=10, random_state=0)
    H = est.fit_transform(data)
    assert H.shape == (2, 40)

    H_new = est.transform(data[:, :25])
    assert H_new.shape == (2, 25)
    assert np.all(H_new >= 0)

    with pytest.raises(ValueError, match="units"):
        est.transform(data[:4])


def test_unfitted_and_clone():
    est = ConvolutiveNMF(n_components=3, alg="anls")
    with pytest.raises(NotFittedError):
        est.transform(np.ones((2, 20)))
    params = clone(est).get_params()
    assert params["n_components"] == 3 and params["alg"] == "anls"
