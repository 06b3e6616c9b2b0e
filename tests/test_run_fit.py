import importlib.util
from pathlib import Path

import pytest

np = pytest.importorskip("numpy")
pytest.importorskip("h5py")

from cnmf.io_utils import load_model

RUN_FIT = Path(__file__).resolve().parent.parent / "run" / "run_fit.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("run_fit", RUN_FIT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_single_fit_writes_model(planted, tmp_path):
    data, _, _ = planted
    data_fn = tmp_path / "data.npy"
    np.save(data_fn, data)
    cfg = tmp_path / "fit.json"
    cfg.write_text('{"L": 3, "K": 2, "max_itr": 2}')

    _load_script().main(
        [
            "--data-fn", str(data_fn),
            "--config", str(cfg),
            "--output-dir", str(tmp_path / "out"),
            "--log-dir", str(tmp_path / "logs"),
            "--seed", "0",
        ]
    )
    r = load_model(tmp_path / "out" / "cnmf_L3_K2_mult.h5")
    assert r.num_iter == 3


def test_sweep_writes_one_model_per_combination(planted, tmp_path):
    data, _, _ = planted
    data_fn = tmp_path / "data.npy"
    np.save(data_fn, data)

    _load_script().main(
        [
            "--data-fn", str(data_fn),
            "--output-dir", str(tmp_path / "out"),
            "--log-dir", str(tmp_path / "logs"),
            "--L-range", "2,3",
            "--K-range", "1:3",
            "--algs", "mult",
            "--max-itr", "1",
            "--seed", "0",
        ]
    )
    assert len(list((tmp_path / "out").glob("*.h5"))) == 4
    assert len(list((tmp_path / "out").glob("sweep_summary_*.csv"))) == 1
