"""HDF5 persistence of fit results."""
from pathlib import Path

import h5py
import numpy as np

from cnmf.algorithms import Algorithm
from cnmf.model import CNMFResults, FitRecord
from cnmf.utils import get_logger

logger = get_logger(__name__)

ARRAY_FIELDS = ("W", "H", "data", "loss_hist", "time_hist")
SCALAR_FIELDS = ("l1_H", "l2_H", "l1_W", "l2_W")


def save_model(results: CNMFResults, path: str | Path) -> None:
    """Saves CNMFResults."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    logger.info(f"Saving {results.alg.value} model to {path}")

    with h5py.File(path, "w") as f:
        f.create_dataset("W", data=results.W)
        f.create_dataset("H", data=results.H)
        f.create_dataset("data", data=results.data)
        f.create_dataset("loss_hist", data=results.loss_hist)
        f.create_dataset("time_hist", data=results.time_hist)
        for name in SCALAR_FIELDS:
            f.create_dataset(name, data=float(getattr(results, name)))
        f.create_dataset("alg", data=results.alg.value)


def load_model(path: str | Path) -> CNMFResults:
    """Loads CNMFResults."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Model file not found: {path}")
    logger.info(f"Loading model from {path}")

    with h5py.File(path, "r") as f:
        missing = [k for k in ARRAY_FIELDS + SCALAR_FIELDS + ("alg",) if k not in f]
        if missing:
            raise KeyError(f"{path} is missing field(s): {missing}")

        arrays = {k: np.asarray(f[k][()], dtype=np.float64) for k in ARRAY_FIELDS}
        scalars = {k: float(f[k][()]) for k in SCALAR_FIELDS}
        alg = f["alg"][()]

    if isinstance(alg, bytes):
        alg = alg.decode("utf-8")

    loss_hist, time_hist = arrays["loss_hist"], arrays["time_hist"]
    if loss_hist.shape != time_hist.shape:
        raise ValueError(
            f"loss_hist {loss_hist.shape} and time_hist {time_hist.shape} disagree in {path}"
        )
    history = tuple(
        FitRecord(i, float(t), float(l))
        for i, (t, l) in enumerate(zip(time_hist, loss_hist))
    )

    return CNMFResults(
        data=arrays["data"],
        W=arrays["W"],
        H=arrays["H"],
        history=history,
        alg=Algorithm.parse(alg),
        **scalars,
    )
