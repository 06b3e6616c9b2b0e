#!/usr/bin/env python3
"""
Fitting script for convolutive NMF.

This script handles the complete fitting pipeline including:
- Data loading (.npy, .csv, .parquet; rows are units, columns are time)
- A single fit or a sweep over L, K and algorithms
- Saving each fitted model to HDF5
- Logging
"""

import sys
import argparse
from datetime import datetime
from pathlib import Path

import numpy as np
import pandas as pd

# Add project root to path to allow importing cnmf without installing
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from cnmf.algorithms import parse_algorithms_arg
from cnmf.config import load_fit_config
from cnmf.io_utils import save_model
from cnmf.model import fit_cnmf, parameter_sweep, sweep_summary
from cnmf.utils import get_logger, parse_range, set_seed, setup_logging, str2bool


def load_data(data_fn: Path) -> np.ndarray:
    """Load the (units x time) data matrix.

    Args:
        data_fn: Path to a .npy, .csv or .parquet file

    Returns:
        2-D float array
    """
    logger = get_logger(__name__)
    logger.info(f"Loading data from {data_fn}")

    if data_fn.suffix == ".npy":
        data = np.load(data_fn)
    elif data_fn.suffix == ".parquet":
        data = pd.read_parquet(data_fn).to_numpy(dtype=np.float64)
    elif data_fn.suffix == ".csv":
        data = pd.read_csv(data_fn, header=None).to_numpy(dtype=np.float64)
    else:
        raise ValueError(f"Unsupported data file extension '{data_fn.suffix}'")

    logger.info(f"Loaded data with shape {data.shape}")
    return data


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Fit convolutive NMF models to a multivariate time series"
    )
    parser.add_argument(
        "--data-fn",
        type=str,
        required=True,
        help="Path to the data matrix (rows are units, columns are time)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default="",
        help="Optional JSON/YAML file with fit options",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default="../output/models",
        help="Directory where fitted models (.h5) are written",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default="../output/logs",
        help="Directory to save script logs",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )
    parser.add_argument(
        "--L-range",
        type=parse_range,
        default=None,
        help="Motif lengths to sweep (format: START:END or a,b,c)",
    )
    parser.add_argument(
        "--K-range",
        type=parse_range,
        default=None,
        help="Component counts to sweep (format: START:END or a,b,c)",
    )
    parser.add_argument(
        "--algs",
        type=str,
        default="",
        help="Comma-separated algorithms, e.g. mult,hals",
    )
    parser.add_argument("--max-itr", type=int, default=None, help="Maximum iterations")
    parser.add_argument(
        "--check-convergence",
        type=str2bool,
        default=None,
        help="Stop early on a loss plateau (true/false)",
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    return parser.parse_args(argv)


def main(argv=None):
    """Main fitting function."""
    args = parse_args(argv)
    data_fn = Path(args.data_fn).resolve()
    output_dir = Path(args.output_dir).resolve()
    log_dir = Path(args.log_dir).resolve()

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    logger = setup_logging(log_dir / f"fit_cnmf_{timestamp}.log", args.log_level)
    try:
        cfg = load_fit_config(Path(args.config) if args.config else None)
        overrides = {}
        if args.max_itr is not None:
            overrides["max_itr"] = args.max_itr
        if args.check_convergence is not None:
            overrides["check_convergence"] = args.check_convergence
        if args.seed is not None:
            overrides["seed"] = args.seed
            set_seed(args.seed)
        fit_kwargs = {**cfg.to_kwargs(), **overrides}

        logger.info("Starting convolutive NMF fitting with configuration:")
        logger.info(f"  Data fn: {data_fn}")
        logger.info(f"  Output dir: {output_dir}")
        logger.info(f"  Options: {fit_kwargs}")

        data = load_data(data_fn)
        algs = parse_algorithms_arg(args.algs) if args.algs else None

        if args.L_range is None and args.K_range is None and algs is None:
            results = fit_cnmf(data, **fit_kwargs)
            out_fn = output_dir / f"cnmf_L{results.num_lags}_K{results.num_components}_{results.alg.value}.h5"
            save_model(results, out_fn)
        else:
            L_vals = args.L_range or [fit_kwargs.pop("L")]
            K_vals = args.K_range or [fit_kwargs.pop("K")]
            alg_vals = algs or [fit_kwargs.pop("alg")]
            for key in ("L", "K", "alg"):
                fit_kwargs.pop(key, None)

            all_results = parameter_sweep(
                data, L_vals=L_vals, K_vals=K_vals, alg_vals=alg_vals, **fit_kwargs
            )
            for (L, K, alg), results in all_results.items():
                save_model(results, output_dir / f"cnmf_L{L}_K{K}_{alg.value}.h5")
            summary = sweep_summary(all_results)
            logger.info(f"Sweep summary:\n{summary}")
            summary.to_csv(output_dir / f"sweep_summary_{timestamp}.csv", index=False)

        logger.info("Fitting completed successfully")
    except Exception as e:
        logger.error(f"Error fitting data: {e}")
        raise


if __name__ == "__main__":
    main()
