from __future__ import annotations
import argparse
import json
import logging
import time
from pathlib import Path
from typing import Dict, Any, List, Optional

import numpy as np
import pandas as pd

from data_interface import load_panel, standardize
from ecm_estimator import ECMResult, ecm
from estimation_config import ConfigManager

logger = logging.getLogger("run_estimation")


# ---------------------------------------------------------------------
# 1. Helper: command line
# ---------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Estimate an elastic-net VAR(p) with missing data via ECM."
    )
    parser.add_argument("--config", default=None, help="YAML configuration file")
    parser.add_argument("--data", default=None, help="Panel file (rows = dates, columns = series)")
    parser.add_argument("--lags", type=int, default=None)
    parser.add_argument("--lam", type=float, default=None)
    parser.add_argument("--alpha", type=float, default=None)
    parser.add_argument("--beta", type=float, default=None)
    parser.add_argument("--tol", type=float, default=None)
    parser.add_argument("--max-iter", type=int, default=None)
    parser.add_argument("--prerun", type=int, default=None)
    parser.add_argument("--no-standardize", action="store_true")
    parser.add_argument("--output-dir", default=None)
    parser.add_argument("--quiet", action="store_true", help="Only log warnings")
    return parser


def apply_overrides(cfg: ConfigManager, args: argparse.Namespace) -> ConfigManager:
    """Command-line values win over the configuration file."""
    if args.data is not None:
        cfg.data.input_path = args.data
    if args.output_dir is not None:
        cfg.data.output_dir = args.output_dir
    if args.no_standardize:
        cfg.data.standardize = False

    for name in ("lags", "lam", "alpha", "beta"):
        value = getattr(args, name)
        if value is not None:
            setattr(cfg.model, name, value)

    for name in ("tol", "max_iter", "prerun"):
        value = getattr(args, name)
        if value is not None:
            setattr(cfg.ecm, name, value)

    if args.quiet:
        cfg.ecm.verbose = False
        cfg.log_level = "WARNING"
    return cfg


# ---------------------------------------------------------------------
# 2. Helper: results on disk
# ---------------------------------------------------------------------

def save_results(
    result: ECMResult,
    series: List[str],
    lags: int,
    output_dir: str | Path,
) -> Dict[str, Any]:
    """
    Write Psi.csv, Sigma.csv and summary.json into output_dir.

    Psi columns are labelled "<series>_L<lag>".
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    columns = [f"{s}_L{j}" for j in range(1, lags + 1) for s in series]
    pd.DataFrame(result.Psi, index=series, columns=columns).to_csv(output_dir / "Psi.csv")
    pd.DataFrame(result.Sigma, index=series, columns=series).to_csv(output_dir / "Sigma.csv")

    summary = {
        "converged": bool(result.converged),
        "n_iter": int(result.n_iter),
        "rel_change": None if np.isnan(result.rel_change) else float(result.rel_change),
        "final_penalised_loglik": result.pen_loglik[-1] if result.pen_loglik else None,
        "nonzero_coefficients": int(np.count_nonzero(result.Psi)),
    }
    with open(output_dir / "summary.json", "w") as f:
        json.dump(summary, f, indent=2)

    return summary


# ---------------------------------------------------------------------
# 3. Main entry point
# ---------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> Dict[str, Any]:
    overall_start = time.time()

    args = build_parser().parse_args(argv)
    cfg = apply_overrides(ConfigManager(args.config), args)
    cfg.setup_logging()

    Y, m, meta = load_panel(cfg.data.input_path, index_col=cfg.data.index_col)
    series = [str(s) for s in meta["series"]]

    logger.info(f"Loaded panel {cfg.data.input_path}: n={Y.shape[0]}, T={Y.shape[1]}, "
                f"missing share={m.mean():.2%}")

    if cfg.data.standardize:
        Y = standardize(Y)

    result = ecm(
        Y,
        p=cfg.model.lags,
        lam=cfg.model.lam,
        alpha=cfg.model.alpha,
        beta=cfg.model.beta,
        tol=cfg.ecm.tol,
        max_iter=cfg.ecm.max_iter,
        prerun=cfg.ecm.prerun,
        verbose=cfg.ecm.verbose,
        noise_floor=cfg.ecm.measurement_noise_floor,
    )

    if not result.converged:
        logger.warning(f"ECM stopped at max_iter={cfg.ecm.max_iter} without converging; "
                       "estimates are the last iterate")

    summary = save_results(result, series, cfg.model.lags, cfg.data.output_dir)
    logger.info(f"Saved Psi.csv, Sigma.csv and summary.json to {cfg.data.output_dir}")

    total_time = time.time() - overall_start
    tot_mins, tot_secs = divmod(int(total_time), 60)
    logger.info(f"Total runtime: {tot_mins} min {tot_secs} sec")

    return summary


if __name__ == "__main__":
    main()
