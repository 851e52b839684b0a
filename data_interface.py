# ============================================================
# Module: data_interface
# ------------------------------------------------------------
# - Loads a wide macro/financial panel (rows = dates, cols = series)
# - Exposes Y (n x T, NaN = missing) and the missingness mask m
# - Missing-aware summary statistics and transformations
# - Lag construction and VAR companion forms
# ============================================================

from __future__ import annotations
from pathlib import Path
from typing import Dict, Tuple, Any
import numpy as np
import pandas as pd

# Readers by file suffix (CSV is handled separately for index_col)
_READERS = {
    ".pkl": pd.read_pickle,
    ".pickle": pd.read_pickle,
    ".parquet": pd.read_parquet,
}


# ------------------------------------------------------------
# 1. Core panel loader: Y and m
# ------------------------------------------------------------

def load_panel(
    path: str | Path,
    index_col: int | str = 0,
    return_meta: bool = True,
) -> Tuple[np.ndarray, np.ndarray, Dict[str, Any] | None]:
    """
    Load a wide panel and return (Y, m)

    Let:
        - n = number of series (columns of the file)
        - T = number of time periods (rows of the file)

    We represent:
        Y[i, t] = observation of series i at time t (float, NaN if missing)
        m[i, t] = 1 if the observation is missing, else 0

    Note the orientation: the file is (T, n) but Y is (n, T), which is
    the layout used by the filter and the ECM code.

    Parameters
    ----------
    path : str or Path
        CSV, parquet or pickle file.
    index_col : int or str
        Column holding the dates (CSV only).
    return_meta : bool
        If True, also return a metadata dict with timestamps and series names.

    Returns
    -------
    Y : np.ndarray, shape (n, T), dtype=float
    m : np.ndarray, shape (n, T), dtype=np.uint8
    meta : dict or None
        "timestamps" (T,) and "series" (n,) when ``return_meta`` is True.
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Could not find panel file '{path}'.")

    suffix = path.suffix.lower()
    if suffix != ".csv" and suffix not in _READERS:
        raise ValueError(f"Unsupported panel format '{suffix}' for {path}")

    if suffix == ".csv":
        wide = pd.read_csv(path, index_col=index_col)
    else:
        wide = _READERS[suffix](path)

    wide = wide.sort_index()

    try:
        Y = wide.to_numpy(dtype=float).T  # (n, T)
    except ValueError as exc:
        raise ValueError(f"Panel {path} contains non-numeric columns") from exc

    m = np.isnan(Y).astype(np.uint8)

    if not return_meta:
        return Y, m, None

    meta = {
        "timestamps": wide.index.to_numpy(),
        "series": wide.columns.to_numpy(dtype=str),
    }

    return Y, m, meta


# ------------------------------------------------------------
# 2. Statistics ignoring missing entries
# ------------------------------------------------------------

def sum_skipmissing(X: np.ndarray) -> np.ndarray | float:
    """
    Sum of the observed values in X (row-wise, i.e. per series, for 2-D input).

    >>> sum_skipmissing(np.array([1.0, np.nan, 3.0]))
    4.0
    """
    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        return float(np.nansum(X))
    return np.nansum(X, axis=1)


def mean_skipmissing(X: np.ndarray) -> np.ndarray | float:
    """
    Mean of the observed values in X (row-wise for 2-D input).

    >>> mean_skipmissing(np.array([1.0, np.nan, 3.0]))
    2.0
    """
    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        return float(np.nanmean(X))
    return np.nanmean(X, axis=1)


def std_skipmissing(X: np.ndarray) -> np.ndarray | float:
    """
    Sample standard deviation (ddof=1) of the observed values in X.
    A series with a single observation gives NaN.
    """
    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        if np.count_nonzero(~np.isnan(X)) < 2:
            return np.nan
        return float(np.nanstd(X, ddof=1))

    out = np.full(X.shape[0], np.nan)
    enough = np.count_nonzero(~np.isnan(X), axis=1) >= 2
    if enough.any():
        out[enough] = np.nanstd(X[enough], axis=1, ddof=1)
    return out


# ------------------------------------------------------------
# 3. Transformations
# ------------------------------------------------------------

def demean(X: np.ndarray) -> np.ndarray:
    """Subtract the (missing-aware) mean of each series."""
    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        return X - mean_skipmissing(X)
    return X - mean_skipmissing(X)[:, None]


def standardize_verbose(X: np.ndarray):
    """
    Standardize each series to mean zero and unit variance.

    Returns
    -------
    mu : float or np.ndarray, shape (n,)
    sd : float or np.ndarray, shape (n,)
    Z  : np.ndarray, same shape as X (missing entries stay NaN)
    """
    X = np.asarray(X, dtype=float)
    mu = mean_skipmissing(X)
    sd = std_skipmissing(X)
    if X.ndim == 1:
        return mu, sd, (X - mu) / sd
    return mu, sd, (X - mu[:, None]) / sd[:, None]


def standardize(X: np.ndarray) -> np.ndarray:
    """Standardize each series to mean zero and unit variance."""
    return standardize_verbose(X)[2]


def interpolate(Y: np.ndarray) -> np.ndarray:
    """
    Replace the missing observations of each series with the sample
    average of its observed values.

    Shapes:
    Y: (n, T)
    Returns:
    Y_filled: (n, T), no NaNs
    """
    Y = np.array(Y, dtype=float, copy=True)
    if Y.ndim != 2:
        raise ValueError(f"Y should be 2D (n, T), got shape {Y.shape}")

    means = mean_skipmissing(Y)
    rows, cols = np.where(np.isnan(Y))
    Y[rows, cols] = means[rows]
    return Y


# ------------------------------------------------------------
# 4. VAR helpers: lags and companion forms
# ------------------------------------------------------------

def lag(X: np.ndarray, p: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Construct the data required to run a standard VAR(p).

    Parameters
    ----------
    X : np.ndarray, shape (n, T)
    p : int
        Number of lags.

    Returns
    -------
    X_t : np.ndarray, shape (n, T-p)
        X from index p onward.
    X_lagged : np.ndarray, shape (n*p, T-p)
        [X_{t-1}; X_{t-2}; ...; X_{t-p}] stacked vertically.
    """
    if p < 1:
        raise ValueError(f"p must be >= 1, got {p}")

    X = np.asarray(X)
    T = X.shape[1]
    if T <= p:
        raise ValueError(f"Need more than p={p} observations, got T={T}")

    X_t = X[:, p:]
    X_lagged = np.vstack([X[:, p - j : T - j] for j in range(1, p + 1)])
    return X_t, X_lagged


def _var_dims(Psi: np.ndarray, Sigma: np.ndarray) -> Tuple[int, int]:
    n = Sigma.shape[1]
    if Psi.shape[0] != n or Psi.shape[1] % n != 0:
        raise ValueError(
            f"Psi shape {Psi.shape} is not compatible with Sigma shape {Sigma.shape}"
        )
    return n, Psi.shape[1] // n


def companion_form(Psi: np.ndarray, Sigma: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Companion form (C, V) of a VAR(p) with coefficients Psi (n, np)
    and residual covariance Sigma (n, n).
    """
    n, p = _var_dims(Psi, Sigma)
    np_ = n * p

    C = np.zeros((np_, np_), dtype=float)
    C[:n, :] = Psi
    C[n:, : np_ - n] = np.eye(np_ - n)

    V = np.zeros((np_, np_), dtype=float)
    V[:n, :n] = Sigma
    return C, V


def ext_companion_form(Psi: np.ndarray, Sigma: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Companion form extended with n additional states.

    The state is [y_t; y_{t-1}; ...; y_{t-p}], so the smoothed covariance
    of a single state vector already contains Cov(y_t, y_{t-1..t-p}).

        C = [[Psi, 0], [I_np, 0]]    (np+n, np+n)
        V = [[Sigma, 0], [0, 0]]     (np+n, np+n)
    """
    n, p = _var_dims(Psi, Sigma)
    np_ = n * p

    C = np.zeros((np_ + n, np_ + n), dtype=float)
    C[:n, :np_] = Psi
    C[n:, :np_] = np.eye(np_)

    V = np.zeros((np_ + n, np_ + n), dtype=float)
    V[:n, :n] = Sigma
    return C, V


# Example (for scripts / notebooks):
# Y, m, meta = load_panel("data/macro_panel.csv")
# Y_t, Y_lagged = lag(interpolate(Y), p=2)
