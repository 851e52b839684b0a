# ============================================================
# Module: coordinate_descent
# ------------------------------------------------------------
# - Elastic-net VAR(p) by cyclic coordinate descent
# - Used once, to initialise the ECM estimator
# ============================================================

from __future__ import annotations
from typing import Tuple
import logging
import numpy as np

logger = logging.getLogger(__name__)

EPS = np.finfo(float).eps


# ------------------------------------------------------------
# Small helpers
# ------------------------------------------------------------

def soft_thresholding(z: float, zeta: float) -> float:
    """Soft thresholding operator sign(z) * max(|z| - zeta, 0)."""
    return float(np.sign(z) * max(abs(z) - zeta, 0.0))


def isconverged(new: float, old: float, tol: float, eps: float = EPS, increasing: bool = True) -> bool:
    """
    Check whether `new` is close enough to `old`.

    increasing : True if the objective is expected to increase at each
                 iteration (likelihood), False if it decreases (loss).
    """
    delta = (new - old) / (abs(old) + eps)
    if not increasing:
        delta = -delta
    return delta <= tol


def check_hyperparameters(lam: float, alpha: float, beta: float) -> None:
    """Raise ValueError for elastic-net hyperparameters outside their domain."""
    if beta < 1:
        raise ValueError(f"beta must be >= 1, got {beta}")
    if alpha < 0 or alpha > 1:
        raise ValueError(f"alpha must be in [0, 1], got {alpha}")
    if lam < 0:
        raise ValueError(f"lambda must be >= 0, got {lam}")


def penalty_matrix(n: int, p: int, lam: float, beta: float) -> np.ndarray:
    """
    Block-diagonal penalty Gamma = (lam / np) * blockdiag(beta^i I_n, i = 0..p-1).

    With beta > 1, farther lags are penalised more.
    """
    weights = np.repeat(beta ** np.arange(p, dtype=float), n)
    return (lam / (n * p)) * np.diag(weights)


# ------------------------------------------------------------
# Coordinate descent
# ------------------------------------------------------------

def _objective(y: np.ndarray, resid: np.ndarray, psi: np.ndarray, gamma: np.ndarray, alpha: float) -> float:
    penalty = gamma * ((1.0 - alpha) * psi ** 2 + alpha * np.abs(psi))
    return 0.5 * float(resid @ resid) + 0.5 * float(penalty.sum())


def coordinate_descent(
    Y: np.ndarray,
    X: np.ndarray,
    lam: float,
    alpha: float,
    beta: float,
    tol: float = 1e-4,
    max_iter: int = 1000,
    verbose: bool = False,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Elastic-net VAR(p) estimated equation by equation.

    For each equation i the loss

        1/2 ||y_i - psi_i X||^2 + 1/2 sum_j Gamma_jj ((1-alpha) psi_ij^2 + alpha |psi_ij|)

    is minimised by cycling over the coefficients, starting from the ridge
    solution. This is the same penalty the ECM estimator uses.

    Parameters
    ----------
    Y : np.ndarray, shape (n, T)
        Response (output of data_interface.lag, first element).
    X : np.ndarray, shape (n*p, T)
        Lagged predictors (output of data_interface.lag, second element).
    lam, alpha, beta : float
        Elastic-net hyperparameters.
    tol : float
        Relative decrease of the loss below which an equation has converged.
    max_iter : int
        Maximum number of sweeps per equation.

    Returns
    -------
    Psi : np.ndarray, shape (n, n*p)
    Sigma : np.ndarray, shape (n, n)
        Residual covariance V V' / T, with V = Y - Psi X.
    """
    check_hyperparameters(lam, alpha, beta)

    Y = np.asarray(Y, dtype=float)
    X = np.asarray(X, dtype=float)
    n, T = Y.shape
    np_ = X.shape[0]
    if X.shape[1] != T or np_ % n != 0:
        raise ValueError(f"X shape {X.shape} is not compatible with Y shape {Y.shape}")
    if np.isnan(Y).any() or np.isnan(X).any():
        raise ValueError("coordinate_descent requires data without missing values")

    Gamma = penalty_matrix(n, np_ // n, lam, beta)
    gamma = np.diag(Gamma)

    # Ridge starting point
    XXt = X @ X.T
    Psi = np.linalg.solve(XXt + Gamma, X @ Y.T).T

    x_sq = np.diag(XXt)

    for i in range(n):
        y = Y[i]
        psi = Psi[i].copy()
        resid = y - psi @ X
        loss_old = _objective(y, resid, psi, gamma, alpha)

        for it in range(max_iter):
            for j in range(np_):
                if x_sq[j] == 0.0 and gamma[j] == 0.0:
                    continue
                # Partial residual excluding coefficient j
                r_j = resid + psi[j] * X[j]
                z = float(r_j @ X[j])
                psi_j = soft_thresholding(z, 0.5 * alpha * gamma[j]) / (x_sq[j] + (1.0 - alpha) * gamma[j])
                resid = r_j - psi_j * X[j]
                psi[j] = psi_j

            loss_new = _objective(y, resid, psi, gamma, alpha)
            if isconverged(loss_new, loss_old, tol, increasing=False):
                if verbose:
                    logger.info(f"coordinate_descent > equation {i + 1}/{n} converged after {it + 1} sweeps")
                break
            loss_old = loss_new
        else:
            logger.warning(f"coordinate_descent > equation {i + 1}/{n} reached max_iter={max_iter}")

        Psi[i] = psi

    resid = Y - Psi @ X
    Sigma = resid @ resid.T / T
    Sigma = 0.5 * (Sigma + Sigma.T)

    return Psi, Sigma
