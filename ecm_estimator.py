# ============================================================
# Module: ecm_estimator
# ------------------------------------------------------------
# - Elastic-net VAR(p) with missing observations
# - ECM algorithm: Kalman smoother E-step + closed-form CM-step
# - Adaptive weights make the L1 part of the penalty smooth
# - Explicit convergence report (flag, iterations, last change)
# ============================================================

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import List, Tuple
import logging
import numpy as np
from scipy import linalg

from coordinate_descent import EPS, check_hyperparameters, coordinate_descent, penalty_matrix
from data_interface import ext_companion_form, interpolate, lag
from kalman_lds import symmetrize, kalman

logger = logging.getLogger(__name__)


# ------------------------------------------------------------
# Containers
# ------------------------------------------------------------

@dataclass
class ECMState:
    """
    Loop-carried state of the ECM algorithm.

    Every iteration maps one ECMState into a new one; nothing is
    updated in place.
    """
    Psi: np.ndarray        # (n, np)  VAR coefficients
    Sigma: np.ndarray      # (n, n)   VAR residual covariance
    Phi: np.ndarray        # (n, np)  adaptive weights 1 / (|Psi| + eps)
    X0: np.ndarray         # (np+n,)  initial state mean
    P0: np.ndarray         # (np+n, np+n) initial state covariance
    pen_loglik: float = -np.inf


@dataclass
class ECMResult:
    """
    Output of the ECM estimator.

    The state-space matrices exclude the n tracking states used to
    estimate the lag-one covariance, i.e. they describe the standard
    companion form of the VAR(p).
    """
    B: np.ndarray          # (n, np)
    R: np.ndarray          # (n, n)
    C: np.ndarray          # (np, np)
    V: np.ndarray          # (np, np)
    X0: np.ndarray         # (np,)
    P0: np.ndarray         # (np, np)
    Psi_init: np.ndarray   # (n, np)  coordinate-descent starting point
    Sigma_init: np.ndarray # (n, n)
    converged: bool
    n_iter: int
    rel_change: float      # last relative change of the penalised loglik (NaN if never computed)
    pen_loglik: List[float] = field(default_factory=list)

    @property
    def Psi(self) -> np.ndarray:
        return self.C[: self.B.shape[0], :]

    @property
    def Sigma(self) -> np.ndarray:
        n = self.B.shape[0]
        return self.V[:n, :n]

    def as_tuple(self) -> Tuple[np.ndarray, ...]:
        """(B, R, C, V, X0, P0, Psi_init, Sigma_init)"""
        return (self.B, self.R, self.C, self.V, self.X0, self.P0, self.Psi_init, self.Sigma_init)


# ------------------------------------------------------------
# Building blocks
# ------------------------------------------------------------

def validate_inputs(
    Y: np.ndarray,
    p: int,
    lam: float,
    alpha: float,
    beta: float,
    max_iter: int,
    prerun: int,
) -> None:
    """Raise ValueError before any computation if the setup is invalid."""
    check_hyperparameters(lam, alpha, beta)

    if max_iter < 3:
        raise ValueError(f"max_iter must be > 2, got {max_iter}")
    if prerun >= max_iter:
        raise ValueError(f"prerun must be < max_iter, got prerun={prerun}, max_iter={max_iter}")
    if p < 1:
        raise ValueError(f"p must be >= 1, got {p}")

    if np.ndim(Y) != 2:
        raise ValueError(f"Y should be 2D (n, T), got shape {np.shape(Y)}")
    n, T = np.shape(Y)
    if n < 2:
        raise ValueError("Univariate autoregressions are not supported (n must be >= 2)")
    if T <= p:
        raise ValueError(f"Need more than p={p} observations, got T={T}")


def adaptive_weights(Psi: np.ndarray) -> np.ndarray:
    """Phi = 1 / (|Psi| + eps)."""
    return 1.0 / (np.abs(Psi) + EPS)


def initial_state_space(
    Psi: np.ndarray,
    Sigma: np.ndarray,
    noise_floor: float = 1e-8,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Extended companion-form state space implied by (Psi, Sigma).

    Returns
    -------
    B : (n, np+n)   [I_n, 0]
    R : (n, n)      noise_floor * I_n
    C, V : (np+n, np+n) extended companion form
    X0 : (np+n,)    zeros
    P0 : (np+n, np+n) stationary covariance, P0 = C P0 C' + V
    """
    n = Sigma.shape[0]
    np_ = Psi.shape[1]

    B = np.hstack([np.eye(n), np.zeros((n, np_))])
    R = noise_floor * np.eye(n)
    C, V = ext_companion_form(Psi, Sigma)

    spectral_radius = float(np.max(np.abs(np.linalg.eigvals(C))))
    if spectral_radius >= 1.0:
        logger.warning(
            f"ecm > initial VAR is not stationary (spectral radius {spectral_radius:.4f}); "
            "P0 from the Lyapunov equation may be meaningless"
        )

    X0 = np.zeros(np_ + n)
    P0 = symmetrize(linalg.solve_discrete_lyapunov(C, V))
    return B, R, C, V, X0, P0


def penalised_loglik(
    loglik: float,
    Psi: np.ndarray,
    Sigma: np.ndarray,
    Phi: np.ndarray,
    Gamma: np.ndarray,
    alpha: float,
) -> float:
    """
    loglik - 1/2 tr(Sigma^{-1} ((1-alpha) Psi + alpha Psi*Phi) Gamma Psi')

    The first term is the innovations log-likelihood from the filter, not
    the expected complete-data log-likelihood of the E-step.
    """
    M = ((1.0 - alpha) * Psi + alpha * (Psi * Phi)) @ Gamma @ Psi.T
    return float(loglik - 0.5 * np.trace(np.linalg.solve(Sigma, M)))


def ecm_statistics(
    X_smooth: np.ndarray,
    P_smooth: np.ndarray,
    X_smooth0: np.ndarray,
    P_smooth0: np.ndarray,
    n: int,
    np_: int,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Sufficient statistics of the CM-step.

        E = sum_t E[y_t y_t']                       (n, n)
        F = sum_t E[y_t (y_{t-1}, ..., y_{t-p})']   (n, np)
        G = sum_t E[x_{t-1} x_{t-1}'],  x = (y_t, ..., y_{t-p+1})   (np, np)

    The extended state at t is (y_t, y_{t-1}, ..., y_{t-p}), so the
    cross-covariance in F is the (1:n, n+1:end) block of P_smooth[t].
    The smoothed initial state stands in for t=0.
    """
    X_prev = np.vstack([X_smooth0[None, :np_], X_smooth[:-1, :np_]])          # (T, np)
    P_prev_sum = P_smooth0[:np_, :np_] + P_smooth[:-1, :np_, :np_].sum(axis=0)
    Y_s = X_smooth[:, :n]                                                      # (T, n)

    E = Y_s.T @ Y_s + P_smooth[:, :n, :n].sum(axis=0)
    F = Y_s.T @ X_prev + P_smooth[:, :n, n:].sum(axis=0)
    G = X_prev.T @ X_prev + P_prev_sum
    return E, F, G


def cm_step(
    E: np.ndarray,
    F: np.ndarray,
    G: np.ndarray,
    Phi: np.ndarray,
    Gamma: np.ndarray,
    alpha: float,
    T: int,
    sparse_mask: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Closed-form conditional maximisation.

    Each row of Psi solves a weighted ridge system

        (G + Gamma ((1-alpha) I + alpha diag(Phi_i))) psi_i' = F_i'

    then entries flagged in sparse_mask are set to exactly zero and

        Sigma = 1/T (E - F Psi' - Psi F' + Psi G Psi'
                     + Psi Gamma ((1-alpha) Psi + alpha Psi*Phi)')
    """
    n, np_ = F.shape
    gamma = np.diag(Gamma)

    Psi = np.zeros((n, np_), dtype=float)
    for i in range(n):
        A_i = G + np.diag(gamma * ((1.0 - alpha) + alpha * Phi[i]))
        Psi[i] = np.linalg.solve(A_i, F[i])
    Psi[sparse_mask] = 0.0

    Sigma = (
        E
        - F @ Psi.T
        - Psi @ F.T
        + Psi @ G @ Psi.T
        + Psi @ Gamma @ ((1.0 - alpha) * Psi + alpha * (Psi * Phi)).T
    ) / T
    return Psi, symmetrize(Sigma)


def ecm_update(
    state: ECMState,
    X_smooth: np.ndarray,
    P_smooth: np.ndarray,
    X_smooth0: np.ndarray,
    P_smooth0: np.ndarray,
    Gamma: np.ndarray,
    alpha: float,
) -> ECMState:
    """
    One CM-step given the smoother output of the current E-step.

    The initial conditions are re-seeded from the smoothed t=0 values.
    Coefficients that were already (numerically) zero stay at zero.
    """
    n, np_ = state.Psi.shape
    T = X_smooth.shape[0]

    X0 = X_smooth0.copy()
    P0 = P_smooth0.copy()

    E, F, G = ecm_statistics(X_smooth, P_smooth, X0, P0, n, np_)
    sparse_mask = np.abs(state.Psi) < EPS
    Psi, Sigma = cm_step(E, F, G, state.Phi, Gamma, alpha, T, sparse_mask)

    return replace(state, Psi=Psi, Sigma=Sigma, Phi=adaptive_weights(Psi), X0=X0, P0=P0)


# ------------------------------------------------------------
# ECM estimator
# ------------------------------------------------------------

def ecm(
    Y: np.ndarray,
    p: int,
    lam: float,
    alpha: float,
    beta: float,
    tol: float = 1e-4,
    max_iter: int = 1000,
    prerun: int = 2,
    verbose: bool = True,
    noise_floor: float = 1e-8,
) -> ECMResult:
    """
    Estimate an elastic-net VAR(p) with the ECM algorithm.

    Parameters
    ----------
    Y : np.ndarray, shape (n, T)
        Observations, NaN = missing. n >= 2.
    p : int
        Number of lags.
    lam : float
        Overall shrinkage, lam >= 0.
    alpha : float
        Weight of the (adaptive) L1 part of the penalty, 0 <= alpha <= 1.
    beta : float
        Lag decay of the penalty, beta >= 1.
    tol : float
        Convergence tolerance on the relative increase of the penalised
        log-likelihood (also passed to the coordinate-descent initialiser).
    max_iter : int
        Maximum number of ECM iterations, > 2.
    prerun : int
        Number of iterations run before the penalised log-likelihood is
        monitored, < max_iter.
    verbose : bool
        If True, log progress at INFO level.
    noise_floor : float
        Variance of the (negligible) measurement noise, R = noise_floor * I.

    Returns
    -------
    ECMResult
        ``result.as_tuple()`` gives (B, R, C, V, X0, P0, Psi_init, Sigma_init).
        Check ``result.converged`` before relying on the estimates.
    """
    validate_inputs(Y, p, lam, alpha, beta, max_iter, prerun)

    Y = np.asarray(Y, dtype=float)
    n, T = Y.shape
    np_ = n * p

    Gamma = penalty_matrix(n, p, lam, beta)

    # ------------------------------------------------
    # Initialisation on mean-interpolated data
    # ------------------------------------------------
    if verbose:
        logger.info("ecm > initialisation")
    Y_init, X_init = lag(interpolate(Y), p)
    Psi_init, Sigma_init = coordinate_descent(Y_init, X_init, lam, alpha, beta, tol=tol, max_iter=max_iter)

    B, R, C, V, X0, P0 = initial_state_space(Psi_init, Sigma_init, noise_floor)
    state = ECMState(
        Psi=C[:n, :np_].copy(),
        Sigma=V[:n, :n].copy(),
        Phi=adaptive_weights(C[:n, :np_]),
        X0=X0,
        P0=P0,
    )

    history: List[float] = []
    converged = False
    rel_change = np.nan
    n_iter = 0

    # ------------------------------------------------
    # ECM iterations
    # ------------------------------------------------
    for it in range(1, max_iter + 1):
        n_iter = it
        C, V = ext_companion_form(state.Psi, state.Sigma)

        # E-step
        X_s, P_s, _, X_s0, P_s0, _, _, _, loglik = kalman(
            Y, B, R, C, V, state.X0, state.P0, loglik_flag=True, flag_lag1_cov=True
        )

        if it > prerun:
            pen_loglik = penalised_loglik(loglik, state.Psi, state.Sigma, state.Phi, Gamma, alpha)
            history.append(pen_loglik)

            if verbose:
                logger.info(f"ecm > iter={it - prerun}, penalised loglik={pen_loglik:.5f}")

            if it > prerun + 1:
                rel_change = (pen_loglik - state.pen_loglik) / (abs(state.pen_loglik) + EPS)
                if rel_change <= tol:
                    converged = True
                    if verbose:
                        logger.info("ecm > converged!")
                    break

            state = replace(state, pen_loglik=pen_loglik)

        elif verbose:
            logger.info(f"ecm > prerun {it} (out of {prerun})")

        # CM-step
        state = ecm_update(state, X_s, P_s, X_s0, P_s0, Gamma, alpha)

    if not converged:
        logger.warning(
            f"ecm > no convergence after {max_iter} iterations "
            f"(last relative change {rel_change:.3e}, tol={tol:.1e})"
        )

    # Last iterate (unchanged since the last E-step when converged)
    C, V = ext_companion_form(state.Psi, state.Sigma)

    # Replace very small numbers with zeros
    C[np.abs(C) < EPS] = 0.0
    V[np.abs(V) < EPS] = 0.0

    # Drop the n tracking states
    return ECMResult(
        B=B[:, :np_],
        R=R,
        C=C[:np_, :np_],
        V=V[:np_, :np_],
        X0=state.X0[:np_],
        P0=state.P0[:np_, :np_],
        Psi_init=Psi_init,
        Sigma_init=Sigma_init,
        converged=converged,
        n_iter=n_iter,
        rel_change=float(rel_change),
        pen_loglik=history,
    )


# Same estimator, descriptive name
estimate_elastic_net_var = ecm
