# ============================================================
# Module: kalman_lds
# ------------------------------------------------------------
# - Linear Gaussian state-space model with missing observations
# - Kalman filter ("zeroing" of missing channels, exact likelihood)
# - Kalman smoother + lag-one covariance smoother
# - Utilities for reconstruction and k-step forecasting
# ============================================================
#
# Model:
#
#     Y_t = B X_t + e_t,        e_t ~ N(0, R)
#     X_t = C X_{t-1} + u_t,    u_t ~ N(0, V)
#     X_0 ~ N(X0, P0)
#
# Recursions as in Shumway and Stoffer (2011, chapter 6).

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Any, Tuple, Optional
import logging
import numpy as np

logger = logging.getLogger(__name__)


# ------------------------------------------------------------
# Small helpers
# ------------------------------------------------------------

def symmetrize(M: np.ndarray) -> np.ndarray:
    """Force exact symmetry (floating-point rounding breaks it)."""
    return 0.5 * (M + M.T)


def _right_solve(A: np.ndarray, S: np.ndarray) -> np.ndarray:
    """
    Return A S^{-1} for symmetric S, via a linear solve.
    A S^{-1} = (S^{-1} A^T)^T
    """
    return np.linalg.solve(S, A.T).T


def mask_missing(
    y_t: np.ndarray,
    B: np.ndarray,
    R: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    "Zeroing" of missing observations (Shumway and Stoffer, 2011, eq. 6.79).

    For every missing channel i:
        - y_t[i] = 0
        - row i of B is set to zero
        - row/column i of R are set to zero and R[i, i] = 1

    The masked channel then carries no information and no residual energy,
    which is equivalent to dropping it while keeping dimensions fixed.

    Returns
    -------
    y_t, B_t, R_t : masked copies (inputs are never modified)
    missing_idx   : np.ndarray of missing channel indices
    """
    y_t = np.array(y_t, dtype=float, copy=True)
    B_t = np.array(B, dtype=float, copy=True)
    R_t = np.array(R, dtype=float, copy=True)

    missing_idx = np.where(np.isnan(y_t))[0]
    if missing_idx.size > 0:
        y_t[missing_idx] = 0.0
        B_t[missing_idx, :] = 0.0
        R_t[missing_idx, :] = 0.0
        R_t[:, missing_idx] = 0.0
        R_t[missing_idx, missing_idx] = 1.0

    return y_t, B_t, R_t, missing_idx


# ------------------------------------------------------------
# Parameter container
# ------------------------------------------------------------

@dataclass
class SSMParams:
    """
    Container for the state-space parameters.

    Dimensions
    ----------
    - n : number of observed series
    - m : state dimension
    """
    B: np.ndarray          # (n, m)  measurement loadings
    R: np.ndarray          # (n, n)  measurement noise covariance
    C: np.ndarray          # (m, m)  state transition
    V: np.ndarray          # (m, m)  state innovation covariance
    X0: np.ndarray         # (m,)    initial state mean
    P0: np.ndarray         # (m, m)  initial state covariance

    @property
    def n(self) -> int:
        return self.B.shape[0]

    @property
    def m(self) -> int:
        return self.C.shape[0]

    def validate(self) -> None:
        n, m = self.n, self.m
        expected = {
            "B": (n, m),
            "R": (n, n),
            "C": (m, m),
            "V": (m, m),
            "X0": (m,),
            "P0": (m, m),
        }
        for name, shape in expected.items():
            got = np.shape(getattr(self, name))
            if got != shape:
                raise ValueError(f"{name} has shape {got}, expected {shape}")


# ------------------------------------------------------------
# Core filter / smoother
# ------------------------------------------------------------

class KalmanLDS:
    """
    Linear dynamical system with exact Gaussian inference under missing data.

    Inference is done with:
        - a Kalman filter where missing entries of y_t are "zeroed"
          (see mask_missing),
        - a fixed-interval smoother, optionally with the lag-one
          covariance smoother needed by EM-type estimators.
    """

    def __init__(self, params: SSMParams):
        params.validate()
        self.params = params

    # --------------------------------------------------------
    # Forward pass: Kalman filter
    # --------------------------------------------------------

    def kalman_forward(
        self,
        Y: np.ndarray,
        loglik_flag: bool = False,
        flag_lag1_cov: bool = False,
    ) -> Dict[str, Any]:
        """
        Run the Kalman filter over the entire sequence.

        Parameters
        ----------
        Y : np.ndarray, shape (n, T)
            Observations. NaNs mark missing entries.
        loglik_flag : bool
            If True, accumulate the log-likelihood of the innovations.
        flag_lag1_cov : bool
            If True, compute the seed of the lag-one covariance smoother.

        Returns
        -------
        results : dict
            - 'X_pred'     : (T, m)     E[X_t | Y_{1:t-1}]
            - 'P_pred'     : (T, m, m)
            - 'X_filt'     : (T, m)     E[X_t | Y_{1:t}]
            - 'P_filt'     : (T, m, m)
            - 'innov'      : (T, n)     forecast errors (0 on missing channels)
            - 'innov_cov'  : (T, n, n)  forecast error covariances
            - 'missing'    : list of missing indices per t
            - 'PP_T'       : (m, m) or None, lag-one seed Cov(X_T, X_{T-1} | Y_{1:T})
            - 'loglik'     : float or None
        """
        B, R, C, V, X0, P0 = (
            self.params.B,
            self.params.R,
            self.params.C,
            self.params.V,
            self.params.X0,
            self.params.P0,
        )

        Y = np.asarray(Y, dtype=float)
        if Y.ndim != 2 or Y.shape[0] != self.params.n:
            raise ValueError(f"Y must be (n, T) with n={self.params.n}. Got {Y.shape}.")

        n, T = Y.shape
        m = self.params.m

        X_pred = np.zeros((T, m), dtype=float)
        P_pred = np.zeros((T, m, m), dtype=float)
        X_filt = np.zeros((T, m), dtype=float)
        P_filt = np.zeros((T, m, m), dtype=float)
        innov = np.zeros((T, n), dtype=float)
        innov_cov = np.zeros((T, n, n), dtype=float)
        missing = []

        P0_sym = symmetrize(P0)
        X_prev = X0
        P_prev = P0_sym

        # Not the conditional expectation of the complete-data likelihood
        # in Shumway and Stoffer (2011, p. 340); no 2*pi constant.
        loglik = 0.0 if loglik_flag else None
        PP_T = None

        for t in range(T):
            # 1) Predict
            X_pred[t] = C @ X_prev
            P_pred[t] = symmetrize(C @ P_prev @ C.T + V)

            # 2) Missing observations
            y_t, B_t, R_t, missing_idx = mask_missing(Y[:, t], B, R)
            missing.append(missing_idx)

            # 3) Forecast error and its covariance
            eps_t = y_t - B_t @ X_pred[t]
            S_t = symmetrize(B_t @ P_pred[t] @ B_t.T + R_t)
            innov[t] = eps_t
            innov_cov[t] = S_t

            # 4) Kalman gain, K_t = Pp B_t' S_t^{-1}
            K_t = _right_solve(P_pred[t] @ B_t.T, S_t)

            # 5) Update
            X_filt[t] = X_pred[t] + K_t @ eps_t
            P_filt[t] = symmetrize(P_pred[t] - K_t @ B_t @ P_pred[t])

            # 6) Lag-one covariance seed (Shumway and Stoffer, 2011, p. 334)
            if flag_lag1_cov and t == T - 1:
                CP_prev = C @ P_prev
                PP_T = CP_prev - K_t @ B_t @ CP_prev

            # 7) Log-likelihood
            if loglik_flag:
                sign, logdet = np.linalg.slogdet(S_t)
                if sign <= 0:
                    raise np.linalg.LinAlgError(
                        f"Forecast error covariance is not positive definite at t={t}"
                    )
                loglik -= 0.5 * (logdet + eps_t @ np.linalg.solve(S_t, eps_t))

            X_prev = X_filt[t]
            P_prev = P_filt[t]

        return {
            "X_pred": X_pred,
            "P_pred": P_pred,
            "X_filt": X_filt,
            "P_filt": P_filt,
            "innov": innov,
            "innov_cov": innov_cov,
            "missing": missing,
            "PP_T": PP_T,
            "loglik": loglik,
        }

    # --------------------------------------------------------
    # Backward pass: smoother
    # --------------------------------------------------------

    def kalman_smoother(
        self,
        forward: Dict[str, Any],
        flag_lag1_cov: bool = False,
    ) -> Dict[str, np.ndarray]:
        """
        Fixed-interval smoother (Shumway and Stoffer, 2011, p. 330) and
        lag-one covariance smoother (p. 334).

        Parameters
        ----------
        forward : dict
            Output of kalman_forward(). Must carry 'PP_T' when
            flag_lag1_cov is True.

        Returns
        -------
        results : dict of np.ndarray
            - 'X_smooth'  : (T, m)     E[X_t | Y_{1:T}]
            - 'P_smooth'  : (T, m, m)
            - 'PP_smooth' : (T, m, m)  PP_smooth[t] = Cov(X_t, X_{t-1} | Y_{1:T}),
                            X_{-1} being the initial state (zeros when
                            not requested)
            - 'X_smooth0' : (m,)       E[X_0 | Y_{1:T}]
            - 'P_smooth0' : (m, m)
        """
        C = self.params.C
        X0 = self.params.X0
        P0_sym = symmetrize(self.params.P0)

        X_pred = forward["X_pred"]
        P_pred = forward["P_pred"]
        X_filt = forward["X_filt"]
        P_filt = forward["P_filt"]

        T, m = X_filt.shape

        if flag_lag1_cov and forward.get("PP_T") is None:
            raise ValueError("Lag-one covariance requested but the filter did not seed it.")

        X_smooth = np.zeros((T, m), dtype=float)
        P_smooth = np.zeros((T, m, m), dtype=float)
        PP_smooth = np.zeros((T, m, m), dtype=float)

        # At t=T the smoothed estimates are the filtered ones
        X_smooth[T - 1] = X_filt[T - 1].copy()
        P_smooth[T - 1] = P_filt[T - 1].copy()
        if flag_lag1_cov:
            PP_smooth[T - 1] = forward["PP_T"]

        X_smooth0 = None
        P_smooth0 = None

        for t in range(T - 1, -1, -1):
            if t > 0:
                # J_{t-1} = Pf_{t-1} C' Pp_t^{-1}
                J1 = _right_solve(P_filt[t - 1] @ C.T, P_pred[t])
                X_smooth[t - 1] = X_filt[t - 1] + J1 @ (X_smooth[t] - X_pred[t])
                P_smooth[t - 1] = symmetrize(
                    P_filt[t - 1] + J1 @ (P_smooth[t] - P_pred[t]) @ J1.T
                )
            else:
                J1 = _right_solve(P0_sym @ C.T, P_pred[0])
                X_smooth0 = X0 + J1 @ (X_smooth[0] - X_pred[0])
                P_smooth0 = symmetrize(P0_sym + J1 @ (P_smooth[0] - P_pred[0]) @ J1.T)

            if flag_lag1_cov and t >= 1:
                # J_{t-2}, using the prior at the boundary
                P_before = P_filt[t - 2] if t >= 2 else P0_sym
                J2 = _right_solve(P_before @ C.T, P_pred[t - 1])
                PP_smooth[t - 1] = (
                    P_filt[t - 1] @ J2.T
                    + J1 @ (PP_smooth[t] - C @ P_filt[t - 1]) @ J2.T
                )

        return {
            "X_smooth": X_smooth,
            "P_smooth": P_smooth,
            "PP_smooth": PP_smooth,
            "X_smooth0": X_smooth0,
            "P_smooth0": P_smooth0,
        }

    # --------------------------------------------------------
    # Reconstruction & forecasting utilities
    # --------------------------------------------------------

    def reconstruct_from_smoother(
        self,
        X_smooth: np.ndarray,
        P_smooth: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Fitted measurements from the smoothed states.

        Returns
        -------
        Y_hat : np.ndarray, shape (n, T)
            B X_{t|T}, same layout as the observations.
        cov : np.ndarray, shape (T, n, n)
            B P_{t|T} B' + R
        """
        B, R = self.params.B, self.params.R
        Y_hat = (X_smooth @ B.T).T
        cov = np.einsum("im,tmk,jk->tij", B, P_smooth, B) + R[None, :, :]
        return Y_hat, cov

    def k_step_forecast(
        self,
        X_filt: np.ndarray,
        P_filt: np.ndarray,
        start_idx: int,
        k: int,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        k-step-ahead forecast of Y conditioning on data up to 'start_idx'.

        Returns
        -------
        mean_y : np.ndarray, shape (n,)
        cov_y : np.ndarray, shape (n, n)
        """
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")

        B, R, C, V = self.params.B, self.params.R, self.params.C, self.params.V

        X = X_filt[start_idx].copy()
        P = P_filt[start_idx].copy()

        for _ in range(k):
            X = C @ X
            P = symmetrize(C @ P @ C.T + V)

        mean_y = B @ X
        cov_y = symmetrize(B @ P @ B.T + R)
        return mean_y, cov_y


# ------------------------------------------------------------
# Functional entry point
# ------------------------------------------------------------

def kalman(
    Y: np.ndarray,
    B: np.ndarray,
    R: np.ndarray,
    C: np.ndarray,
    V: np.ndarray,
    X0: np.ndarray,
    P0: np.ndarray,
    loglik_flag: bool = False,
    flag_lag1_cov: bool = False,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray,
           np.ndarray, np.ndarray, np.ndarray, Optional[float]]:
    """
    Kalman filter and smoother in one call.

    Parameters
    ----------
    Y : np.ndarray, shape (n, T), NaN = missing
    B, R, C, V, X0, P0 : state-space parameters (see SSMParams)
    loglik_flag : bool
        True to compute the log-likelihood.
    flag_lag1_cov : bool
        True to compute the lag-one covariance smoother.

    Returns
    -------
    (X_smooth, P_smooth, PP_smooth, X_smooth0, P_smooth0,
     X_filt, X_pred, P_filt, loglik)
    """
    model = KalmanLDS(SSMParams(
        B=np.asarray(B, dtype=float),
        R=np.asarray(R, dtype=float),
        C=np.asarray(C, dtype=float),
        V=np.asarray(V, dtype=float),
        X0=np.asarray(X0, dtype=float),
        P0=np.asarray(P0, dtype=float),
    ))
    logger.debug(
        f"kalman > n={model.params.n}, m={model.params.m}, T={np.shape(Y)[-1]}, "
        f"loglik={loglik_flag}, lag1_cov={flag_lag1_cov}"
    )
    fwd = model.kalman_forward(Y, loglik_flag=loglik_flag, flag_lag1_cov=flag_lag1_cov)
    smo = model.kalman_smoother(fwd, flag_lag1_cov=flag_lag1_cov)

    return (
        smo["X_smooth"],
        smo["P_smooth"],
        smo["PP_smooth"],
        smo["X_smooth0"],
        smo["P_smooth0"],
        fwd["X_filt"],
        fwd["X_pred"],
        fwd["P_filt"],
        fwd["loglik"],
    )
