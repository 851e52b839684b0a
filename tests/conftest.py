from __future__ import annotations

import numpy as np
import pytest

from kalman_lds import SSMParams


def _simulate_var(Psi: np.ndarray, Sigma: np.ndarray, T: int, rng: np.random.Generator, burn: int = 100) -> np.ndarray:
    """Simulate a zero-mean VAR(p); returns Y with shape (n, T)."""
    n = Sigma.shape[0]
    p = Psi.shape[1] // n
    L = np.linalg.cholesky(Sigma)

    Y = np.zeros((n, T + burn + p))
    for t in range(p, T + burn + p):
        lags = np.concatenate([Y[:, t - j] for j in range(1, p + 1)])
        Y[:, t] = Psi @ lags + L @ rng.standard_normal(n)
    return Y[:, burn + p:]


def _simulate_ssm(params: SSMParams, T: int, rng: np.random.Generator):
    """Simulate states (T, m) and observations (n, T) from a linear Gaussian SSM."""
    m, n = params.m, params.n
    X = np.zeros((T, m))
    Y = np.zeros((n, T))

    x = rng.multivariate_normal(params.X0, params.P0)
    for t in range(T):
        x = params.C @ x + rng.multivariate_normal(np.zeros(m), params.V)
        X[t] = x
        Y[:, t] = params.B @ x + rng.multivariate_normal(np.zeros(n), params.R)
    return X, Y


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(20240521)


@pytest.fixture(scope="session")
def simulate_var():
    return _simulate_var


@pytest.fixture(scope="session")
def simulate_ssm():
    return _simulate_ssm


@pytest.fixture
def small_ssm() -> SSMParams:
    """Two observed series driven by a stable three-dimensional state."""
    C = np.array([
        [0.7, 0.1, 0.0],
        [0.0, 0.5, 0.2],
        [0.1, 0.0, 0.3],
    ])
    V = np.array([
        [1.0, 0.2, 0.0],
        [0.2, 0.8, 0.1],
        [0.0, 0.1, 0.5],
    ])
    B = np.array([
        [1.0, 0.5, 0.0],
        [0.0, 1.0, -0.4],
    ])
    R = np.array([
        [0.5, 0.1],
        [0.1, 0.4],
    ])
    return SSMParams(B=B, R=R, C=C, V=V, X0=np.zeros(3), P0=np.eye(3))
