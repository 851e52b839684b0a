from __future__ import annotations

import logging

import numpy as np
import pytest

from coordinate_descent import (
    EPS,
    check_hyperparameters,
    coordinate_descent,
    isconverged,
    penalty_matrix,
    soft_thresholding,
)
from data_interface import lag

pytestmark = pytest.mark.unit


@pytest.fixture
def var_data(simulate_var, rng):
    Psi = np.array([
        [0.5, 0.0, 0.1, 0.0],
        [0.2, 0.4, 0.0, 0.0],
    ])
    Y = simulate_var(Psi, np.eye(2), 300, rng)
    return lag(Y, 2)


def test_soft_thresholding() -> None:
    assert soft_thresholding(3.0, 1.0) == 2.0
    assert soft_thresholding(-3.0, 1.0) == -2.0
    assert soft_thresholding(0.5, 1.0) == 0.0
    assert soft_thresholding(-0.5, 1.0) == 0.0


def test_isconverged_both_directions() -> None:
    # likelihood: small relative increase
    assert isconverged(100.001, 100.0, tol=1e-4)
    assert not isconverged(101.0, 100.0, tol=1e-4)
    # a decrease always stops an increasing objective
    assert isconverged(99.0, 100.0, tol=1e-4)

    # loss: small relative decrease
    assert isconverged(99.999, 100.0, tol=1e-4, increasing=False)
    assert not isconverged(99.0, 100.0, tol=1e-4, increasing=False)

    # zero reference value does not divide by zero
    assert not isconverged(1.0, 0.0, tol=1e-4, eps=EPS)


def test_penalty_matrix_decays_by_lag() -> None:
    Gamma = penalty_matrix(n=2, p=3, lam=6.0, beta=2.0)
    assert Gamma.shape == (6, 6)
    assert np.allclose(np.diag(Gamma), [1.0, 1.0, 2.0, 2.0, 4.0, 4.0])
    assert np.count_nonzero(Gamma - np.diag(np.diag(Gamma))) == 0


@pytest.mark.parametrize(
    "lam, alpha, beta",
    [(-1.0, 0.5, 1.0), (1.0, -0.1, 1.0), (1.0, 1.1, 1.0), (1.0, 0.5, 0.9)],
)
def test_check_hyperparameters_rejects(lam, alpha, beta) -> None:
    with pytest.raises(ValueError):
        check_hyperparameters(lam, alpha, beta)


def test_unpenalised_fit_is_ols(var_data) -> None:
    Y_t, X = var_data
    Psi, Sigma = coordinate_descent(Y_t, X, lam=0.0, alpha=0.5, beta=1.0, tol=1e-10)

    Psi_ols = np.linalg.solve(X @ X.T, X @ Y_t.T).T
    assert np.allclose(Psi, Psi_ols, atol=1e-6)

    resid = Y_t - Psi_ols @ X
    assert np.allclose(Sigma, resid @ resid.T / Y_t.shape[1], atol=1e-6)


def test_strong_lasso_penalty_zeroes_everything(var_data) -> None:
    Y_t, X = var_data
    Psi, Sigma = coordinate_descent(Y_t, X, lam=1e5, alpha=0.5, beta=1.0)

    assert np.count_nonzero(Psi) == 0
    assert np.allclose(Sigma, Y_t @ Y_t.T / Y_t.shape[1])


def test_penalty_shrinks_and_sparsifies(var_data) -> None:
    Y_t, X = var_data
    Psi_ols, _ = coordinate_descent(Y_t, X, lam=0.0, alpha=1.0, beta=1.0)
    Psi_pen, _ = coordinate_descent(Y_t, X, lam=400.0, alpha=1.0, beta=1.0)

    assert np.abs(Psi_pen).sum() < np.abs(Psi_ols).sum()
    assert np.count_nonzero(Psi_pen) < Psi_pen.size


def test_sigma_is_symmetric(var_data) -> None:
    Y_t, X = var_data
    _, Sigma = coordinate_descent(Y_t, X, lam=5.0, alpha=0.3, beta=1.5)
    assert np.array_equal(Sigma, Sigma.T)
    assert np.linalg.eigvalsh(Sigma).min() > 0


def test_input_errors(var_data) -> None:
    Y_t, X = var_data
    with pytest.raises(ValueError):
        coordinate_descent(Y_t, X[:, :-1], lam=1.0, alpha=0.5, beta=1.0)

    Y_bad = Y_t.copy()
    Y_bad[0, 0] = np.nan
    with pytest.raises(ValueError):
        coordinate_descent(Y_bad, X, lam=1.0, alpha=0.5, beta=1.0)


def test_max_iter_is_reported(var_data, caplog) -> None:
    Y_t, X = var_data
    with caplog.at_level(logging.WARNING, logger="coordinate_descent"):
        coordinate_descent(Y_t, X, lam=50.0, alpha=0.5, beta=1.0, tol=0.0, max_iter=1)
    assert "reached max_iter=1" in caplog.text
