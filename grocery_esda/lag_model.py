"""
Spatial lag regression

ML estimation of ``y = X beta + rho W y + e`` through the likelihood
concentrated on rho, with an OLS baseline for comparison.
"""

import warnings

import numpy as np
import pandas as pd
from scipy import linalg, stats
from scipy.optimize import minimize_scalar
from sklearn.base import BaseEstimator
from sklearn.utils import check_array

from .exceptions import (
    ConvergenceError,
    DegenerateInputError,
    InputError,
    NumericalError,
    SingularMatrixError,
)
from .moran import Moran
from .weights import _check_attribute

__all__ = ["OLS", "SpatialLag", "fit_spatial_lag"]

CONSTANT = "CONSTANT"


def _design(X, add_constant):
    """
    Validate a design matrix and optionally prepend an intercept column.
    """
    if isinstance(X, pd.DataFrame):
        names = [str(c) for c in X.columns]
    else:
        names = None
    try:
        X = check_array(X, dtype=float, ensure_2d=False)
    except ValueError as exception:
        raise InputError(f"invalid design matrix: {exception}") from exception
    if X.ndim == 1:
        X = X.reshape(-1, 1)
    if names is None:
        names = [f"x{i}" for i in range(X.shape[1])]
    if add_constant:
        X = np.column_stack((np.ones(X.shape[0]), X))
        names = [CONSTANT] + names
    n, k = X.shape
    if n <= k:
        raise InputError(f"{n} observations cannot identify {k} coefficients")
    if np.linalg.matrix_rank(X) < k:
        raise SingularMatrixError(
            "the design matrix is rank deficient; some covariates are"
            " perfectly collinear"
        )
    return X, names


def _response(y, n):
    y = _check_attribute(y, n, name="y")
    if np.ptp(y) == 0:
        raise DegenerateInputError("the response is constant")
    return y


def _coefficient_table(names, coefficients, std_err, statistic, p_values):
    return pd.DataFrame(
        {
            "coefficient": coefficients,
            "std_err": std_err,
            "statistic": statistic,
            "p_value": p_values,
        },
        index=pd.Index(names, name="variable"),
    )


class OLS(BaseEstimator):
    """
    Ordinary least squares, the non-spatial baseline.

    Parameters
    ----------
    add_constant : bool
                   prepend an intercept column to X (default True)

    Attributes
    ----------
    betas_       : array
                   (k,) coefficients, intercept first when added
    names_       : list
                   coefficient names
    residuals_   : array
                   y - X betas
    predy_       : array
                   fitted values
    sigma2_      : float
                   residual variance, sum of squares over (n - k)
    vm_          : array
                   (k, k) variance matrix of the coefficients
    std_err_     : array
                   standard errors of betas
    t_stat_      : array
                   t statistics of betas
    p_values_    : array
                   two-sided p-values of the t statistics
    r2_          : float
                   coefficient of determination
    logl_        : float
                   Gaussian log-likelihood at the ML variance
    aic_         : float
                   Akaike information criterion
    schwarz_     : float
                   Schwarz (Bayesian) information criterion
    """

    def __init__(self, add_constant=True):
        self.add_constant = add_constant

    def fit(self, X, y):
        X, self.names_ = _design(X, self.add_constant)
        n, k = X.shape
        y = _response(y, n)
        xtxi = linalg.inv(X.T @ X)
        self.betas_ = xtxi @ (X.T @ y)
        self.predy_ = X @ self.betas_
        self.residuals_ = y - self.predy_
        sse = self.residuals_ @ self.residuals_
        self.n_, self.k_ = n, k
        self.sigma2_ = sse / (n - k)
        self.vm_ = self.sigma2_ * xtxi
        self.std_err_ = np.sqrt(np.diag(self.vm_))
        self.t_stat_ = self.betas_ / self.std_err_
        self.p_values_ = 2.0 * stats.t.sf(np.abs(self.t_stat_), n - k)
        self.r2_ = 1.0 - sse / ((y - y.mean()) ** 2).sum()
        self.logl_ = -0.5 * n * (np.log(2 * np.pi * sse / n) + 1)
        self.aic_ = -2.0 * self.logl_ + 2.0 * k
        self.schwarz_ = -2.0 * self.logl_ + k * np.log(n)
        return self

    def summary(self):
        """Coefficient table as a DataFrame."""
        return _coefficient_table(
            self.names_, self.betas_, self.std_err_, self.t_stat_, self.p_values_
        )

    def moran_residuals(
        self, w, permutations=0, seed=None, alternative="two-sided", islands="zero"
    ):
        """
        Moran's I of the OLS residuals, the usual check for spatial
        dependence left in a non-spatial model.
        """
        return Moran(
            self.residuals_,
            w,
            permutations=permutations,
            seed=seed,
            alternative=alternative,
            islands=islands,
        )


def _rho_bounds(eigenvalues, epsilon):
    """
    Open interval (1/lambda_min, 1/lambda_max) in which I - rho W is
    nonsingular, shrunk by ``epsilon`` on both sides.
    """
    real = eigenvalues.real
    lam_min, lam_max = real.min(), real.max()
    if lam_min >= 0 or lam_max <= 0:
        raise NumericalError(
            f"the eigenvalues of W span [{lam_min:.6g}, {lam_max:.6g}], which"
            " does not bracket zero"
        )
    return 1.0 / lam_min + epsilon, 1.0 / lam_max - epsilon


def _log_determinant(rho, eigenvalues):
    # ln|I - rho W| as a sum over eigenvalues; complex pairs contribute
    # their squared modulus, so the total is real
    return np.log(np.abs(1.0 - rho * eigenvalues)).sum()


class SpatialLag(BaseEstimator):
    """
    Spatial lag (simultaneous autoregressive) model by maximum likelihood.

    Fits ``y = X beta + rho W y + e`` with ``e ~ N(0, sigma2 I)``. beta and
    sigma2 are profiled out, leaving a concentrated log-likelihood in rho
    alone:

    .. math::

        \\ln L(\\rho) = -\\frac{n}{2}\\ln(2\\pi) - \\frac{n}{2}\\ln(e(\\rho)'e(\\rho)/n)
                     + \\ln|I - \\rho W| - \\frac{n}{2}

    where ``e(rho) = e0 - rho eL`` and ``e0``, ``eL`` are the OLS residuals of
    y and of Wy on X. The log-determinant uses the eigenvalues of W, computed
    once per ``Weights`` and reused for every candidate rho. The maximum is
    searched with a bounded Brent method on ``(1/lambda_min, 1/lambda_max)``.

    Parameters
    ----------
    w            : Weights
                   spatial weights aligned with the observations
    add_constant : bool
                   prepend an intercept column to X (default True)
    max_iter     : int
                   maximum number of function evaluations for the rho search
    tolerance    : float
                   absolute tolerance on rho
    epsilon      : float
                   distance kept from the ends of the admissible rho interval

    Attributes
    ----------
    betas_       : array
                   (k,) coefficients, intercept first when added
    rho_         : float
                   spatial autoregressive parameter
    names_       : list
                   names of betas_ followed by 'W_y'
    sigma2_      : float
                   ML residual variance, e'e / n
    residuals_   : array
                   y - X beta - rho W y
    predy_       : array
                   y minus residuals_
    logl_        : float
                   log-likelihood at the optimum
    vm_          : array
                   (k + 2, k + 2) asymptotic variance matrix of
                   (beta, rho, sigma2)
    std_err_     : array
                   (k + 1,) standard errors of (beta, rho)
    z_stat_      : array
                   z statistics of (beta, rho)
    p_values_    : array
                   two-sided normal p-values of (beta, rho)
    pr2_         : float
                   pseudo R-squared, squared correlation of y and predy_
    aic_         : float
                   Akaike information criterion
    schwarz_     : float
                   Schwarz (Bayesian) information criterion
    lr_test_     : tuple
                   (statistic, p-value) likelihood ratio test of rho = 0
                   against OLS on the same X, chi-squared with one degree of
                   freedom
    bounds_      : tuple
                   admissible interval searched for rho
    n_iter_      : int
                   number of likelihood evaluations

    Notes
    -----
    Standard errors come from the inverse of the analytic information
    matrix (Anselin 1988, ch. 6). They are asymptotic approximations and
    are only as good as n is large.

    When W has no links at all, Wy is identically zero and rho is not
    identified. rho is then fixed at 0, the coefficients equal OLS, and the
    rho standard error is reported as nan with a warning.

    Raises
    ------
    SingularMatrixError
        if X is rank deficient
    ConvergenceError
        if the rho search stops at ``max_iter`` without converging
    NumericalError
        if the information matrix is not positive definite
    """

    def __init__(
        self, w=None, add_constant=True, max_iter=500, tolerance=1e-8, epsilon=1e-7
    ):
        self.w = w
        self.add_constant = add_constant
        self.max_iter = max_iter
        self.tolerance = tolerance
        self.epsilon = epsilon

    def fit(self, X, y):
        w = self.w
        if w is None:
            raise ValueError("SpatialLag requires spatial weights `w`")
        X, names = _design(X, self.add_constant)
        n, k = X.shape
        if n != w.n:
            raise InputError(f"X has {n} rows but the weights have {w.n} regions")
        y = _response(y, n)
        wy = w.lag(y)

        cho = linalg.cho_factor(X.T @ X)
        b0 = linalg.cho_solve(cho, X.T @ y)
        bl = linalg.cho_solve(cho, X.T @ wy)
        e0 = y - X @ b0
        el = wy - X @ bl
        e0e0, e0el, elel = e0 @ e0, e0 @ el, el @ el

        identified = w.s0 > 0
        if identified:
            eigenvalues = w.eigenvalues
            self.bounds_ = _rho_bounds(eigenvalues, self.epsilon)

            def negative_concentrated(rho):
                sse = e0e0 - 2.0 * rho * e0el + rho * rho * elel
                return 0.5 * n * np.log(sse / n) - _log_determinant(rho, eigenvalues)

            res = minimize_scalar(
                negative_concentrated,
                bounds=self.bounds_,
                method="bounded",
                options={"maxiter": self.max_iter, "xatol": self.tolerance},
            )
            if not res.success:
                raise ConvergenceError(
                    f"optimization failed to converge after {res.nfev}"
                    f" evaluations: {res.message}"
                )
            self.rho_ = float(res.x)
            self.n_iter_ = int(res.nfev)
            logdet = _log_determinant(self.rho_, eigenvalues)
        else:
            warnings.warn(
                "the weights have no links, so rho is not identified;"
                " rho is fixed at 0 and its standard error is nan",
                stacklevel=2,
            )
            self.bounds_ = (np.nan, np.nan)
            self.rho_ = 0.0
            self.n_iter_ = 0
            logdet = 0.0

        self.names_ = names + ["W_y"]
        self.betas_ = b0 - self.rho_ * bl
        self.residuals_ = e0 - self.rho_ * el
        self.predy_ = y - self.residuals_
        self.sigma2_ = (self.residuals_ @ self.residuals_) / n
        self.logl_ = (
            -0.5 * n * np.log(2 * np.pi)
            - 0.5 * n * np.log(self.sigma2_)
            + logdet
            - 0.5 * n
        )

        self.vm_ = self._variance(X, w, identified)
        self.std_err_ = np.sqrt(np.diag(self.vm_)[: k + 1])
        coefficients = np.append(self.betas_, self.rho_)
        with np.errstate(invalid="ignore"):
            self.z_stat_ = coefficients / self.std_err_
        self.p_values_ = 2.0 * stats.norm.sf(np.abs(self.z_stat_))

        self.pr2_ = np.corrcoef(y, self.predy_)[0, 1] ** 2
        self.aic_ = -2.0 * self.logl_ + 2.0 * (k + 1)
        self.schwarz_ = -2.0 * self.logl_ + (k + 1) * np.log(n)
        logl_ols = -0.5 * n * (np.log(2 * np.pi * e0e0 / n) + 1)
        lr = max(2.0 * (self.logl_ - logl_ols), 0.0)
        self.lr_test_ = (lr, stats.chi2.sf(lr, 1))
        return self

    def _variance(self, X, w, identified):
        """
        Inverse of the information matrix of (beta, rho, sigma2).
        """
        n, k = X.shape
        sigma2 = self.sigma2_
        W = w.sparse.toarray()
        A = np.eye(n) - self.rho_ * W
        try:
            # W A^-1, from A' (W A^-1)' = W'
            wa = linalg.solve(A.T, W.T).T
        except linalg.LinAlgError as exception:
            raise NumericalError(
                f"I - rho W is singular at rho={self.rho_:.6g}"
            ) from exception
        tr1 = np.trace(wa)
        tr2 = (wa * wa.T).sum()
        tr3 = (wa * wa).sum()
        wpredy = wa @ (X @ self.betas_)

        info = np.zeros((k + 2, k + 2))
        info[:k, :k] = X.T @ X / sigma2
        info[:k, k] = info[k, :k] = X.T @ wpredy / sigma2
        info[k, k] = tr2 + tr3 + wpredy @ wpredy / sigma2
        info[k, k + 1] = info[k + 1, k] = tr1 / sigma2
        info[k + 1, k + 1] = n / (2.0 * sigma2**2)

        keep = np.arange(k + 2) if identified else np.delete(np.arange(k + 2), k)
        try:
            cho = linalg.cho_factor(info[np.ix_(keep, keep)])
        except linalg.LinAlgError as exception:
            raise NumericalError(
                "the information matrix is not positive definite, so standard"
                " errors cannot be computed"
            ) from exception
        vm = np.full((k + 2, k + 2), np.nan)
        vm[np.ix_(keep, keep)] = linalg.cho_solve(cho, np.eye(len(keep)))
        return vm

    def summary(self):
        """Coefficient table, including rho as 'W_y', as a DataFrame."""
        return _coefficient_table(
            self.names_,
            np.append(self.betas_, self.rho_),
            self.std_err_,
            self.z_stat_,
            self.p_values_,
        )


def fit_spatial_lag(X, y, w, **kwargs):
    """
    Fit the spatial lag model on a design matrix that already includes its
    intercept column.

    Parameters
    ----------
    X        : array
               (n, k) design matrix, intercept included
    y        : array
               (n,) response
    w        : Weights
               spatial weights aligned with the rows of X
    **kwargs : dict
               options passed on to :class:`SpatialLag`

    Returns
    -------
    SpatialLag
        the fitted estimator
    """
    return SpatialLag(w=w, add_constant=False, **kwargs).fit(X, y)
