"""
Polynomial estimators.

This module contains least squares polynomial approximations of functions of
one or two variables:
- UnivariateEstimator: f(x) as a polynomial in x
- BivariateEstimator: f(x, y) as a polynomial in x and y

Fits use an exact solve when the number of samples equals the number of
terms and a rank-truncated singular value decomposition when the system is
overdetermined. A fit that cannot be solved raises EstimatorError so that
callers can discard it.
"""

from abc import ABC, abstractmethod
from typing import Sequence, Union

import numpy as np
from numpy.polynomial import polynomial as P

from swathremap.exceptions import EstimatorError, ValidationError


def solve_least_squares(matrix: np.ndarray, values: np.ndarray) -> np.ndarray:
    """
    Solve ``matrix @ x = values`` exactly or in the least squares sense.

    Parameters
    ----------
    matrix : np.ndarray
        The m x n design matrix with m >= n.
    values : np.ndarray
        The m function values.

    Returns
    -------
    np.ndarray
        The n coefficients. For an overdetermined system this is the minimum
        norm least squares solution using only the singular directions up to
        the numerical rank of the matrix.

    Raises
    ------
    ValidationError
        If there are fewer samples than unknowns.
    EstimatorError
        If the system is singular or produces non-finite coefficients.
    """
    m, n = matrix.shape
    if m < n:
        raise ValidationError(f"Need at least {n} samples to fit {n} terms, got {m}")
    if not (np.all(np.isfinite(matrix)) and np.all(np.isfinite(values))):
        raise EstimatorError("Cannot fit polynomial to non-finite samples")

    if m == n:
        try:
            if np.linalg.cond(matrix) > 1.0 / np.finfo(float).eps:
                raise EstimatorError("Matrix is singular")
            coefs = np.linalg.solve(matrix, values)
        except np.linalg.LinAlgError as e:
            raise EstimatorError(f"Matrix is singular: {e}") from e
    else:
        try:
            u, s, vt = np.linalg.svd(matrix, full_matrices=False)
        except np.linalg.LinAlgError as e:
            raise EstimatorError(f"Singular value decomposition failed: {e}") from e
        tol = max(m, n) * np.finfo(float).eps * (s[0] if s.size else 0.0)
        rank = int(np.sum(s > tol))
        if rank == 0:
            raise EstimatorError("Matrix has zero rank")
        c = u[:, :rank].T @ values
        coefs = vt[:rank].T @ (c / s[:rank])

    if not np.all(np.isfinite(coefs)):
        raise EstimatorError("Polynomial fit produced non-finite coefficients")
    return coefs


class BaseEstimator(ABC):
    """
    Abstract base class for polynomial estimators.

    All estimators hold their coefficients in ``coefficients`` and can be
    rebuilt from ``get_encoding()`` without refitting.
    """

    def __init__(self, degree: int):
        if degree < 0:
            raise ValidationError(f"Degree must be non-negative, got {degree}")
        self.degree = degree
        self.coefficients = None

    @property
    def terms(self) -> int:
        return self.degree + 1

    @abstractmethod
    def evaluate(self, variables: Sequence[float]) -> float:
        """
        Evaluate the polynomial.

        Parameters
        ----------
        variables : sequence of float
            One value per independent variable.

        Returns
        -------
        float
            The estimated function value.
        """
        pass

    @abstractmethod
    def evaluate_many(self, *variables: np.ndarray) -> np.ndarray:
        """Evaluate the polynomial at arrays of independent variable values."""
        pass

    def get_encoding(self) -> np.ndarray:
        """Get the coefficients flattened in row-major order."""
        return np.array(self.coefficients, dtype=float).ravel()

    @classmethod
    @abstractmethod
    def from_encoding(cls, encoding: Union[Sequence[float], np.ndarray]) -> "BaseEstimator":
        """Recreate an estimator from its encoding."""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(degree={self.degree})"


class UnivariateEstimator(BaseEstimator):
    """
    A polynomial f(x) = sum of c[i] * x^i fitted to samples of x and f.
    """

    def __init__(self, x: Sequence[float], f: Sequence[float], degree: int = 2):
        super().__init__(degree)
        x = np.asarray(x, dtype=float).ravel()
        f = np.asarray(f, dtype=float).ravel()
        if x.size != f.size:
            raise ValidationError(f"Got {x.size} variable values for {f.size} function values")
        matrix = np.vander(x, self.terms, increasing=True)
        self.coefficients = solve_least_squares(matrix, f)

    def evaluate(self, variables):
        x = variables if np.isscalar(variables) else variables[0]
        c = self.coefficients
        if self.degree == 2:
            return float(c[0] + x * (c[1] + x * c[2]))
        return float(P.polyval(x, c))

    def evaluate_many(self, x):
        return P.polyval(np.asarray(x, dtype=float), self.coefficients)

    @classmethod
    def from_encoding(cls, encoding):
        coefs = np.asarray(encoding, dtype=float).ravel()
        if coefs.size == 0:
            raise ValidationError("Empty estimator encoding")
        est = cls.__new__(cls)
        BaseEstimator.__init__(est, coefs.size - 1)
        est.coefficients = coefs
        return est


class BivariateEstimator(BaseEstimator):
    """
    A polynomial f(x, y) = sum of E[i, j] * x^i * y^j fitted to samples.

    With the default degree of 2 there are 9 terms, so at least 9 samples
    are needed. Exactly 9 samples give an exact fit.

    Parameters
    ----------
    x, y : sequence of float
        Independent variable values.
    f : sequence of float
        Function values.
    degree : int, optional
        Maximum power of each variable, 2 by default.
    """

    def __init__(self, x: Sequence[float], y: Sequence[float],
                 f: Sequence[float], degree: int = 2):
        super().__init__(degree)
        x = np.asarray(x, dtype=float).ravel()
        y = np.asarray(y, dtype=float).ravel()
        f = np.asarray(f, dtype=float).ravel()
        if not (x.size == y.size == f.size):
            raise ValidationError(
                f"Variable and function arrays differ in length: {x.size}, {y.size}, {f.size}"
            )
        # Column i * terms + j holds x^i * y^j
        matrix = (np.vander(x, self.terms, increasing=True)[:, :, None] *
                  np.vander(y, self.terms, increasing=True)[:, None, :]).reshape(x.size, -1)
        coefs = solve_least_squares(matrix, f)
        self.coefficients = coefs.reshape(self.terms, self.terms)

    def evaluate(self, variables):
        x, y = variables[0], variables[1]
        if self.degree == 2:
            c = self.coefficients
            return float((c[0, 0] + y * (c[0, 1] + y * c[0, 2])) +
                         x * (c[1, 0] + y * (c[1, 1] + y * c[1, 2])) +
                         x * x * (c[2, 0] + y * (c[2, 1] + y * c[2, 2])))
        return float(P.polyval2d(x, y, self.coefficients))

    def evaluate_many(self, x, y):
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        if self.degree == 2:
            c = self.coefficients
            return ((c[0, 0] + y * (c[0, 1] + y * c[0, 2])) +
                    x * (c[1, 0] + y * (c[1, 1] + y * c[1, 2])) +
                    x * x * (c[2, 0] + y * (c[2, 1] + y * c[2, 2])))
        return P.polyval2d(x, y, self.coefficients)

    @classmethod
    def from_encoding(cls, encoding):
        coefs = np.asarray(encoding, dtype=float).ravel()
        terms = int(round(np.sqrt(coefs.size)))
        if terms == 0 or terms * terms != coefs.size:
            raise ValidationError(
                f"Bivariate encoding length must be a square number, got {coefs.size}"
            )
        est = cls.__new__(cls)
        BaseEstimator.__init__(est, terms - 1)
        est.coefficients = coefs.reshape(terms, terms)
        return est
