"""
Algorithms module for swathremap.

This module contains the numerical building blocks of the resamplers:
- Polynomial estimators fitted by least squares (one or two variables)
"""

from .estimators import (
    BaseEstimator,
    BivariateEstimator,
    UnivariateEstimator,
    solve_least_squares
)

__all__ = [
    'BaseEstimator',
    'BivariateEstimator',
    'UnivariateEstimator',
    'solve_least_squares'
]
