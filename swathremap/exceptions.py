"""
Exception hierarchy for swathremap.

All package exceptions subclass ``SwathRemapError`` and the closest built-in
exception, so callers may catch either the package-specific class or the
familiar built-in one.
"""


class SwathRemapError(Exception):
    """Base exception for all swathremap errors."""


class ValidationError(SwathRemapError, ValueError):
    """Invalid input data, parameters, or encodings.

    Raised for unknown method or mode names, rank mismatches, too few
    samples for a polynomial fit, and malformed persisted encodings.
    """


class EstimatorError(SwathRemapError, ArithmeticError):
    """A polynomial least-squares system could not be solved.

    Raised for singular or rank-deficient systems and non-finite inputs.
    Callers building many local fits catch this and mark the affected
    region as unusable rather than aborting.
    """


class PartitionError(SwathRemapError, RuntimeError):
    """A spatial partition could not be constructed.

    Raised for a degenerate bounding box (an axis shorter than one pixel)
    or a box whose physical size cannot be determined.
    """


class GeolocationError(SwathRemapError, RuntimeError):
    """Coordinate transformation failure.

    Raised when a valid earth location is required but the transform
    cannot provide one.
    """
