"""Exception types raised by the validation pipeline."""


class ScaleValidationError(Exception):
    """Base class for pipeline failures."""


class DataShapeError(ScaleValidationError, ValueError):
    """Missing, misnamed or non-numeric columns in an input table."""


class DegenerateDataError(ScaleValidationError, ValueError):
    """Input that makes a statistic undefined (e.g. a zero-variance item)."""


class ModelFitError(ScaleValidationError, RuntimeError):
    """A model failed to converge or produced an inadmissible solution."""
