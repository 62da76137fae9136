"""Exception hierarchy for scpipe.

Stages validate their preconditions on entry and raise one of these
instead of letting a generic numeric error (or a silent NaN) escape.
"""


class ScpipeError(Exception):
    """Base class for all pipeline errors."""

    pass


class ConfigurationError(ScpipeError):
    """Raised when parameters are invalid for the data at hand.

    Examples: QC thresholds that exclude every cell, more principal
    components than available dimensions, an unknown method name.
    """

    pass


class ShapeMismatchError(ScpipeError):
    """Raised when matrix and metadata dimensions disagree."""

    pass


class NumericDegeneracyError(ScpipeError):
    """Raised on zero-variance or non-finite input to a stage that needs variance."""

    pass
