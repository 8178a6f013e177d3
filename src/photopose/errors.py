"""Exceptions raised by the photometric tracker."""


class PhotoposeError(Exception):
    """Base class for tracker errors."""


class DegenerateInputError(PhotoposeError, ValueError):
    """The reference point set cannot constrain a pose (e.g. it is empty)."""


class UnsupportedParameterError(PhotoposeError, TypeError):
    """Pose parameters have a type the residual model cannot evaluate."""
