"""Exceptions raised by the accumulation tasks."""

__all__ = ["NonFiniteResultError"]


class NonFiniteResultError(FloatingPointError):
    """A reduced accumulator contains NaN or infinite entries.

    The iteration that produced it is unusable; the caller is expected to
    shorten the step (line search) or abort.
    """
