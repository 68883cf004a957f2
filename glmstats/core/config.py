"""Numerical constants and runtime options for task execution."""

from __future__ import annotations

import contextlib
from contextvars import ContextVar

__all__ = [
    "DEFAULT_SPLIT_EVERY",
    "PROB_FLOOR",
    "VARIANCE_FLOOR",
    "get_option",
    "option_context",
    "set_option",
]

VARIANCE_FLOOR = 1e-6
PROB_FLOOR = 1e-16
DEFAULT_SPLIT_EVERY = 8

_NONFINITE_POLICIES = ("raise", "warn")

_options: dict[str, ContextVar] = {
    "n_jobs": ContextVar("glmstats_n_jobs", default=1),
    "split_every": ContextVar("glmstats_split_every", default=DEFAULT_SPLIT_EVERY),
    "on_nonfinite": ContextVar("glmstats_on_nonfinite", default="raise"),
}


def _validate_option(name, value):
    if name not in _options:
        raise ValueError(f"Unknown option {name!r}. Choose from {sorted(_options)}.")
    if name == "n_jobs":
        if not isinstance(value, int) or value == 0 or value < -1:
            raise ValueError(f"n_jobs must be -1 or a positive integer, got {value!r}.")
    elif name == "split_every":
        if not isinstance(value, int) or value < 2:
            raise ValueError(f"split_every must be an integer >= 2, got {value!r}.")
    elif name == "on_nonfinite":
        value = str(value).lower()
        if value not in _NONFINITE_POLICIES:
            raise ValueError(f"Unknown on_nonfinite policy {value!r}. Choose 'raise' or 'warn'.")
    return value


def get_option(name):
    """Return the current value of a runtime option.

    Parameters
    ----------
    name : {"n_jobs", "split_every", "on_nonfinite"}
        Option name.

    Returns
    -------
    object
        The value visible in the current context.
    """
    if name not in _options:
        raise ValueError(f"Unknown option {name!r}. Choose from {sorted(_options)}.")
    return _options[name].get()


def set_option(name, value):
    """Set a runtime option for the current context.

    Parameters
    ----------
    name : {"n_jobs", "split_every", "on_nonfinite"}
        Option name.
    value : object
        New value. ``n_jobs`` is -1 (all cores) or a positive integer,
        ``split_every`` an integer >= 2, ``on_nonfinite`` one of
        ``"raise"`` or ``"warn"``.
    """
    value = _validate_option(name, value)
    _options[name].set(value)


@contextlib.contextmanager
def option_context(**kwargs):
    """Context manager that temporarily sets runtime options.

    Previous values are restored when the context exits, even if an
    exception is raised. Values set here are inherited by every
    ``copy_context()`` snapshot, so they reach the worker threads of
    :func:`~glmstats.core.parallel.parallel_map`.

    Parameters
    ----------
    **kwargs
        Option names and values, as accepted by :func:`set_option`.
    """
    tokens = []
    try:
        for name, value in kwargs.items():
            value = _validate_option(name, value)
            tokens.append((name, _options[name].set(value)))
        yield
    finally:
        for name, token in reversed(tokens):
            _options[name].reset(token)
