"""Exception types raised by histboost."""

from __future__ import annotations

__all__ = [
    "HistBoostError",
    "InvalidInputError",
    "ResourceExhaustionError",
]


class HistBoostError(Exception):
    """Base class for histboost errors."""


class InvalidInputError(HistBoostError, ValueError):
    """Malformed bins, empty data or mismatched gradient/hessian vectors."""


class ResourceExhaustionError(HistBoostError, RuntimeError):
    """Accelerator unavailable or out of memory.

    Only raised by accelerated histogram builders. :class:`~histboost.grower.TreeGrower`
    recovers from it by switching to the CPU builder.
    """
