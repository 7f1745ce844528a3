"""Exception hierarchy shared across the place patching toolkit."""

from __future__ import annotations


class PlacePatchError(RuntimeError):
    """Base exception for failures raised by :mod:`placepatch`."""


__all__ = ["PlacePatchError"]
