"""Utility helpers."""

from .observable import Observable

__all__ = ["Observable"]
