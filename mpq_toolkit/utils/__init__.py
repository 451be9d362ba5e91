"""Shared utilities."""

from .binary import BinaryReader

__all__ = ["BinaryReader"]
