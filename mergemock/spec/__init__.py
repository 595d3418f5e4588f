"""Bellatrix consensus and builder API definitions."""

from . import constants

__all__ = ["constants"]
