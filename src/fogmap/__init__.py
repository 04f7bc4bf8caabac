"""Fog-of-war revealed-area engine."""

__version__ = "0.1.0"
