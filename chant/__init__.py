"""Tiered cell-voting tournament engine."""

__version__ = "0.1.0"
