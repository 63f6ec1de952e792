"""Deterministic constraint-validation and repair-governance engine for therapy scheduling."""

__version__ = "0.1.0"
