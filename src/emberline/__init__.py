"""Emberline — grid risk scoring and dispatch for wildland-urban interface management."""

__version__ = "0.1.0"
