"""Indicator computation over exchange candles."""

from .indicators import compute_long_horizon, compute_short_horizon

__all__ = ["compute_long_horizon", "compute_short_horizon"]
