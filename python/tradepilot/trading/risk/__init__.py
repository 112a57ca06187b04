"""Risk gating for new and closing positions."""

from .manager import RiskManager

__all__ = ["RiskManager"]
