"""Market data access for trading cycles."""

from .interfaces import BaseMarketDataService
from .market import MarketDataService

__all__ = ["BaseMarketDataService", "MarketDataService"]
