from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from ..models import CoinSelectionMode, MarketSample, Position

# Contracts for market data (module-local abstract interfaces).
# Implementations turn exchange candles into per-symbol MarketSamples.


class BaseMarketDataService(ABC):
    """Market samples for open positions and for ranked trade candidates."""

    @abstractmethod
    async def get_samples_for_positions(self, positions: List[Position]) -> List[MarketSample]:
        """Return one sample per distinct position symbol (failures dropped)."""
        raise NotImplementedError

    @abstractmethod
    async def get_ranked_samples(
        self,
        mode: CoinSelectionMode,
        min_liquidity_usd: Optional[float] = None,
    ) -> List[MarketSample]:
        """Return liquid candidates sorted by opportunity score, best first."""
        raise NotImplementedError
