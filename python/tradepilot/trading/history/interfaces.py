from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from ..models import (
    CycleRecord,
    EquitySnapshot,
    HistoricalFeedback,
    PositionSide,
    TradeRecord,
)

# Contracts for cycle logging and performance tracking (module-local abstract interfaces).


class BaseCycleRecorder(ABC):
    """Persists one CycleRecord per cycle invocation."""

    @abstractmethod
    def record(self, record: CycleRecord) -> None:
        """Persist a single cycle record."""
        raise NotImplementedError

    @abstractmethod
    def get_records(self) -> List[CycleRecord]:
        """Return the records kept by this recorder, oldest first."""
        raise NotImplementedError


class BasePerformanceTracker(ABC):
    """Trade ledger plus the statistics fed back into decisions."""

    @abstractmethod
    async def record_open_trade(self, trade: TradeRecord) -> int:
        """Store an opened trade and return its id."""
        raise NotImplementedError

    @abstractmethod
    async def record_close_trade(
        self,
        symbol: str,
        side: PositionSide,
        exit_price: float,
        order_id: Optional[str] = None,
        reason: str = "ai_decision",
        quantity: Optional[float] = None,
    ) -> Optional[TradeRecord]:
        """Close the latest open trade for symbol+side; None when there is none.

        A ``quantity`` below the open quantity closes that part only and
        leaves the remainder open.
        """
        raise NotImplementedError

    @abstractmethod
    async def record_equity_snapshot(
        self, equity: float, daily_pnl: float = 0.0, daily_pnl_percent: float = 0.0
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_historical_feedback(self, window: int) -> HistoricalFeedback:
        """Statistics over the last ``window`` closed trades (neutral when none)."""
        raise NotImplementedError

    @abstractmethod
    async def get_open_trades(self) -> List[TradeRecord]:
        raise NotImplementedError

    @abstractmethod
    async def get_open_trade(self, symbol: str, side: PositionSide) -> Optional[TradeRecord]:
        raise NotImplementedError

    @abstractmethod
    async def get_equity_history(self, limit: int = 100) -> List[EquitySnapshot]:
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError
