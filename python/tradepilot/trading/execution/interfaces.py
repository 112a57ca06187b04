from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from ..models import (
    AccountSnapshot,
    Candle,
    OpenOrder,
    OrderFill,
    Position,
    PositionSide,
)

# Contracts for exchange gateways (module-local abstract interfaces).
# An implementation may route to a real exchange or a simulated account.
# Symbols are always passed in compact form (e.g. BTCUSDT).


class BaseExchangeGateway(ABC):
    """Account, market and order access for one perpetual-futures venue."""

    name: str = "exchange"
    is_testnet: bool = False

    @abstractmethod
    async def get_account_info(self) -> AccountSnapshot:
        """Return equity, balances, margin usage and open positions."""
        raise NotImplementedError

    @abstractmethod
    async def get_positions(self) -> List[Position]:
        raise NotImplementedError

    @abstractmethod
    async def get_open_orders(self, symbol: Optional[str] = None) -> List[OpenOrder]:
        raise NotImplementedError

    @abstractmethod
    async def get_market_price(self, symbol: str) -> float:
        raise NotImplementedError

    @abstractmethod
    async def get_klines(self, symbol: str, interval: str, limit: int = 100) -> List[Candle]:
        """Return candles oldest first."""
        raise NotImplementedError

    @abstractmethod
    async def get_open_interest(self, symbol: str) -> float:
        """Return open interest in quote currency (USD)."""
        raise NotImplementedError

    @abstractmethod
    async def get_funding_rate(self, symbol: str) -> float:
        raise NotImplementedError

    @abstractmethod
    async def open_position(
        self,
        symbol: str,
        side: PositionSide,
        quantity: float,
        leverage: float,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
    ) -> OrderFill:
        """Open (or add to) a position with a market order.

        Stop-loss and take-profit legs are placed as reduce-only orders when
        given. Raises :class:`ExchangeError` when the order is rejected.
        """
        raise NotImplementedError

    @abstractmethod
    async def close_position(
        self, symbol: str, side: PositionSide, quantity: Optional[float] = None
    ) -> OrderFill:
        """Close the position (fully when ``quantity`` is None).

        Resting orders for the symbol are cancelled first. Raises
        :class:`ExchangeError` when there is nothing to close.
        """
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """Release network clients and other held resources."""
        raise NotImplementedError
