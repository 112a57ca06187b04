"""Exchange metadata and the venues that are declared but not implemented."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel

from ..errors import UnsupportedExchangeError
from .interfaces import BaseExchangeGateway


class ExchangeMetadata(BaseModel):
    """Metadata for a known exchange.

    Attributes:
        id: exchange identifier used in configuration
        name: display name
        implemented: whether a working gateway exists
        testnet_supported: whether testnet/sandbox mode is supported
        notes: additional notes or warnings
    """

    id: str
    name: str
    implemented: bool = True
    testnet_supported: bool = False
    notes: Optional[str] = None


KNOWN_EXCHANGES: Dict[str, ExchangeMetadata] = {
    "paper": ExchangeMetadata(
        id="paper",
        name="Paper account",
        notes="In-memory simulation, no credentials required",
    ),
    "binance": ExchangeMetadata(
        id="binance",
        name="Binance USDT-M Futures",
        testnet_supported=True,
    ),
    "bybit": ExchangeMetadata(id="bybit", name="Bybit", testnet_supported=True),
    "hyperliquid": ExchangeMetadata(
        id="hyperliquid",
        name="Hyperliquid",
        implemented=False,
        notes="Wallet-signed API, not implemented",
    ),
    "aster": ExchangeMetadata(
        id="aster",
        name="Aster",
        implemented=False,
        notes="Not implemented",
    ),
}


def get_exchange_metadata(exchange_id: str) -> Optional[ExchangeMetadata]:
    return KNOWN_EXCHANGES.get(exchange_id.lower())


def list_implemented_exchanges() -> List[str]:
    return [meta.id for meta in KNOWN_EXCHANGES.values() if meta.implemented]


class _UnsupportedExchangeGateway(BaseExchangeGateway):
    """Placeholder for venues without an implementation; construction fails."""

    exchange_id: str = ""

    def __init__(self, *args, **kwargs) -> None:
        raise UnsupportedExchangeError(self.exchange_id)

    # The abstract methods below are never reachable.
    async def get_account_info(self):  # pragma: no cover
        raise UnsupportedExchangeError(self.exchange_id)

    async def get_positions(self):  # pragma: no cover
        raise UnsupportedExchangeError(self.exchange_id)

    async def get_open_orders(self, symbol=None):  # pragma: no cover
        raise UnsupportedExchangeError(self.exchange_id)

    async def get_market_price(self, symbol):  # pragma: no cover
        raise UnsupportedExchangeError(self.exchange_id)

    async def get_klines(self, symbol, interval, limit=100):  # pragma: no cover
        raise UnsupportedExchangeError(self.exchange_id)

    async def get_open_interest(self, symbol):  # pragma: no cover
        raise UnsupportedExchangeError(self.exchange_id)

    async def get_funding_rate(self, symbol):  # pragma: no cover
        raise UnsupportedExchangeError(self.exchange_id)

    async def open_position(self, symbol, side, quantity, leverage, stop_loss=None, take_profit=None):  # pragma: no cover
        raise UnsupportedExchangeError(self.exchange_id)

    async def close_position(self, symbol, side, quantity=None):  # pragma: no cover
        raise UnsupportedExchangeError(self.exchange_id)

    async def close(self) -> None:  # pragma: no cover
        return None


class HyperliquidExchangeGateway(_UnsupportedExchangeGateway):
    exchange_id = "hyperliquid"


class AsterExchangeGateway(_UnsupportedExchangeGateway):
    exchange_id = "aster"


UNSUPPORTED_GATEWAYS = {
    "hyperliquid": HyperliquidExchangeGateway,
    "aster": AsterExchangeGateway,
}
