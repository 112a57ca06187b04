"""Exchange gateways: simulated account, ccxt venues and the factory."""

from .ccxt_trading import CCXTExchangeGateway
from .exchanges import AsterExchangeGateway, HyperliquidExchangeGateway
from .factory import create_exchange_gateway
from .interfaces import BaseExchangeGateway
from .paper_trading import PaperExchangeGateway

__all__ = [
    "AsterExchangeGateway",
    "BaseExchangeGateway",
    "CCXTExchangeGateway",
    "HyperliquidExchangeGateway",
    "PaperExchangeGateway",
    "create_exchange_gateway",
]
