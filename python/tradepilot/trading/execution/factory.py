"""Factory for creating exchange gateways based on configuration."""

from __future__ import annotations

from loguru import logger

from ..errors import ConfigurationError
from ..models import ExchangeConfig, TradingMode
from .ccxt_trading import CCXTExchangeGateway
from .exchanges import UNSUPPORTED_GATEWAYS
from .interfaces import BaseExchangeGateway
from .paper_trading import PaperExchangeGateway


def create_exchange_gateway(config: ExchangeConfig) -> BaseExchangeGateway:
    """Create an exchange gateway based on exchange configuration.

    Args:
        config: Exchange configuration with trading mode and credentials

    Returns:
        Gateway instance (paper or ccxt-backed). The ccxt client connects
        lazily on first use.

    Raises:
        UnsupportedExchangeError: for declared but unimplemented venues
        ConfigurationError: if credentials are missing outside paper mode
    """
    exchange_id = (config.exchange_id or "").strip().lower()

    unsupported = UNSUPPORTED_GATEWAYS.get(exchange_id)
    if unsupported is not None:
        # Raises UnsupportedExchangeError
        return unsupported()

    if config.trading_mode == TradingMode.PAPER or exchange_id in ("", "paper"):
        logger.info(
            "Using paper exchange (balance={}, fee_bps={})",
            config.initial_balance,
            config.fee_bps,
        )
        return PaperExchangeGateway(
            initial_balance=config.initial_balance, fee_bps=config.fee_bps
        )

    if not config.api_key or not config.secret_key:
        raise ConfigurationError(
            f"API credentials are required for {config.trading_mode.value} trading on "
            f"{exchange_id}. Please provide api_key and secret_key."
        )

    gateway = CCXTExchangeGateway(
        exchange_id=exchange_id,
        api_key=config.api_key,
        secret_key=config.secret_key,
        testnet=config.testnet,
        margin_mode=config.margin_mode.value,
    )
    logger.info("Created {}", gateway)
    return gateway
