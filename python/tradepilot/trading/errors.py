"""Exception types raised by trading collaborators.

The cycle orchestrator converts every one of these into data (failed
execution results, `wait` decisions or failed cycle records); they only
escape at construction time, e.g. for invalid configuration.
"""

from __future__ import annotations

from typing import Optional


class TradingError(Exception):
    """Base class for trading package errors."""


class ConfigurationError(TradingError):
    """Configuration is missing or inconsistent."""


class UnsupportedExchangeError(TradingError):
    """The requested exchange variant has no working implementation."""

    def __init__(self, exchange_id: str) -> None:
        self.exchange_id = exchange_id
        super().__init__(
            f"Exchange '{exchange_id}' is not supported yet. "
            "Use 'paper' or a ccxt-backed exchange such as 'binance'."
        )


class ExchangeError(TradingError):
    """An exchange call failed or returned an unusable payload."""


class ProviderError(TradingError):
    """A reasoning provider call failed; the resolver moves to the next one."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


class ProviderTimeoutError(ProviderError):
    """A reasoning provider did not answer within its timeout."""


class ResponseParseError(TradingError):
    """Reasoning-service output did not contain a usable JSON payload."""
