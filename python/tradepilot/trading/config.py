"""Build an AppConfig from the process environment.

The package bootstrap has already loaded the system and local ``.env``
files, so everything here reads plain environment variables.
"""

from __future__ import annotations

from typing import List, Optional

from loguru import logger

from tradepilot.utils.env import env_bool, env_float, env_int, env_str

from .constants import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_DECISION_INTERVAL_MS,
    DEFAULT_HISTORICAL_CYCLES_COUNT,
    DEFAULT_MAX_LEVERAGE_ALTCOIN,
    DEFAULT_MAX_LEVERAGE_MAJOR,
    DEFAULT_MAX_MARGIN_USAGE,
    DEFAULT_MAX_POSITION_SIZE_ALTCOIN_MULTIPLIER,
    DEFAULT_MAX_POSITION_SIZE_MAJOR_MULTIPLIER,
    DEFAULT_MAX_POSITIONS,
    DEFAULT_MIN_LIQUIDITY_USD,
    DEFAULT_MIN_RISK_REWARD_RATIO,
    DEFAULT_TRADER_ID,
)
from .decision.providers import DEFAULT_RAPIDAPI_HOST
from .models import (
    AppConfig,
    CoinSelectionMode,
    ExchangeConfig,
    MarginMode,
    ProviderConfig,
    ProviderKind,
    RiskConfig,
    TradingConfig,
    TradingMode,
)

CLI_PROXYAPI_DEFAULT_BASE_URL = "http://localhost:8317/v1"
OPENROUTER_DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"

# Older deployments used "mainnet" for live routing
_TRADING_MODE_ALIASES = {"mainnet": TradingMode.LIVE}


def _trading_mode() -> TradingMode:
    raw = (env_str("TRADING_MODE", TradingMode.PAPER.value) or "").lower()
    if raw in _TRADING_MODE_ALIASES:
        return _TRADING_MODE_ALIASES[raw]
    try:
        return TradingMode(raw)
    except ValueError as exc:
        raise ValueError(f"TRADING_MODE must be one of paper|testnet|live, got {raw!r}") from exc


def _coin_selection_mode() -> CoinSelectionMode:
    raw = (env_str("COIN_SELECTION_MODE", CoinSelectionMode.DEFAULT.value) or "").lower()
    try:
        return CoinSelectionMode(raw)
    except ValueError as exc:
        raise ValueError(f"COIN_SELECTION_MODE must be default|advanced, got {raw!r}") from exc


def load_provider_configs() -> List[ProviderConfig]:
    """Reasoning providers in fallback order.

    CLIProxyAPI (Claude) -> Gemini Pro -> OpenRouter -> RapidAPI -> Gemini
    Flash. Entries without a credential are dropped by AppConfig.
    """
    timeout = env_float("AI_TIMEOUT_SECONDS", 30.0)
    proxy_key = env_str("CLI_PROXYAPI_API_KEY")
    proxy_url = env_str("CLI_PROXYAPI_BASE_URL", CLI_PROXYAPI_DEFAULT_BASE_URL)
    gemini_key = env_str("GEMINI_API_KEY", proxy_key)
    gemini_url = env_str("GEMINI_BASE_URL", proxy_url)

    return [
        ProviderConfig(
            name="CLIProxyAPI (Claude)",
            api_key=proxy_key,
            base_url=proxy_url,
            model=env_str("CLI_PROXYAPI_MODEL", "gemini-claude-sonnet-4-5"),
            timeout_seconds=timeout,
        ),
        ProviderConfig(
            name="Gemini Pro",
            api_key=gemini_key,
            base_url=gemini_url,
            model=env_str("GEMINI_MODEL", "gemini-2.5-pro"),
            timeout_seconds=timeout,
        ),
        ProviderConfig(
            name="OpenRouter",
            api_key=env_str("OPENROUTER_API_KEY"),
            base_url=env_str("OPENROUTER_BASE_URL", OPENROUTER_DEFAULT_BASE_URL),
            model=env_str("OPENROUTER_MODEL", "openai/gpt-4o-mini"),
            timeout_seconds=timeout,
        ),
        ProviderConfig(
            name="RapidAPI",
            kind=ProviderKind.RAPIDAPI,
            api_key=env_str("RAPIDAPI_KEY"),
            base_url=f"https://{env_str('RAPIDAPI_HOST', DEFAULT_RAPIDAPI_HOST)}/",
            rapidapi_host=env_str("RAPIDAPI_HOST", DEFAULT_RAPIDAPI_HOST),
            json_mode=False,
            timeout_seconds=timeout,
        ),
        ProviderConfig(
            name="Gemini Flash",
            api_key=gemini_key,
            base_url=gemini_url,
            model=env_str("GEMINI_FLASH_MODEL", "gemini-2.5-flash"),
            timeout_seconds=timeout,
        ),
    ]


def _exchange_credentials(mode: TradingMode) -> tuple[Optional[str], Optional[str]]:
    if mode == TradingMode.TESTNET:
        key = env_str("BINANCE_TESTNET_API_KEY") or env_str("BINANCE_API_KEY")
        secret = env_str("BINANCE_TESTNET_API_SECRET") or env_str("BINANCE_API_SECRET")
        return key, secret
    return env_str("BINANCE_API_KEY"), env_str("BINANCE_API_SECRET")


def load_config_from_env() -> AppConfig:
    """Assemble the full application configuration from environment variables.

    Raises:
        ValueError: a variable is present but cannot be parsed
        pydantic.ValidationError: a parsed value violates a model constraint
    """
    mode = _trading_mode()
    default_exchange = "paper" if mode == TradingMode.PAPER else "binance"
    api_key, secret_key = _exchange_credentials(mode)

    trading = TradingConfig(
        trader_id=env_str("TRADER_ID", DEFAULT_TRADER_ID),
        decision_interval_ms=env_int("DECISION_INTERVAL_MS", DEFAULT_DECISION_INTERVAL_MS),
        min_liquidity_usd=env_float("MIN_LIQUIDITY_USD", DEFAULT_MIN_LIQUIDITY_USD),
        coin_selection_mode=_coin_selection_mode(),
        historical_cycles_count=env_int("HISTORICAL_CYCLES_COUNT", DEFAULT_HISTORICAL_CYCLES_COUNT),
        confidence_threshold=env_float("CONFIDENCE_THRESHOLD", DEFAULT_CONFIDENCE_THRESHOLD),
        allow_cycle_overlap=env_bool("ALLOW_CYCLE_OVERLAP", False),
        decision_log_dir=env_str("DECISION_LOG_DIR", "decision_logs"),
        performance_db_url=env_str("PERFORMANCE_DB_URL", "sqlite:///data/performance.db"),
    )
    risk = RiskConfig(
        max_positions=env_int("MAX_POSITIONS", DEFAULT_MAX_POSITIONS),
        max_leverage_altcoin=env_float("MAX_LEVERAGE_ALTCOIN", DEFAULT_MAX_LEVERAGE_ALTCOIN),
        max_leverage_major=env_float("MAX_LEVERAGE_MAJOR", DEFAULT_MAX_LEVERAGE_MAJOR),
        max_position_size_altcoin_multiplier=env_float(
            "MAX_POSITION_SIZE_ALTCOIN_MULTIPLIER", DEFAULT_MAX_POSITION_SIZE_ALTCOIN_MULTIPLIER
        ),
        max_position_size_major_multiplier=env_float(
            "MAX_POSITION_SIZE_MAJOR_MULTIPLIER", DEFAULT_MAX_POSITION_SIZE_MAJOR_MULTIPLIER
        ),
        max_margin_usage=env_float("MAX_MARGIN_USAGE", DEFAULT_MAX_MARGIN_USAGE),
        min_risk_reward_ratio=env_float("MIN_RISK_REWARD_RATIO", DEFAULT_MIN_RISK_REWARD_RATIO),
    )
    exchange = ExchangeConfig(
        exchange_id=(env_str("EXCHANGE_ID", default_exchange) or default_exchange).lower(),
        trading_mode=mode,
        api_key=api_key,
        secret_key=secret_key,
        margin_mode=MarginMode((env_str("MARGIN_MODE", MarginMode.CROSS.value) or "").lower()),
        fee_bps=env_float("PAPER_FEE_BPS", 4.0),
        initial_balance=env_float("PAPER_INITIAL_BALANCE", 10_000.0),
    )
    config = AppConfig(
        trading_config=trading,
        risk_config=risk,
        exchange_config=exchange,
        providers=load_provider_configs(),
    )
    logger.info(
        "Configuration loaded: trader={}, mode={}, exchange={}, providers={}",
        trading.trader_id,
        mode.value,
        exchange.exchange_id,
        [p.name for p in config.providers] or "none",
    )
    return config
