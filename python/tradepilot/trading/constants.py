"""Default constants used across the trading package.

Centralizes defaults so they can be imported from one place.
"""

DEFAULT_TRADER_ID = "default-trader"
DEFAULT_DECISION_INTERVAL_MS = 180_000
DEFAULT_MAX_POSITIONS = 5
DEFAULT_MAX_LEVERAGE_ALTCOIN = 20.0
DEFAULT_MAX_LEVERAGE_MAJOR = 50.0
DEFAULT_MAX_POSITION_SIZE_ALTCOIN_MULTIPLIER = 1.5
DEFAULT_MAX_POSITION_SIZE_MAJOR_MULTIPLIER = 10.0
DEFAULT_MAX_MARGIN_USAGE = 0.90
DEFAULT_MIN_RISK_REWARD_RATIO = 2.0
DEFAULT_MIN_LIQUIDITY_USD = 15_000_000.0
DEFAULT_HISTORICAL_CYCLES_COUNT = 20
DEFAULT_CONFIDENCE_THRESHOLD = 70.0
DEFAULT_RISK_PERCENTAGE = 2.0

MAJOR_SYMBOLS = ("BTCUSDT", "ETHUSDT", "BTCUSD", "ETHUSD")

# Orchestrator throttle and bounded history sizes
INTER_ORDER_DELAY_SECONDS = 0.5
RECENT_ACTIONS_LIMIT = 20
CYCLE_HISTORY_LIMIT = 100
CYCLE_HISTORY_VIEW_LIMIT = 50

# Reasoning-service call defaults
DEFAULT_PROVIDER_TIMEOUT_SECONDS = 30.0
DEFAULT_PROVIDER_TEMPERATURE = 0.1
DEFAULT_PROVIDER_MAX_TOKENS = 300
PROMPT_TOP_MARKETS = 5
PRIORITY_SENTINEL = 999

# Performance feedback
NO_LOSS_PROFIT_FACTOR = 999.0
AVOID_SYMBOL_WIN_RATE = 30.0
FAVOR_SYMBOL_WIN_RATE = 70.0
MIN_TRADES_FOR_SYMBOL_VERDICT = 3

DEFAULT_COIN_POOL = (
    "BTCUSDT",
    "ETHUSDT",
    "SOLUSDT",
    "BNBUSDT",
    "XRPUSDT",
    "DOGEUSDT",
    "ADAUSDT",
    "AVAXUSDT",
    "DOTUSDT",
    "LINKUSDT",
    "MATICUSDT",
    "LTCUSDT",
    "UNIUSDT",
    "ATOMUSDT",
    "ETCUSDT",
    "FILUSDT",
    "APTUSDT",
    "ARBUSDT",
    "OPUSDT",
)

ADVANCED_COIN_POOL_EXTRA = (
    "SUIUSDT",
    "SEIUSDT",
    "TIAUSDT",
    "INJUSDT",
    "NEARUSDT",
    "WLDUSDT",
    "PEPEUSDT",
    "WIFUSDT",
    "ORDIUSDT",
    "RNDRUSDT",
)

# Kline windows used for market samples
SHORT_INTERVAL = "3m"
LONG_INTERVAL = "4h"
SHORT_LOOKBACK = 100
LONG_LOOKBACK = 100
