from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tradepilot.utils.ts import get_current_timestamp_ms

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
    DEFAULT_PROVIDER_MAX_TOKENS,
    DEFAULT_PROVIDER_TEMPERATURE,
    DEFAULT_PROVIDER_TIMEOUT_SECONDS,
    DEFAULT_TRADER_ID,
    INTER_ORDER_DELAY_SECONDS,
    MAJOR_SYMBOLS,
)


class TradingMode(str, Enum):
    """Where orders go: simulated account, exchange testnet or mainnet."""

    PAPER = "paper"
    TESTNET = "testnet"
    LIVE = "live"


class PositionSide(str, Enum):
    """Semantic side of a derivatives position."""

    LONG = "LONG"
    SHORT = "SHORT"


class MarginMode(str, Enum):
    """Margin mode for leverage trading."""

    ISOLATED = "isolated"
    CROSS = "cross"


class CoinSelectionMode(str, Enum):
    """Which candidate universe the market-data service scans."""

    DEFAULT = "default"
    ADVANCED = "advanced"


class Trend(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class EngineState(str, Enum):
    """Lifecycle state of the trading engine. There is no paused state."""

    RUNNING = "running"
    STOPPED = "stopped"


class TradeStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ProviderKind(str, Enum):
    """Wire format spoken by a reasoning provider."""

    OPENAI_COMPATIBLE = "openai_compatible"
    RAPIDAPI = "rapidapi"


# ---------------------------------------------------------------------------
# Configuration


class RiskConfig(BaseModel):
    """Static limits the risk manager is constructed with."""

    max_positions: int = Field(
        default=DEFAULT_MAX_POSITIONS,
        description="Maximum number of concurrent positions",
        gt=0,
    )
    max_leverage_altcoin: float = Field(
        default=DEFAULT_MAX_LEVERAGE_ALTCOIN,
        description="Leverage cap for symbols outside the major set",
        gt=0,
    )
    max_leverage_major: float = Field(
        default=DEFAULT_MAX_LEVERAGE_MAJOR,
        description="Leverage cap for major symbols (BTC/ETH)",
        gt=0,
    )
    max_position_size_altcoin_multiplier: float = Field(
        default=DEFAULT_MAX_POSITION_SIZE_ALTCOIN_MULTIPLIER,
        description="Max notional of one altcoin position as a multiple of equity",
        gt=0,
    )
    max_position_size_major_multiplier: float = Field(
        default=DEFAULT_MAX_POSITION_SIZE_MAJOR_MULTIPLIER,
        description="Max notional of one major position as a multiple of equity",
        gt=0,
    )
    max_margin_usage: float = Field(
        default=DEFAULT_MAX_MARGIN_USAGE,
        description="Ceiling for margin used / equity (0-1]",
        gt=0,
        le=1,
    )
    min_risk_reward_ratio: float = Field(
        default=DEFAULT_MIN_RISK_REWARD_RATIO,
        description="Minimum take-profit distance over stop-loss distance",
        ge=0,
    )
    major_symbols: List[str] = Field(
        default_factory=lambda: list(MAJOR_SYMBOLS),
        description="Symbols treated as majors for leverage and size caps",
    )

    @field_validator("major_symbols")
    @classmethod
    def _upper_symbols(cls, v: List[str]) -> List[str]:
        return [s.strip().upper() for s in v if s and s.strip()]


class ExchangeConfig(BaseModel):
    """Exchange configuration for trading."""

    exchange_id: str = Field(
        default="paper",
        description="Exchange identifier ('paper', 'binance', 'hyperliquid', 'aster', ...)",
    )
    trading_mode: TradingMode = Field(
        default=TradingMode.PAPER, description="Where orders are routed"
    )
    api_key: Optional[str] = Field(
        default=None, description="Exchange API key (required outside paper mode)"
    )
    secret_key: Optional[str] = Field(
        default=None, description="Exchange secret key (required outside paper mode)"
    )
    margin_mode: MarginMode = Field(
        default=MarginMode.CROSS, description="Margin mode: isolated or cross"
    )
    fee_bps: float = Field(
        default=4.0,
        description="Trading fee in basis points applied by the paper account",
        ge=0,
    )
    initial_balance: float = Field(
        default=10_000.0,
        description="Starting wallet balance for the paper account (USDT)",
        gt=0,
    )

    @property
    def testnet(self) -> bool:
        return self.trading_mode == TradingMode.TESTNET


class ProviderConfig(BaseModel):
    """One reasoning-service endpoint in the fallback chain."""

    name: str = Field(..., description="Display name used in logs and errors")
    kind: ProviderKind = Field(default=ProviderKind.OPENAI_COMPATIBLE)
    api_key: Optional[str] = Field(default=None, description="Provider credential")
    base_url: str = Field(..., description="Endpoint base URL")
    model: Optional[str] = Field(default=None, description="Model identifier")
    timeout_seconds: float = Field(default=DEFAULT_PROVIDER_TIMEOUT_SECONDS, gt=0)
    temperature: float = Field(default=DEFAULT_PROVIDER_TEMPERATURE, ge=0)
    max_tokens: int = Field(default=DEFAULT_PROVIDER_MAX_TOKENS, gt=0)
    json_mode: bool = Field(
        default=True, description="Request response_format=json_object"
    )
    rapidapi_host: Optional[str] = Field(
        default=None, description="x-rapidapi-host header for RapidAPI providers"
    )

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


class TradingConfig(BaseModel):
    """Cycle orchestration settings."""

    trader_id: str = Field(default=DEFAULT_TRADER_ID, description="Trader identifier")
    decision_interval_ms: int = Field(
        default=DEFAULT_DECISION_INTERVAL_MS,
        description="Milliseconds between cycle starts",
        gt=0,
    )
    min_liquidity_usd: float = Field(
        default=DEFAULT_MIN_LIQUIDITY_USD,
        description="Minimum open interest (USD) for a symbol to be considered",
        ge=0,
    )
    coin_selection_mode: CoinSelectionMode = Field(default=CoinSelectionMode.DEFAULT)
    historical_cycles_count: int = Field(
        default=DEFAULT_HISTORICAL_CYCLES_COUNT,
        description="Closed trades considered for historical feedback",
        gt=0,
    )
    confidence_threshold: float = Field(
        default=DEFAULT_CONFIDENCE_THRESHOLD,
        description="Minimum confidence (percent) for open decisions",
        ge=0,
        le=100,
    )
    allow_cycle_overlap: bool = Field(
        default=False,
        description="Start a new cycle on a timer tick even if one is still in flight",
    )
    inter_order_delay_seconds: float = Field(
        default=INTER_ORDER_DELAY_SECONDS,
        description="Pause between consecutive order submissions",
        ge=0,
    )
    decision_log_dir: str = Field(
        default="decision_logs", description="Directory for per-cycle JSON records"
    )
    performance_db_url: str = Field(
        default="sqlite:///data/performance.db",
        description="SQLAlchemy URL of the performance database",
    )

    @field_validator("trader_id")
    @classmethod
    def _validate_trader_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("trader_id must not be empty")
        return v


class AppConfig(BaseModel):
    """Full configuration of one trader process."""

    trading_config: TradingConfig = Field(default_factory=TradingConfig)
    risk_config: RiskConfig = Field(default_factory=RiskConfig)
    exchange_config: ExchangeConfig = Field(default_factory=ExchangeConfig)
    providers: List[ProviderConfig] = Field(
        default_factory=list, description="Reasoning providers in priority order"
    )

    @model_validator(mode="after")
    def _drop_uncredentialed_providers(self) -> "AppConfig":
        self.providers = [p for p in self.providers if p.has_credentials]
        return self


# ---------------------------------------------------------------------------
# Account and market state


class Position(BaseModel):
    """Open derivatives position as reported by the exchange."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    side: PositionSide
    quantity: float = Field(..., ge=0)
    entry_price: float = Field(..., ge=0)
    current_price: float = Field(..., ge=0)
    leverage: float = Field(default=1.0, gt=0)
    unrealized_pnl: float = 0.0
    unrealized_pnl_percent: float = 0.0
    liquidation_price: Optional[float] = None
    margin_mode: MarginMode = MarginMode.CROSS
    open_time: Optional[int] = Field(default=None, description="Open time in ms")

    @property
    def notional(self) -> float:
        return self.quantity * self.current_price

    @property
    def margin(self) -> float:
        return self.notional / self.leverage if self.leverage else self.notional


class AccountSnapshot(BaseModel):
    """Account state captured once per cycle (and again after execution)."""

    model_config = ConfigDict(frozen=True)

    total_equity: float = Field(..., description="Wallet balance + unrealized P&L")
    available_balance: float = 0.0
    total_margin_used: float = 0.0
    margin_usage_ratio: float = Field(
        default=0.0, description="Margin used divided by equity (0-1)"
    )
    total_unrealized_pnl: float = 0.0
    positions: List[Position] = Field(default_factory=list)
    daily_pnl: Optional[float] = None
    timestamp: int = Field(default_factory=get_current_timestamp_ms)

    @property
    def total_positions(self) -> int:
        return len(self.positions)

    def find_position(self, symbol: str, side: PositionSide) -> Optional[Position]:
        for pos in self.positions:
            if pos.symbol == symbol and pos.side == side and pos.quantity > 0:
                return pos
        return None


class Candle(BaseModel):
    """Aggregated OHLCV candle for a fixed interval."""

    ts: int = Field(..., description="Candle open time in ms")
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


class OpenOrder(BaseModel):
    """Resting order on the exchange (stop-loss / take-profit legs included)."""

    order_id: str
    symbol: str
    side: str
    type: str
    price: Optional[float] = None
    stop_price: Optional[float] = None
    quantity: Optional[float] = None
    reduce_only: bool = False

    @property
    def is_take_profit(self) -> bool:
        return "take_profit" in self.type.lower()


class OrderFill(BaseModel):
    """Exchange acknowledgement of a filled market order."""

    order_id: str
    symbol: str
    side: PositionSide
    price: float = Field(..., description="Average execution price")
    quantity: float = Field(..., description="Executed base-asset quantity")
    fee: float = 0.0
    timestamp: int = Field(default_factory=get_current_timestamp_ms)


class ShortHorizonIndicators(BaseModel):
    """3-minute indicator set."""

    rsi7: Optional[float] = None
    ema20: Optional[float] = None
    macd: Optional[float] = None
    macd_signal: Optional[float] = None
    macd_histogram: Optional[float] = None
    volume: Optional[float] = None
    price_sequence: List[float] = Field(default_factory=list)
    trend: Trend = Trend.NEUTRAL


class LongHorizonIndicators(BaseModel):
    """4-hour indicator set."""

    rsi14: Optional[float] = None
    ema20: Optional[float] = None
    ema50: Optional[float] = None
    atr: Optional[float] = None
    trend: Trend = Trend.NEUTRAL


class MarketSample(BaseModel):
    """Per-symbol market view handed to the decision resolver."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    price: float
    change_24h_percent: float = 0.0
    volume_24h: float = 0.0
    open_interest: Optional[float] = None
    funding_rate: Optional[float] = None
    short_horizon: ShortHorizonIndicators = Field(
        default_factory=ShortHorizonIndicators
    )
    long_horizon: LongHorizonIndicators = Field(default_factory=LongHorizonIndicators)
    volatility: Optional[float] = None
    trend_strength: Optional[float] = None
    volume_surge: bool = False
    opportunity_score: Optional[float] = None
    timestamp: int = Field(default_factory=get_current_timestamp_ms)


# ---------------------------------------------------------------------------
# Decisions and execution


class TradeDecisionAction(str, Enum):
    """Position-oriented actions a reasoning service may request.

    Semantics:
    - OPEN_LONG / OPEN_SHORT: open a new position on the symbol
    - CLOSE_LONG / CLOSE_SHORT: close the existing position
    - HOLD: keep current positions as they are
    - WAIT: stay flat this cycle
    """

    OPEN_LONG = "open_long"
    OPEN_SHORT = "open_short"
    CLOSE_LONG = "close_long"
    CLOSE_SHORT = "close_short"
    HOLD = "hold"
    WAIT = "wait"

    @property
    def is_open(self) -> bool:
        return self in (TradeDecisionAction.OPEN_LONG, TradeDecisionAction.OPEN_SHORT)

    @property
    def is_close(self) -> bool:
        return self in (
            TradeDecisionAction.CLOSE_LONG,
            TradeDecisionAction.CLOSE_SHORT,
        )

    @property
    def position_side(self) -> Optional[PositionSide]:
        if self in (TradeDecisionAction.OPEN_LONG, TradeDecisionAction.CLOSE_LONG):
            return PositionSide.LONG
        if self in (TradeDecisionAction.OPEN_SHORT, TradeDecisionAction.CLOSE_SHORT):
            return PositionSide.SHORT
        return None


class TradingDecision(BaseModel):
    """One atomic action requested by the reasoning service."""

    action: TradeDecisionAction
    symbol: Optional[str] = None
    quantity: Optional[float] = Field(default=None, description="Base-asset units")
    leverage: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    reasoning: str = ""
    confidence: Optional[float] = Field(
        default=None, description="Confidence in percent (0-100)"
    )
    priority: Optional[int] = None
    risk_usd: Optional[float] = Field(
        default=None,
        description="Informational loss at stop-loss in quote currency",
    )

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().upper()
        return v or None

    @property
    def is_executable(self) -> bool:
        return self.symbol is not None and (self.action.is_open or self.action.is_close)


class DecisionResult(BaseModel):
    """Output of one decision-resolution request."""

    decisions: List[TradingDecision] = Field(default_factory=list)
    chain_of_thought: str = ""
    prompt: str = ""
    raw_response: str = ""
    provider: Optional[str] = Field(
        default=None, description="Provider that produced the response"
    )


class ExecutionResult(BaseModel):
    """Outcome of one attempted decision. Failures are data, never raised."""

    decision: TradingDecision
    success: bool
    order_id: Optional[str] = None
    executed_price: Optional[float] = None
    executed_quantity: Optional[float] = None
    error: Optional[str] = None
    timestamp: int = Field(default_factory=get_current_timestamp_ms)


class RiskCheckResult(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    adjusted_quantity: Optional[float] = None
    adjusted_leverage: Optional[float] = None


class StopLossTakeProfitValidation(BaseModel):
    valid: bool
    reason: Optional[str] = None
    risk_reward_ratio: Optional[float] = None


class PositionLimit(BaseModel):
    symbol: str
    is_major: bool
    max_leverage: float
    max_position_multiplier: float
    max_position_value: float
    current_exposure: float = 0.0
    available_room: float = 0.0


# ---------------------------------------------------------------------------
# Performance tracking


class TradeRecord(BaseModel):
    """Open or closed trade as stored by the performance tracker."""

    id: Optional[int] = None
    trader_id: str
    symbol: str
    side: PositionSide
    entry_price: float
    quantity: float
    leverage: float = 1.0
    open_time: int = Field(default_factory=get_current_timestamp_ms)
    open_order_id: Optional[str] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    exit_price: Optional[float] = None
    close_time: Optional[int] = None
    close_order_id: Optional[str] = None
    pnl: Optional[float] = None
    pnl_percent: Optional[float] = None
    holding_duration: Optional[str] = None
    status: TradeStatus = TradeStatus.OPEN
    close_reason: Optional[str] = None

    @property
    def symbol_side(self) -> str:
        return f"{self.symbol}_{self.side.value}"


class SymbolPerformance(BaseModel):
    symbol: str
    total_trades: int
    win_rate: float
    average_pnl: float
    total_pnl: float
    best_trade: float
    worst_trade: float


class EquitySnapshot(BaseModel):
    trader_id: str
    timestamp: int
    equity: float
    daily_pnl: float = 0.0
    daily_pnl_percent: float = 0.0


class HistoricalFeedback(BaseModel):
    """Closed-trade statistics fed back into the decision prompt.

    The default instance is the neutral feedback used when no trade has
    closed yet.
    """

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = Field(default=0.0, description="Percent of winning trades")
    average_profit: float = 0.0
    average_loss: float = 0.0
    profit_factor: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = Field(default=0.0, description="Peak-to-trough equity %")
    per_symbol: List[SymbolPerformance] = Field(default_factory=list)
    best_symbols: List[SymbolPerformance] = Field(default_factory=list)
    worst_symbols: List[SymbolPerformance] = Field(default_factory=list)
    recent_trades: List[TradeRecord] = Field(default_factory=list)
    consecutive_wins: int = 0
    consecutive_losses: int = 0
    avoid_symbols: List[str] = Field(default_factory=list)
    favor_symbols: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Observability


class RecentAction(BaseModel):
    cycle_number: int
    timestamp: int
    action: TradeDecisionAction
    symbol: Optional[str] = None
    reasoning: str = ""
    confidence: Optional[float] = None
    success: Optional[bool] = Field(
        default=None, description="Execution outcome; None when never submitted"
    )


class CycleHistoryEntry(BaseModel):
    cycle_number: int
    timestamp: int
    equity: Optional[float] = None
    decision_count: int = 0
    success: bool = True


class CycleRecord(BaseModel):
    """Write-once snapshot of every input and output of one cycle."""

    cycle_id: str
    trader_id: str
    cycle_number: int
    timestamp: int
    account: Optional[AccountSnapshot] = None
    market_samples: List[MarketSample] = Field(default_factory=list)
    historical_feedback: Optional[HistoricalFeedback] = None
    chain_of_thought: str = ""
    prompt: str = ""
    raw_response: str = ""
    decisions: List[TradingDecision] = Field(default_factory=list)
    execution_results: List[ExecutionResult] = Field(default_factory=list)
    post_execution_equity: Optional[float] = None
    success: bool = True
    error: Optional[str] = None
    duration_ms: Optional[int] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class EngineStatus(BaseModel):
    """Read-only projection returned by the status query."""

    running: bool
    state: EngineState
    cycle_number: int
    trader_id: str
    last_account: Optional[AccountSnapshot] = None
    recent_actions: List[RecentAction] = Field(default_factory=list)
    cycle_history: List[CycleHistoryEntry] = Field(default_factory=list)
    risk_summary: Optional[str] = None
