from __future__ import annotations

from typing import List, Optional

from ...constants import PROMPT_TOP_MARKETS
from ...models import (
    AccountSnapshot,
    HistoricalFeedback,
    MarketSample,
    Position,
    RiskConfig,
)
from .system_prompt import MULTIPLE_DECISIONS_SCHEMA, SINGLE_DECISION_SCHEMA

# Stop-loss distance in ATR multiples quoted in the rules block.
STOP_LOSS_ATR_MULTIPLE = 1.5
OVERBOUGHT_RSI = 70.0
OVERSOLD_RSI = 30.0


def _fmt(value: Optional[float], digits: int = 2, default: str = "n/a") -> str:
    if value is None:
        return default
    return f"{value:.{digits}f}"


def _rsi_label(rsi: Optional[float]) -> str:
    if rsi is None:
        return "UNKNOWN"
    if rsi > OVERBOUGHT_RSI:
        return "OVERBOUGHT"
    if rsi < OVERSOLD_RSI:
        return "OVERSOLD"
    return "NEUTRAL"


def select_prompt_markets(
    samples: List[MarketSample], limit: int = PROMPT_TOP_MARKETS
) -> List[MarketSample]:
    """Top ``limit`` samples by 24h volume, highest first."""
    return sorted(samples, key=lambda s: s.volume_24h, reverse=True)[:limit]


def _market_line(sample: MarketSample) -> str:
    long_h = sample.long_horizon
    short_h = sample.short_horizon
    rsi = long_h.rsi14
    trend = "UP" if short_h.ema20 and sample.price > short_h.ema20 else "DOWN"
    macd = "BULL" if (short_h.macd_histogram or 0.0) > 0 else "BEAR"
    sign = "+" if sample.change_24h_percent > 0 else ""
    return (
        f"{sample.symbol}: ${_fmt(sample.price)} ({sign}{sample.change_24h_percent:.1f}%) | "
        f"RSI14:{_fmt(rsi, 0)} {_rsi_label(rsi)} | Trend:{trend} 4h:{long_h.trend.value} | "
        f"MACD:{macd} | Vol:${sample.volume_24h / 1_000_000:.0f}M | ATR:${_fmt(long_h.atr)}"
    )


def _position_line(pos: Position) -> str:
    return (
        f"{pos.symbol} {pos.side.value} {pos.quantity:g} @ ${pos.entry_price:.2f} "
        f"x{pos.leverage:g} ({pos.unrealized_pnl_percent:.1f}%)"
    )


def build_decision_prompt(
    account: AccountSnapshot,
    positions: List[Position],
    samples: List[MarketSample],
    feedback: HistoricalFeedback,
    risk_config: Optional[RiskConfig] = None,
) -> str:
    """Render the per-cycle user prompt sent to every provider in the chain."""
    risk = risk_config or RiskConfig()
    markets = select_prompt_markets(samples)

    lines: List[str] = [
        "You are a crypto futures trading AI. Analyze and provide trading decision(s) in JSON format.",
        "",
        "ACCOUNT STATUS:",
        (
            f"Equity: ${account.total_equity:.2f} | Available: ${account.available_balance:.2f} | "
            f"Margin: {account.margin_usage_ratio * 100:.1f}% | "
            f"PnL: ${account.total_unrealized_pnl:.2f}"
        ),
        "",
        "POSITIONS: "
        + (", ".join(_position_line(p) for p in positions) if positions else "None"),
        "",
        (
            f"PERFORMANCE: WinRate {feedback.win_rate:.0f}% | "
            f"ProfitFactor {feedback.profit_factor:.1f} | Trades {feedback.total_trades}"
        ),
    ]
    if feedback.avoid_symbols:
        lines.append(f"AVOID (poor history): {', '.join(feedback.avoid_symbols)}")
    if feedback.favor_symbols:
        lines.append(f"FAVOR (strong history): {', '.join(feedback.favor_symbols)}")

    lines += [
        "",
        f"TOP {len(markets)} MARKETS:",
        *(_market_line(m) for m in markets),
        "",
        "RULES:",
        f"- Max {risk.max_margin_usage * 100:.0f}% margin usage",
        f"- Use {STOP_LOSS_ATR_MULTIPLE:g}x ATR for stop loss",
        f"- 1:{risk.min_risk_reward_ratio:g} risk/reward ratio minimum",
        f"- Avoid overbought assets (RSI>{OVERBOUGHT_RSI:.0f})",
        "- Look for trend + RSI + MACD confluence",
        "- You can make MULTIPLE decisions if multiple good opportunities exist",
        "- Prioritize closing losing positions and opening new winning positions",
        "",
        "OUTPUT ONLY VALID JSON (no explanation before or after):",
        "",
        "SINGLE DECISION:",
        SINGLE_DECISION_SCHEMA,
        "",
        "MULTIPLE DECISIONS (use when beneficial):",
        MULTIPLE_DECISIONS_SCHEMA,
    ]
    return "\n".join(lines)
