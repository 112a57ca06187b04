"""Technical indicators over candle series.

Every function returns ``None`` when the series is too short, so callers
can forward partial indicator sets instead of failing.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from ..models import Candle, LongHorizonIndicators, ShortHorizonIndicators, Trend

PRICE_SEQUENCE_LENGTH = 10
VOLUME_SURGE_WINDOW = 20


def _last(series: pd.Series) -> Optional[float]:
    if series.empty:
        return None
    value = series.iloc[-1]
    return None if pd.isna(value) else float(value)


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """DataFrame of OHLCV columns sorted by open time."""
    rows = [
        {
            "ts": c.ts,
            "open": c.open,
            "high": c.high,
            "low": c.low,
            "close": c.close,
            "volume": c.volume,
        }
        for c in sorted(candles, key=lambda item: item.ts)
    ]
    return pd.DataFrame(rows, columns=["ts", "open", "high", "low", "close", "volume"])


def rsi(closes: Sequence[float], period: int = 14) -> Optional[float]:
    """Wilder RSI of the last bar."""
    if len(closes) < period + 1:
        return None
    delta = pd.Series(closes, dtype=float).diff().dropna()
    gain = delta.clip(lower=0).ewm(alpha=1 / period, adjust=False, min_periods=period).mean()
    loss = (-delta).clip(lower=0).ewm(alpha=1 / period, adjust=False, min_periods=period).mean()
    last_gain, last_loss = _last(gain), _last(loss)
    if last_gain is None or last_loss is None:
        return None
    if last_loss == 0:
        return 100.0 if last_gain > 0 else 50.0
    rs = last_gain / last_loss
    return 100.0 - 100.0 / (1.0 + rs)


def ema(closes: Sequence[float], period: int = 20) -> Optional[float]:
    if len(closes) < period:
        return None
    return _last(pd.Series(closes, dtype=float).ewm(span=period, adjust=False).mean())


def macd(
    closes: Sequence[float], fast: int = 12, slow: int = 26, signal: int = 9
) -> Dict[str, Optional[float]]:
    """MACD line, signal and histogram of the last bar (empty values if short)."""
    if len(closes) < slow + signal:
        return {"macd": None, "signal": None, "histogram": None}
    series = pd.Series(closes, dtype=float)
    line = series.ewm(span=fast, adjust=False).mean() - series.ewm(span=slow, adjust=False).mean()
    sig = line.ewm(span=signal, adjust=False).mean()
    return {"macd": _last(line), "signal": _last(sig), "histogram": _last(line - sig)}


def atr(
    highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], period: int = 14
) -> Optional[float]:
    """Wilder average true range of the last bar."""
    if min(len(highs), len(lows), len(closes)) < period + 1:
        return None
    high = pd.Series(highs, dtype=float)
    low = pd.Series(lows, dtype=float)
    prev_close = pd.Series(closes, dtype=float).shift(1)
    true_range = pd.concat(
        [high - low, (high - prev_close).abs(), (low - prev_close).abs()], axis=1
    ).max(axis=1)
    return _last(true_range.iloc[1:].ewm(alpha=1 / period, adjust=False).mean())


def volume_surge(volumes: Sequence[float], threshold: float = 2.0) -> bool:
    """Last volume above ``threshold`` times the mean of the previous 19."""
    if len(volumes) < VOLUME_SURGE_WINDOW:
        return False
    window = np.asarray(volumes[-VOLUME_SURGE_WINDOW:], dtype=float)
    return bool(window[-1] > window[:-1].mean() * threshold)


def volatility(closes: Sequence[float], period: int = 20) -> Optional[float]:
    """Population standard deviation of simple returns over the last ``period`` closes."""
    if len(closes) < period:
        return None
    recent = np.asarray(closes[-period:], dtype=float)
    returns = np.diff(recent) / recent[:-1]
    return float(np.std(returns))


def trend_strength(closes: Sequence[float], period: int = 14) -> float:
    """0-100 score mixing move consistency and move magnitude."""
    if len(closes) < period:
        return 0.0
    recent = np.asarray(closes[-period:], dtype=float)
    steps = np.diff(recent)
    consistency = abs(int((steps > 0).sum()) - int((steps < 0).sum())) / (period - 1)
    magnitude = abs((recent[-1] - recent[0]) / recent[0]) if recent[0] else 0.0
    return float(min(100.0, consistency * 50 + magnitude * 5000))


def trend_from_emas(fast: Optional[float], slow: Optional[float]) -> Trend:
    if fast is None or slow is None:
        return Trend.NEUTRAL
    if fast > slow:
        return Trend.BULLISH
    if fast < slow:
        return Trend.BEARISH
    return Trend.NEUTRAL


def compute_short_horizon(candles: List[Candle]) -> ShortHorizonIndicators:
    """RSI-7, EMA-20, MACD(12,26,9) and recent closes of the 3-minute series."""
    df = candles_to_frame(candles)
    if df.empty:
        return ShortHorizonIndicators()
    closes = df["close"].tolist()
    ema20 = ema(closes, 20)
    macd_values = macd(closes)
    return ShortHorizonIndicators(
        rsi7=rsi(closes, 7),
        ema20=ema20,
        macd=macd_values["macd"],
        macd_signal=macd_values["signal"],
        macd_histogram=macd_values["histogram"],
        volume=float(df["volume"].iloc[-1]),
        price_sequence=[float(c) for c in closes[-PRICE_SEQUENCE_LENGTH:]],
        trend=trend_from_emas(closes[-1], ema20),
    )


def compute_long_horizon(candles: List[Candle]) -> LongHorizonIndicators:
    """RSI-14, EMA-20/50, ATR-14 and EMA trend of the 4-hour series."""
    df = candles_to_frame(candles)
    if df.empty:
        return LongHorizonIndicators()
    closes = df["close"].tolist()
    ema20 = ema(closes, 20)
    ema50 = ema(closes, 50)
    return LongHorizonIndicators(
        rsi14=rsi(closes, 14),
        ema20=ema20,
        ema50=ema50,
        atr=atr(df["high"].tolist(), df["low"].tolist(), closes, 14),
        trend=trend_from_emas(ema20, ema50),
    )
