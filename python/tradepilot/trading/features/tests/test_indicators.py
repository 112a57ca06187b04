import pytest

from tradepilot.trading.features import indicators
from tradepilot.trading.models import Candle, Trend


def _candles(closes, volume=100.0):
    return [
        Candle(ts=i * 60_000, open=c, high=c * 1.01, low=c * 0.99, close=c, volume=volume)
        for i, c in enumerate(closes)
    ]


def test_short_series_yields_none():
    assert indicators.rsi([1.0, 2.0], 14) is None
    assert indicators.ema([1.0] * 5, 20) is None
    assert indicators.atr([1.0] * 5, [1.0] * 5, [1.0] * 5) is None
    assert indicators.macd([1.0] * 10)["macd"] is None
    assert indicators.volatility([1.0] * 5) is None
    assert indicators.trend_strength([1.0] * 5) == 0.0


def test_rsi_extremes():
    rising = [float(i) for i in range(1, 40)]
    falling = list(reversed(rising))
    assert indicators.rsi(rising, 14) == pytest.approx(100.0)
    assert indicators.rsi(falling, 14) == pytest.approx(0.0)


def test_ema_of_constant_series_is_the_constant():
    assert indicators.ema([5.0] * 30, 20) == pytest.approx(5.0)


def test_volume_surge_compares_with_previous_nineteen():
    base = [100.0] * 19
    assert indicators.volume_surge(base + [250.0])
    assert not indicators.volume_surge(base + [150.0])
    assert not indicators.volume_surge([100.0] * 10 + [1_000.0])


def test_trend_strength_caps_at_hundred():
    steady_climb = [100.0 * (1.01 ** i) for i in range(20)]
    assert indicators.trend_strength(steady_climb) == 100.0
    flat = [100.0] * 20
    assert indicators.trend_strength(flat) == 0.0


def test_volatility_of_constant_returns_is_zero():
    closes = [100.0 * (1.02 ** i) for i in range(25)]
    assert indicators.volatility(closes) == pytest.approx(0.0, abs=1e-12)


def test_long_horizon_bundle_reports_uptrend():
    closes = [100.0 + i for i in range(80)]
    bundle = indicators.compute_long_horizon(_candles(closes))
    assert bundle.trend == Trend.BULLISH
    assert bundle.ema20 > bundle.ema50
    assert bundle.atr is not None and bundle.atr > 0
    assert bundle.rsi14 == pytest.approx(100.0)


def test_short_horizon_bundle_keeps_recent_prices():
    closes = [200.0 - i * 0.5 for i in range(60)]
    bundle = indicators.compute_short_horizon(_candles(closes, volume=42.0))
    assert bundle.price_sequence == closes[-10:]
    assert bundle.volume == 42.0
    assert bundle.macd_histogram is not None
    assert bundle.trend == Trend.BEARISH


def test_empty_candles_give_empty_bundles():
    assert indicators.compute_short_horizon([]).rsi7 is None
    assert indicators.compute_long_horizon([]).trend == Trend.NEUTRAL
