from __future__ import annotations

from typing import Any, Iterable, Optional

from .constants import MAJOR_SYMBOLS

QUOTE_CURRENCIES = ("USDT", "USDC", "USD")


def normalize_symbol(symbol: str) -> str:
    """Normalize user or model supplied symbols to the compact exchange form.

    Examples:
        btc -> BTCUSDT
        BTC-USDT -> BTCUSDT
        BTC/USDT:USDT -> BTCUSDT
        ethusdt -> ETHUSDT
    """
    s = str(symbol or "").strip().upper()
    if not s:
        return s
    if ":" in s:
        s = s.split(":", 1)[0]
    s = s.replace("/", "").replace("-", "").replace("_", "")
    if not s.endswith(QUOTE_CURRENCIES):
        s = f"{s}USDT"
    return s


def to_ccxt_symbol(symbol: str) -> str:
    """Convert a compact perpetual symbol to ccxt's unified swap notation.

    BTCUSDT -> BTC/USDT:USDT
    """
    compact = normalize_symbol(symbol)
    for quote in QUOTE_CURRENCIES:
        if compact.endswith(quote) and len(compact) > len(quote):
            base = compact[: -len(quote)]
            return f"{base}/{quote}:{quote}"
    return compact


def from_ccxt_symbol(symbol: str) -> str:
    """Convert ccxt unified notation back to the compact form."""
    return normalize_symbol(symbol)


def is_major_symbol(symbol: str, majors: Optional[Iterable[str]] = None) -> bool:
    pool = {s.upper() for s in (majors if majors is not None else MAJOR_SYMBOLS)}
    return normalize_symbol(symbol) in pool


def safe_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    """Parse numbers that may arrive as strings (e.g. '75%', '1,234.5')."""
    if value is None:
        return default
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace(",", "")
    if text.endswith("%"):
        text = text[:-1].strip()
    if not text:
        return default
    try:
        return float(text)
    except ValueError:
        return default


def prune_none(obj):
    """Recursively remove None, empty dict, and empty list values."""
    if isinstance(obj, dict):
        pruned = {k: prune_none(v) for k, v in obj.items() if v is not None}
        return {k: v for k, v in pruned.items() if v not in (None, {}, [])}
    if isinstance(obj, list):
        pruned = [prune_none(v) for v in obj]
        return [v for v in pruned if v not in (None, {}, [])]
    return obj


_INTERVAL_UNITS_MS = {"m": 60_000, "h": 3_600_000, "d": 86_400_000, "w": 604_800_000}


def interval_to_ms(interval: str) -> int:
    """Convert a kline interval such as '3m' or '4h' to milliseconds."""
    text = str(interval or "").strip().lower()
    unit = _INTERVAL_UNITS_MS.get(text[-1:]) if text else None
    if unit is None or not text[:-1].isdigit():
        raise ValueError(f"Unsupported kline interval: {interval!r}")
    return int(text[:-1]) * unit
