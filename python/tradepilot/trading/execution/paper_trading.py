from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
from loguru import logger

from ...utils.ts import get_current_timestamp_ms
from ...utils.uuid import generate_uuid
from ..errors import ExchangeError
from ..models import (
    AccountSnapshot,
    Candle,
    OpenOrder,
    OrderFill,
    Position,
    PositionSide,
)
from ..utils import interval_to_ms, normalize_symbol
from .interfaces import BaseExchangeGateway

DEFAULT_PAPER_OPEN_INTEREST_USD = 50_000_000.0
DEFAULT_PAPER_FUNDING_RATE = 0.0001


@dataclass
class _PaperPosition:
    symbol: str
    side: PositionSide
    quantity: float
    entry_price: float
    leverage: float
    open_time: int = field(default_factory=get_current_timestamp_ms)


class PaperExchangeGateway(BaseExchangeGateway):
    """In-memory simulated perpetual account.

    - Positions are keyed by (symbol, side); adding to one averages the entry.
    - Margin per position is notional / leverage; fees are fee_bps of notional.
    - Mark prices are set from outside (``set_mark_price``); klines are a
      deterministic random walk ending at the mark price.
    - Stop-loss / take-profit legs are kept as resting reduce-only orders and
      cancelled when the position closes. They are not triggered.
    """

    name = "paper"

    def __init__(
        self,
        initial_balance: float = 10_000.0,
        fee_bps: float = 0.0,
        mark_prices: Optional[Dict[str, float]] = None,
    ) -> None:
        self._wallet_balance = float(initial_balance)
        self._fee_bps = float(fee_bps)
        self._marks: Dict[str, float] = {}
        self._open_interest: Dict[str, float] = {}
        self._funding: Dict[str, float] = {}
        self._positions: Dict[Tuple[str, PositionSide], _PaperPosition] = {}
        self._orders: Dict[str, OpenOrder] = {}
        self._order_seq = 0
        for symbol, price in (mark_prices or {}).items():
            self.set_mark_price(symbol, price)

    # -- simulation controls ---------------------------------------------

    def set_mark_price(self, symbol: str, price: float) -> None:
        self._marks[normalize_symbol(symbol)] = float(price)

    def set_open_interest(self, symbol: str, open_interest_usd: float) -> None:
        self._open_interest[normalize_symbol(symbol)] = float(open_interest_usd)

    def set_funding_rate(self, symbol: str, rate: float) -> None:
        self._funding[normalize_symbol(symbol)] = float(rate)

    @property
    def wallet_balance(self) -> float:
        return self._wallet_balance

    # -- read side ---------------------------------------------------------

    def _mark(self, symbol: str) -> float:
        price = self._marks.get(normalize_symbol(symbol))
        if price is None or price <= 0:
            raise ExchangeError(f"No mark price for {symbol}")
        return price

    def _to_position(self, pos: _PaperPosition) -> Position:
        current = self._marks.get(pos.symbol, pos.entry_price)
        direction = 1.0 if pos.side == PositionSide.LONG else -1.0
        pnl = (current - pos.entry_price) * pos.quantity * direction
        margin = pos.quantity * pos.entry_price / pos.leverage
        return Position(
            symbol=pos.symbol,
            side=pos.side,
            quantity=pos.quantity,
            entry_price=pos.entry_price,
            current_price=current,
            leverage=pos.leverage,
            unrealized_pnl=pnl,
            unrealized_pnl_percent=(pnl / margin * 100.0) if margin else 0.0,
            liquidation_price=self._liquidation_price(pos),
            open_time=pos.open_time,
        )

    @staticmethod
    def _liquidation_price(pos: _PaperPosition) -> float:
        # Isolated-style estimate, ignoring maintenance margin
        move = pos.entry_price / pos.leverage
        if pos.side == PositionSide.LONG:
            return max(0.0, pos.entry_price - move)
        return pos.entry_price + move

    async def get_positions(self) -> List[Position]:
        return [self._to_position(p) for p in self._positions.values() if p.quantity > 0]

    async def get_account_info(self) -> AccountSnapshot:
        positions = await self.get_positions()
        unrealized = sum(p.unrealized_pnl for p in positions)
        margin_used = sum(p.quantity * p.entry_price / p.leverage for p in positions)
        equity = self._wallet_balance + unrealized
        return AccountSnapshot(
            total_equity=equity,
            available_balance=max(0.0, equity - margin_used),
            total_margin_used=margin_used,
            margin_usage_ratio=(margin_used / equity) if equity > 0 else 0.0,
            total_unrealized_pnl=unrealized,
            positions=positions,
        )

    async def get_open_orders(self, symbol: Optional[str] = None) -> List[OpenOrder]:
        if symbol is None:
            return list(self._orders.values())
        target = normalize_symbol(symbol)
        return [o for o in self._orders.values() if o.symbol == target]

    async def get_market_price(self, symbol: str) -> float:
        return self._mark(symbol)

    async def get_klines(self, symbol: str, interval: str, limit: int = 100) -> List[Candle]:
        symbol = normalize_symbol(symbol)
        last = self._mark(symbol)
        step_ms = interval_to_ms(interval)
        # Seeded per symbol+interval so repeated calls agree
        seed = sum(ord(c) for c in f"{symbol}:{interval}")
        rng = np.random.default_rng(seed)
        returns = rng.normal(0.0, 0.004, size=limit)
        # closes[i] = last / exp(sum(returns[i+1:])), so the series ends at the mark
        tail_sums = np.cumsum(returns[::-1])[::-1] - returns
        closes = last * np.exp(-tail_sums)
        opens = np.concatenate(([closes[0]], closes[:-1]))
        wiggle = np.abs(rng.normal(0.0, 0.002, size=limit))
        highs = np.maximum(opens, closes) * (1 + wiggle)
        lows = np.minimum(opens, closes) * (1 - wiggle)
        volumes = rng.uniform(500.0, 1500.0, size=limit)
        end = get_current_timestamp_ms() // step_ms * step_ms
        return [
            Candle(
                ts=end - (limit - 1 - i) * step_ms,
                open=float(opens[i]),
                high=float(highs[i]),
                low=float(lows[i]),
                close=float(closes[i]),
                volume=float(volumes[i]),
            )
            for i in range(limit)
        ]

    async def get_open_interest(self, symbol: str) -> float:
        return self._open_interest.get(
            normalize_symbol(symbol), DEFAULT_PAPER_OPEN_INTEREST_USD
        )

    async def get_funding_rate(self, symbol: str) -> float:
        return self._funding.get(normalize_symbol(symbol), DEFAULT_PAPER_FUNDING_RATE)

    # -- orders ------------------------------------------------------------

    def _next_order_id(self) -> str:
        self._order_seq += 1
        return f"paper-{self._order_seq}"

    def _fee(self, notional: float) -> float:
        return notional * self._fee_bps / 10_000.0

    def _place_leg(self, symbol: str, side: PositionSide, kind: str, price: float, qty: float) -> None:
        order = OpenOrder(
            order_id=generate_uuid("paper-leg"),
            symbol=symbol,
            side="SELL" if side == PositionSide.LONG else "BUY",
            type=kind,
            stop_price=price,
            quantity=qty,
            reduce_only=True,
        )
        self._orders[order.order_id] = order

    async def open_position(
        self,
        symbol: str,
        side: PositionSide,
        quantity: float,
        leverage: float,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
    ) -> OrderFill:
        symbol = normalize_symbol(symbol)
        if quantity <= 0 or leverage <= 0:
            raise ExchangeError(f"Invalid order size for {symbol}: qty={quantity}, leverage={leverage}")
        price = self._mark(symbol)
        notional = quantity * price
        fee = self._fee(notional)
        account = await self.get_account_info()
        if notional / leverage + fee > account.available_balance:
            raise ExchangeError(
                f"Insufficient margin for {symbol}: required "
                f"{notional / leverage + fee:.2f}, available {account.available_balance:.2f}"
            )

        key = (symbol, side)
        existing = self._positions.get(key)
        if existing is None:
            self._positions[key] = _PaperPosition(symbol, side, quantity, price, leverage)
        else:
            total = existing.quantity + quantity
            existing.entry_price = (
                existing.entry_price * existing.quantity + price * quantity
            ) / total
            existing.quantity = total
            existing.leverage = leverage
        self._wallet_balance -= fee

        if stop_loss:
            self._place_leg(symbol, side, "stop_market", stop_loss, quantity)
        if take_profit:
            self._place_leg(symbol, side, "take_profit_market", take_profit, quantity)

        fill = OrderFill(
            order_id=self._next_order_id(),
            symbol=symbol,
            side=side,
            price=price,
            quantity=quantity,
            fee=fee,
        )
        logger.info(
            "Paper opened {} {} {:g} @ {:.4f} ({:g}x)", side.value, symbol, quantity, price, leverage
        )
        return fill

    async def close_position(
        self, symbol: str, side: PositionSide, quantity: Optional[float] = None
    ) -> OrderFill:
        symbol = normalize_symbol(symbol)
        key = (symbol, side)
        pos = self._positions.get(key)
        if pos is None or pos.quantity <= 0:
            raise ExchangeError(f"No {side.value} position found for {symbol}")

        # Resting legs of this side go first; the opposite leg's protection stays
        leg_side = "SELL" if side == PositionSide.LONG else "BUY"
        for order_id in [
            o.order_id
            for o in self._orders.values()
            if o.symbol == symbol and o.side == leg_side
        ]:
            self._orders.pop(order_id, None)

        price = self._mark(symbol)
        qty = pos.quantity if not quantity else min(quantity, pos.quantity)
        direction = 1.0 if side == PositionSide.LONG else -1.0
        realized = (price - pos.entry_price) * qty * direction
        fee = self._fee(qty * price)
        self._wallet_balance += realized - fee

        pos.quantity -= qty
        if pos.quantity <= 1e-12:
            self._positions.pop(key, None)

        logger.info(
            "Paper closed {} {} {:g} @ {:.4f} (pnl {:.2f})", side.value, symbol, qty, price, realized
        )
        return OrderFill(
            order_id=self._next_order_id(),
            symbol=symbol,
            side=side,
            price=price,
            quantity=qty,
            fee=fee,
        )

    async def close(self) -> None:
        """No-op close for paper gateway (nothing to cleanup)."""
        return None

    def __repr__(self) -> str:
        return (
            f"PaperExchangeGateway(balance={self._wallet_balance:.2f}, "
            f"positions={len(self._positions)}, fee_bps={self._fee_bps:g})"
        )
