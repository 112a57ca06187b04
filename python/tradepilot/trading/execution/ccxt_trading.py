"""CCXT-based real exchange gateway for USDT-margined perpetuals.

Supports:
- Binance USDT-M futures (default) and other ccxt swap venues
- Testnet via ccxt sandbox mode
- Hedge-mode position sides, cross/isolated margin, per-symbol leverage
- Reduce-only stop-loss / take-profit legs after a market entry
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import ccxt.async_support as ccxt
from loguru import logger

from ..errors import ExchangeError
from ..models import (
    AccountSnapshot,
    Candle,
    MarginMode,
    OpenOrder,
    OrderFill,
    Position,
    PositionSide,
)
from ..utils import from_ccxt_symbol, safe_float, to_ccxt_symbol
from .interfaces import BaseExchangeGateway


class CCXTExchangeGateway(BaseExchangeGateway):
    """Async gateway using the CCXT unified API."""

    def __init__(
        self,
        exchange_id: str = "binance",
        api_key: str = "",
        secret_key: str = "",
        testnet: bool = False,
        margin_mode: str = "cross",
        hedge_mode: bool = True,
        ccxt_options: Optional[Dict] = None,
    ) -> None:
        """Initialize the gateway. The ccxt client is created lazily.

        Args:
            exchange_id: ccxt exchange id (e.g. 'binance', 'bybit', 'okx')
            api_key: API key
            secret_key: API secret
            testnet: enable sandbox mode
            margin_mode: 'cross' or 'isolated'
            hedge_mode: LONG and SHORT tracked separately (dual-side positions)
            ccxt_options: extra entries merged into the ccxt ``options`` dict
        """
        self.exchange_id = exchange_id.lower()
        self.name = self.exchange_id
        self.api_key = api_key
        self.secret_key = secret_key
        self.is_testnet = testnet
        self.margin_mode = margin_mode
        self.hedge_mode = hedge_mode
        self._ccxt_options = ccxt_options or {}

        # Avoid redundant leverage / margin calls per symbol
        self._leverage_cache: Dict[str, float] = {}
        self._margin_mode_cache: Dict[str, str] = {}

        self._exchange: Optional[ccxt.Exchange] = None

    def _default_type(self) -> str:
        # Binance calls USDT-M perpetuals 'future'
        return "future" if self.exchange_id == "binance" else "swap"

    async def _get_exchange(self) -> ccxt.Exchange:
        """Get or create the CCXT exchange instance."""
        if self._exchange is not None:
            return self._exchange

        try:
            exchange_class = getattr(ccxt, self.exchange_id)
        except AttributeError:
            raise ExchangeError(
                f"Exchange '{self.exchange_id}' not supported by CCXT."
            ) from None

        exchange = exchange_class(
            {
                "apiKey": self.api_key,
                "secret": self.secret_key,
                "enableRateLimit": True,
                "options": {"defaultType": self._default_type(), **self._ccxt_options},
            }
        )
        if self.is_testnet:
            exchange.set_sandbox_mode(True)

        try:
            if exchange.has.get("setPositionMode"):
                await exchange.set_position_mode(self.hedge_mode)
        except Exception as exc:  # noqa: BLE001
            # Binance answers "No need to change position side" when already set
            logger.debug("Could not set position mode on {}: {}", self.exchange_id, exc)

        try:
            await exchange.load_markets()
        except Exception as exc:
            await exchange.close()
            raise ExchangeError(f"Failed to load markets for {self.exchange_id}: {exc}") from exc

        self._exchange = exchange
        return exchange

    # -- mapping helpers ---------------------------------------------------

    @staticmethod
    def _map_position(raw: Dict[str, Any]) -> Optional[Position]:
        contracts = abs(safe_float(raw.get("contracts"), 0.0) or 0.0)
        if contracts <= 0:
            return None
        side_text = str(raw.get("side") or "").lower()
        side = PositionSide.SHORT if side_text == "short" else PositionSide.LONG
        entry = safe_float(raw.get("entryPrice"), 0.0) or 0.0
        mark = safe_float(raw.get("markPrice"), entry) or entry
        leverage = safe_float(raw.get("leverage"), 1.0) or 1.0
        pnl = safe_float(raw.get("unrealizedPnl"), 0.0) or 0.0
        margin = contracts * entry / leverage if leverage else 0.0
        pnl_pct = safe_float(raw.get("percentage"))
        if pnl_pct is None:
            pnl_pct = (pnl / margin * 100.0) if margin else 0.0
        mode = str(raw.get("marginMode") or "cross").lower()
        return Position(
            symbol=from_ccxt_symbol(raw.get("symbol") or ""),
            side=side,
            quantity=contracts,
            entry_price=entry,
            current_price=mark,
            leverage=leverage,
            unrealized_pnl=pnl,
            unrealized_pnl_percent=pnl_pct,
            liquidation_price=safe_float(raw.get("liquidationPrice")),
            margin_mode=MarginMode.ISOLATED if mode == "isolated" else MarginMode.CROSS,
            open_time=raw.get("timestamp"),
        )

    @staticmethod
    def _map_order(raw: Dict[str, Any]) -> OpenOrder:
        info = raw.get("info") or {}
        return OpenOrder(
            order_id=str(raw.get("id")),
            symbol=from_ccxt_symbol(raw.get("symbol") or ""),
            side=str(raw.get("side") or "").upper(),
            type=str(raw.get("type") or info.get("type") or "").lower(),
            price=safe_float(raw.get("price")),
            stop_price=safe_float(raw.get("stopPrice") or raw.get("triggerPrice")),
            quantity=safe_float(raw.get("amount")),
            reduce_only=bool(raw.get("reduceOnly")),
        )

    def _position_params(self, side: PositionSide, reduce: bool) -> Dict[str, Any]:
        # Hedge mode identifies the leg by positionSide; one-way mode uses reduceOnly
        if self.hedge_mode:
            return {"positionSide": side.value}
        return {"reduceOnly": True} if reduce else {}

    # -- read side ---------------------------------------------------------

    async def get_positions(self) -> List[Position]:
        exchange = await self._get_exchange()
        if not exchange.has.get("fetchPositions"):
            return []
        try:
            raw_positions = await exchange.fetch_positions()
        except Exception as exc:
            raise ExchangeError(f"Failed to fetch positions: {exc}") from exc
        positions = []
        for raw in raw_positions:
            mapped = self._map_position(raw)
            if mapped is not None:
                positions.append(mapped)
        return positions

    async def get_account_info(self) -> AccountSnapshot:
        exchange = await self._get_exchange()
        try:
            balance = await exchange.fetch_balance()
        except Exception as exc:
            raise ExchangeError(f"Failed to fetch balance: {exc}") from exc
        positions = await self.get_positions()

        info = balance.get("info") or {}
        usdt = balance.get("USDT") or {}
        unrealized = safe_float(info.get("totalUnrealizedProfit"))
        if unrealized is None:
            unrealized = sum(p.unrealized_pnl for p in positions)
        wallet = safe_float(info.get("totalWalletBalance"), safe_float(usdt.get("total"), 0.0))
        available = safe_float(info.get("availableBalance"), safe_float(usdt.get("free"), 0.0))
        margin_used = safe_float(info.get("totalInitialMargin"), safe_float(usdt.get("used"), 0.0))
        equity = (wallet or 0.0) + unrealized
        return AccountSnapshot(
            total_equity=equity,
            available_balance=available or 0.0,
            total_margin_used=margin_used or 0.0,
            margin_usage_ratio=(margin_used / wallet) if wallet else 0.0,
            total_unrealized_pnl=unrealized,
            positions=positions,
        )

    async def get_open_orders(self, symbol: Optional[str] = None) -> List[OpenOrder]:
        exchange = await self._get_exchange()
        ccxt_symbol = to_ccxt_symbol(symbol) if symbol else None
        try:
            raw_orders = await exchange.fetch_open_orders(ccxt_symbol)
        except Exception as exc:
            raise ExchangeError(f"Failed to fetch open orders: {exc}") from exc
        return [self._map_order(o) for o in raw_orders]

    async def get_market_price(self, symbol: str) -> float:
        exchange = await self._get_exchange()
        try:
            ticker = await exchange.fetch_ticker(to_ccxt_symbol(symbol))
        except Exception as exc:
            raise ExchangeError(f"Failed to get market price for {symbol}: {exc}") from exc
        price = safe_float(ticker.get("last")) or safe_float(ticker.get("close"))
        if not price:
            raise ExchangeError(f"Ticker for {symbol} carried no price")
        return price

    async def get_klines(self, symbol: str, interval: str, limit: int = 100) -> List[Candle]:
        exchange = await self._get_exchange()
        try:
            rows = await exchange.fetch_ohlcv(to_ccxt_symbol(symbol), interval, limit=limit)
        except Exception as exc:
            raise ExchangeError(f"Failed to get klines for {symbol}: {exc}") from exc
        return [
            Candle(
                ts=int(row[0]),
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5] or 0.0),
            )
            for row in rows
        ]

    async def get_open_interest(self, symbol: str) -> float:
        exchange = await self._get_exchange()
        if not exchange.has.get("fetchOpenInterest"):
            return 0.0
        try:
            data = await exchange.fetch_open_interest(to_ccxt_symbol(symbol))
            value = safe_float(data.get("openInterestValue"))
            if value:
                return value
            amount = safe_float(data.get("openInterestAmount"), 0.0) or 0.0
            return amount * await self.get_market_price(symbol)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to get open interest for {}: {}", symbol, exc)
            return 0.0

    async def get_funding_rate(self, symbol: str) -> float:
        exchange = await self._get_exchange()
        if not exchange.has.get("fetchFundingRate"):
            return 0.0
        try:
            data = await exchange.fetch_funding_rate(to_ccxt_symbol(symbol))
            return safe_float(data.get("fundingRate"), 0.0) or 0.0
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to get funding rate for {}: {}", symbol, exc)
            return 0.0

    # -- orders ------------------------------------------------------------

    async def _setup_leverage(self, symbol: str, leverage: float, exchange: ccxt.Exchange) -> None:
        if self._leverage_cache.get(symbol) == leverage or not exchange.has.get("setLeverage"):
            return
        try:
            await exchange.set_leverage(int(leverage), symbol)
            self._leverage_cache[symbol] = leverage
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not set leverage for {}: {}", symbol, exc)

    async def _setup_margin_mode(self, symbol: str, exchange: ccxt.Exchange) -> None:
        if self._margin_mode_cache.get(symbol) == self.margin_mode or not exchange.has.get(
            "setMarginMode"
        ):
            return
        try:
            await exchange.set_margin_mode(self.margin_mode, symbol)
            self._margin_mode_cache[symbol] = self.margin_mode
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not set margin mode for {}: {}", symbol, exc)

    async def _fill_price(self, order: Dict[str, Any], symbol: str) -> float:
        price = safe_float(order.get("average")) or safe_float(order.get("price"))
        if price:
            return price
        return await self.get_market_price(symbol)

    async def _place_leg(
        self,
        exchange: ccxt.Exchange,
        ccxt_symbol: str,
        side: PositionSide,
        order_type: str,
        trigger: float,
        amount: float,
    ) -> None:
        exit_side = "sell" if side == PositionSide.LONG else "buy"
        params = {
            "stopPrice": float(exchange.price_to_precision(ccxt_symbol, trigger)),
            "workingType": "MARK_PRICE",
            **self._position_params(side, reduce=True),
        }
        try:
            await exchange.create_order(ccxt_symbol, order_type, exit_side, amount, None, params)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to place {} for {}: {}", order_type, ccxt_symbol, exc)

    async def open_position(
        self,
        symbol: str,
        side: PositionSide,
        quantity: float,
        leverage: float,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
    ) -> OrderFill:
        exchange = await self._get_exchange()
        ccxt_symbol = to_ccxt_symbol(symbol)
        await self._setup_leverage(ccxt_symbol, leverage, exchange)
        await self._setup_margin_mode(ccxt_symbol, exchange)

        try:
            amount = float(exchange.amount_to_precision(ccxt_symbol, quantity))
            order = await exchange.create_order(
                ccxt_symbol,
                "market",
                "buy" if side == PositionSide.LONG else "sell",
                amount,
                None,
                self._position_params(side, reduce=False),
            )
        except Exception as exc:
            raise ExchangeError(f"Failed to open {side.value} position on {symbol}: {exc}") from exc

        price = await self._fill_price(order, symbol)
        filled = safe_float(order.get("filled")) or amount
        logger.info(
            "Opened {} position on {}: {} @ {} ({:g}x)", side.value, symbol, filled, price, leverage
        )

        if stop_loss:
            await self._place_leg(exchange, ccxt_symbol, side, "STOP_MARKET", stop_loss, filled)
        if take_profit:
            await self._place_leg(
                exchange, ccxt_symbol, side, "TAKE_PROFIT_MARKET", take_profit, filled
            )

        fee = (order.get("fee") or {}).get("cost")
        return OrderFill(
            order_id=str(order.get("id")),
            symbol=from_ccxt_symbol(ccxt_symbol),
            side=side,
            price=price,
            quantity=filled,
            fee=safe_float(fee, 0.0) or 0.0,
        )

    async def close_position(
        self, symbol: str, side: PositionSide, quantity: Optional[float] = None
    ) -> OrderFill:
        exchange = await self._get_exchange()
        ccxt_symbol = to_ccxt_symbol(symbol)

        if exchange.has.get("cancelAllOrders"):
            try:
                await exchange.cancel_all_orders(ccxt_symbol)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to cancel orders for {}: {}", symbol, exc)

        if not quantity:
            positions = await self.get_positions()
            match = next(
                (p for p in positions if p.symbol == from_ccxt_symbol(ccxt_symbol) and p.side == side),
                None,
            )
            if match is None:
                raise ExchangeError(f"No {side.value} position found for {symbol}")
            quantity = match.quantity

        try:
            amount = float(exchange.amount_to_precision(ccxt_symbol, quantity))
            order = await exchange.create_order(
                ccxt_symbol,
                "market",
                "sell" if side == PositionSide.LONG else "buy",
                amount,
                None,
                self._position_params(side, reduce=True),
            )
        except Exception as exc:
            raise ExchangeError(f"Failed to close {side.value} position on {symbol}: {exc}") from exc

        price = await self._fill_price(order, symbol)
        filled = safe_float(order.get("filled")) or amount
        logger.info("Closed {} position on {}: {} @ {}", side.value, symbol, filled, price)
        fee = (order.get("fee") or {}).get("cost")
        return OrderFill(
            order_id=str(order.get("id")),
            symbol=from_ccxt_symbol(ccxt_symbol),
            side=side,
            price=price,
            quantity=filled,
            fee=safe_float(fee, 0.0) or 0.0,
        )

    async def close(self) -> None:
        """Close the exchange connection and cleanup resources."""
        if self._exchange is not None:
            await self._exchange.close()
            self._exchange = None

    def __repr__(self) -> str:
        mode = "testnet" if self.is_testnet else "live"
        return (
            f"CCXTExchangeGateway(exchange={self.exchange_id}, "
            f"margin={self.margin_mode}, hedge={self.hedge_mode}, mode={mode})"
        )
