import pytest

from tradepilot.trading.errors import (
    ConfigurationError,
    ExchangeError,
    UnsupportedExchangeError,
)
from tradepilot.trading.execution import (
    AsterExchangeGateway,
    CCXTExchangeGateway,
    HyperliquidExchangeGateway,
    PaperExchangeGateway,
    create_exchange_gateway,
)
from tradepilot.trading.models import ExchangeConfig, PositionSide, TradingMode


@pytest.fixture()
def paper() -> PaperExchangeGateway:
    return PaperExchangeGateway(
        initial_balance=10_000.0, mark_prices={"BTCUSDT": 60_000.0, "SOLUSDT": 100.0}
    )


@pytest.mark.asyncio
async def test_paper_open_updates_margin_and_positions(paper):
    fill = await paper.open_position("SOLUSDT", PositionSide.LONG, 10.0, 5.0)
    assert fill.price == 100.0
    assert fill.quantity == 10.0

    account = await paper.get_account_info()
    assert account.total_positions == 1
    assert account.total_margin_used == pytest.approx(200.0)
    assert account.margin_usage_ratio == pytest.approx(0.02)
    assert account.available_balance == pytest.approx(9_800.0)


@pytest.mark.asyncio
async def test_paper_mark_moves_pnl_and_close_realizes(paper):
    await paper.open_position("SOLUSDT", PositionSide.SHORT, 10.0, 2.0)
    paper.set_mark_price("SOLUSDT", 90.0)

    [position] = await paper.get_positions()
    assert position.unrealized_pnl == pytest.approx(100.0)
    assert position.unrealized_pnl_percent == pytest.approx(20.0)

    fill = await paper.close_position("SOLUSDT", PositionSide.SHORT)
    assert fill.price == 90.0
    assert await paper.get_positions() == []
    assert paper.wallet_balance == pytest.approx(10_100.0)


@pytest.mark.asyncio
async def test_paper_protective_legs_are_resting_orders(paper):
    await paper.open_position(
        "BTCUSDT", PositionSide.LONG, 0.01, 10.0, stop_loss=59_000.0, take_profit=63_000.0
    )
    orders = await paper.get_open_orders("BTCUSDT")
    assert sorted(o.type for o in orders) == ["stop_market", "take_profit_market"]
    assert all(o.reduce_only and o.side == "SELL" for o in orders)
    assert any(o.is_take_profit for o in orders)

    await paper.close_position("BTCUSDT", PositionSide.LONG)
    assert await paper.get_open_orders() == []


@pytest.mark.asyncio
async def test_paper_close_keeps_opposite_side_legs(paper):
    await paper.open_position("BTCUSDT", PositionSide.LONG, 0.01, 10.0, stop_loss=59_000.0)
    await paper.open_position("BTCUSDT", PositionSide.SHORT, 0.01, 10.0, stop_loss=63_000.0)

    await paper.close_position("BTCUSDT", PositionSide.LONG)

    orders = await paper.get_open_orders("BTCUSDT")
    assert [(o.side, o.stop_price) for o in orders] == [("BUY", 63_000.0)]


@pytest.mark.asyncio
async def test_paper_rejects_orders_it_cannot_fill(paper):
    with pytest.raises(ExchangeError, match="No LONG position found for SOLUSDT"):
        await paper.close_position("SOLUSDT", PositionSide.LONG)
    with pytest.raises(ExchangeError, match="Insufficient margin"):
        await paper.open_position("BTCUSDT", PositionSide.LONG, 10.0, 1.0)
    with pytest.raises(ExchangeError, match="No mark price"):
        await paper.get_market_price("DOGEUSDT")


@pytest.mark.asyncio
async def test_paper_fee_is_charged_on_notional():
    gateway = PaperExchangeGateway(initial_balance=1_000.0, fee_bps=10.0, mark_prices={"SOL": 100.0})
    fill = await gateway.open_position("SOL", PositionSide.LONG, 5.0, 5.0)
    assert fill.fee == pytest.approx(0.5)
    assert gateway.wallet_balance == pytest.approx(999.5)


@pytest.mark.asyncio
async def test_paper_klines_end_at_mark_price(paper):
    candles = await paper.get_klines("BTCUSDT", "4h", limit=30)
    assert len(candles) == 30
    assert candles[-1].close == pytest.approx(60_000.0)
    assert candles[0].ts < candles[-1].ts
    assert all(c.low <= min(c.open, c.close) for c in candles)
    assert await paper.get_klines("BTCUSDT", "4h", limit=30) == candles


def test_unsupported_exchanges_fail_at_construction():
    with pytest.raises(UnsupportedExchangeError, match="'hyperliquid' is not supported"):
        HyperliquidExchangeGateway()
    with pytest.raises(UnsupportedExchangeError):
        AsterExchangeGateway()
    with pytest.raises(UnsupportedExchangeError):
        create_exchange_gateway(
            ExchangeConfig(exchange_id="aster", trading_mode=TradingMode.LIVE)
        )


def test_factory_picks_variant():
    assert isinstance(create_exchange_gateway(ExchangeConfig()), PaperExchangeGateway)

    gateway = create_exchange_gateway(
        ExchangeConfig(
            exchange_id="binance",
            trading_mode=TradingMode.TESTNET,
            api_key="k",
            secret_key="s",
        )
    )
    assert isinstance(gateway, CCXTExchangeGateway)
    assert gateway.is_testnet

    with pytest.raises(ConfigurationError):
        create_exchange_gateway(
            ExchangeConfig(exchange_id="binance", trading_mode=TradingMode.LIVE)
        )


class FakeCcxtExchange:
    has = {
        "fetchPositions": True,
        "setLeverage": True,
        "setMarginMode": False,
        "cancelAllOrders": True,
        "fetchOpenInterest": True,
        "fetchFundingRate": True,
    }

    def __init__(self):
        self.orders = []
        self.leverage_calls = []
        self.cancelled = []

    async def fetch_balance(self):
        return {
            "info": {
                "totalWalletBalance": "1000",
                "totalUnrealizedProfit": "50",
                "availableBalance": "800",
                "totalInitialMargin": "200",
            }
        }

    async def fetch_positions(self):
        return [
            {
                "symbol": "ETH/USDT:USDT",
                "contracts": 2,
                "side": "long",
                "entryPrice": 3000,
                "markPrice": 3025,
                "leverage": 10,
                "unrealizedPnl": 50,
                "marginMode": "cross",
            },
            {"symbol": "BTC/USDT:USDT", "contracts": 0, "side": "long"},
        ]

    async def fetch_ticker(self, symbol):
        return {"last": 3025.0}

    async def fetch_open_interest(self, symbol):
        return {"openInterestAmount": 1000}

    async def fetch_funding_rate(self, symbol):
        return {"fundingRate": "0.0001"}

    async def set_leverage(self, leverage, symbol):
        self.leverage_calls.append((leverage, symbol))

    async def cancel_all_orders(self, symbol):
        self.cancelled.append(symbol)

    def amount_to_precision(self, symbol, amount):
        return f"{amount:.3f}"

    def price_to_precision(self, symbol, price):
        return f"{price:.2f}"

    async def create_order(self, symbol, order_type, side, amount, price, params):
        self.orders.append((symbol, order_type, side, amount, params))
        return {"id": f"o{len(self.orders)}", "average": 3025.0, "filled": amount}

    async def close(self):
        return None


@pytest.fixture()
def ccxt_gateway():
    gateway = CCXTExchangeGateway("binance", api_key="k", secret_key="s")
    gateway._exchange = FakeCcxtExchange()
    return gateway


@pytest.mark.asyncio
async def test_ccxt_account_and_positions_are_mapped(ccxt_gateway):
    account = await ccxt_gateway.get_account_info()
    assert account.total_equity == pytest.approx(1_050.0)
    assert account.margin_usage_ratio == pytest.approx(0.2)
    [position] = account.positions
    assert position.symbol == "ETHUSDT"
    assert position.side == PositionSide.LONG
    assert position.unrealized_pnl_percent == pytest.approx(50 / 600 * 100)

    assert await ccxt_gateway.get_open_interest("ETHUSDT") == pytest.approx(3_025_000.0)
    assert await ccxt_gateway.get_funding_rate("ETHUSDT") == pytest.approx(0.0001)


@pytest.mark.asyncio
async def test_ccxt_open_places_entry_and_protective_legs(ccxt_gateway):
    fill = await ccxt_gateway.open_position(
        "ETHUSDT", PositionSide.LONG, 0.5, 10, stop_loss=2900, take_profit=3300
    )
    exchange = ccxt_gateway._exchange
    assert fill.order_id == "o1"
    assert fill.symbol == "ETHUSDT"
    assert exchange.leverage_calls == [(10, "ETH/USDT:USDT")]
    entry, stop, take = exchange.orders
    assert entry[1:4] == ("market", "buy", 0.5)
    assert entry[4] == {"positionSide": "LONG"}
    assert stop[1:3] == ("STOP_MARKET", "sell")
    assert stop[4]["stopPrice"] == 2900.0
    assert take[1] == "TAKE_PROFIT_MARKET"


@pytest.mark.asyncio
async def test_ccxt_close_cancels_orders_and_uses_position_size(ccxt_gateway):
    fill = await ccxt_gateway.close_position("ETHUSDT", PositionSide.LONG)
    exchange = ccxt_gateway._exchange
    assert exchange.cancelled == ["ETH/USDT:USDT"]
    assert exchange.orders[-1][1:4] == ("market", "sell", 2.0)
    assert fill.quantity == 2.0

    with pytest.raises(ExchangeError):
        await ccxt_gateway.close_position("ETHUSDT", PositionSide.SHORT)
