import pytest

from tradepilot.trading.data import MarketDataService
from tradepilot.trading.execution import PaperExchangeGateway
from tradepilot.trading.models import (
    CoinSelectionMode,
    LongHorizonIndicators,
    MarketSample,
    Position,
    PositionSide,
    ShortHorizonIndicators,
    Trend,
)


@pytest.fixture()
def gateway():
    gw = PaperExchangeGateway(mark_prices={"BTCUSDT": 60_000.0, "ETHUSDT": 3_000.0, "DOGEUSDT": 0.1})
    gw.set_open_interest("DOGEUSDT", 1_000_000.0)
    return gw


@pytest.fixture()
def service(gateway):
    return MarketDataService(gateway, min_liquidity_usd=15_000_000.0)


def test_candidate_pools():
    default = MarketDataService.get_candidate_symbols(CoinSelectionMode.DEFAULT)
    advanced = MarketDataService.get_candidate_symbols(CoinSelectionMode.ADVANCED)
    assert len(default) == 19
    assert advanced[: len(default)] == default
    assert len(advanced) == len(set(advanced)) > len(default)


@pytest.mark.asyncio
async def test_liquidity_filter_uses_open_interest(service):
    kept = await service.filter_by_liquidity(["BTCUSDT", "DOGEUSDT"])
    assert kept == ["BTCUSDT"]
    assert await service.filter_by_liquidity(["DOGEUSDT"], min_liquidity_usd=500_000.0) == [
        "DOGEUSDT"
    ]


@pytest.mark.asyncio
async def test_market_sample_carries_indicators(service):
    sample = await service.get_market_sample("btc")
    assert sample.symbol == "BTCUSDT"
    assert sample.price == 60_000.0
    assert sample.volume_24h > 0
    assert sample.funding_rate == pytest.approx(0.0001)
    assert sample.short_horizon.rsi7 is not None
    assert sample.long_horizon.ema50 is not None
    assert len(sample.short_horizon.price_sequence) == 10


@pytest.mark.asyncio
async def test_batch_drops_failed_symbols(service):
    samples = await service.batch_get_market_samples(["BTCUSDT", "NOPRICEUSDT", "ETHUSDT"])
    assert [s.symbol for s in samples] == ["BTCUSDT", "ETHUSDT"]


@pytest.mark.asyncio
async def test_samples_for_positions_dedupe_symbols(service):
    positions = [
        Position(symbol="ETHUSDT", side=side, quantity=1, entry_price=3000, current_price=3000)
        for side in (PositionSide.LONG, PositionSide.SHORT)
    ]
    samples = await service.get_samples_for_positions(positions)
    assert [s.symbol for s in samples] == ["ETHUSDT"]


@pytest.mark.asyncio
async def test_ranked_samples_only_include_priced_liquid_symbols(service):
    ranked = await service.get_ranked_samples(CoinSelectionMode.DEFAULT)
    assert {s.symbol for s in ranked} == {"BTCUSDT", "ETHUSDT"}
    assert all(s.opportunity_score is not None for s in ranked)
    scores = [s.opportunity_score for s in ranked]
    assert scores == sorted(scores, reverse=True)


def test_opportunity_score_components():
    hot = MarketSample(
        symbol="SOLUSDT",
        price=100.0,
        change_24h_percent=-7.5,
        volume_surge=True,
        short_horizon=ShortHorizonIndicators(rsi7=25.0, macd_histogram=-0.4),
        long_horizon=LongHorizonIndicators(rsi14=45.0, atr=5.0, trend=Trend.BEARISH),
    )
    # 20 surge + 15 rsi + 20 alignment + min(15, 50) + 10 momentum
    assert MarketDataService.score_opportunity(hot) == pytest.approx(80.0)

    calm = MarketSample(
        symbol="ADAUSDT",
        price=1.0,
        short_horizon=ShortHorizonIndicators(rsi7=50.0, macd_histogram=0.1),
        long_horizon=LongHorizonIndicators(rsi14=50.0, atr=0.001, trend=Trend.BEARISH),
    )
    assert MarketDataService.score_opportunity(calm) == pytest.approx(1.0)
