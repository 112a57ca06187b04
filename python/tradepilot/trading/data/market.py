from __future__ import annotations

import asyncio
from typing import List, Optional

from loguru import logger

from ..constants import (
    ADVANCED_COIN_POOL_EXTRA,
    DEFAULT_COIN_POOL,
    DEFAULT_MIN_LIQUIDITY_USD,
    LONG_INTERVAL,
    LONG_LOOKBACK,
    SHORT_INTERVAL,
    SHORT_LOOKBACK,
)
from ..execution.interfaces import BaseExchangeGateway
from ..features import indicators
from ..models import CoinSelectionMode, MarketSample, Position, Trend
from ..utils import normalize_symbol
from .interfaces import BaseMarketDataService

# Opportunity score weights
VOLUME_SURGE_SCORE = 20.0
RSI_EXTREME_SCORE = 15.0
TREND_ALIGNMENT_SCORE = 20.0
MAX_VOLATILITY_SCORE = 15.0
MOMENTUM_SCORE = 10.0
MOMENTUM_THRESHOLD_PERCENT = 5.0
CANDLES_PER_DAY_4H = 6


class MarketDataService(BaseMarketDataService):
    """Builds market samples from exchange candles and ranks candidates.

    Candidate flow for a cycle: coin pool for the selection mode, then the
    open-interest liquidity filter, then concurrent sample retrieval, then
    opportunity scoring.
    """

    def __init__(
        self,
        gateway: BaseExchangeGateway,
        min_liquidity_usd: float = DEFAULT_MIN_LIQUIDITY_USD,
    ) -> None:
        self._gateway = gateway
        self._min_liquidity_usd = min_liquidity_usd

    @staticmethod
    def get_candidate_symbols(mode: CoinSelectionMode = CoinSelectionMode.DEFAULT) -> List[str]:
        if mode == CoinSelectionMode.ADVANCED:
            # dict.fromkeys keeps pool order while dropping duplicates
            return list(dict.fromkeys([*DEFAULT_COIN_POOL, *ADVANCED_COIN_POOL_EXTRA]))
        return list(DEFAULT_COIN_POOL)

    async def filter_by_liquidity(
        self, symbols: List[str], min_liquidity_usd: Optional[float] = None
    ) -> List[str]:
        """Keep symbols whose open interest (USD) reaches the threshold."""
        threshold = self._min_liquidity_usd if min_liquidity_usd is None else min_liquidity_usd
        kept: List[str] = []
        for symbol in symbols:
            try:
                oi_usd = await self._gateway.get_open_interest(symbol)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to check liquidity for {}: {}", symbol, exc)
                continue
            if oi_usd >= threshold:
                kept.append(symbol)
            else:
                logger.debug("Filtered out {}: OI {:.0f} < {:.0f}", symbol, oi_usd, threshold)
        return kept

    async def get_market_sample(self, symbol: str) -> MarketSample:
        """Fetch price, candles, open interest and funding, then compute indicators."""
        symbol = normalize_symbol(symbol)
        price, short_candles, long_candles, open_interest, funding = await asyncio.gather(
            self._gateway.get_market_price(symbol),
            self._gateway.get_klines(symbol, SHORT_INTERVAL, SHORT_LOOKBACK),
            self._gateway.get_klines(symbol, LONG_INTERVAL, LONG_LOOKBACK),
            self._gateway.get_open_interest(symbol),
            self._gateway.get_funding_rate(symbol),
        )

        change_pct = 0.0
        volume_24h = 0.0
        if long_candles:
            day = long_candles[-CANDLES_PER_DAY_4H:]
            reference = day[0].close
            if reference:
                change_pct = (price - reference) / reference * 100.0
            volume_24h = sum(c.close * c.volume for c in day)

        short_closes = [c.close for c in short_candles]
        return MarketSample(
            symbol=symbol,
            price=price,
            change_24h_percent=change_pct,
            volume_24h=volume_24h,
            open_interest=open_interest,
            funding_rate=funding,
            short_horizon=indicators.compute_short_horizon(short_candles),
            long_horizon=indicators.compute_long_horizon(long_candles),
            volatility=indicators.volatility(short_closes),
            trend_strength=indicators.trend_strength(short_closes),
            volume_surge=indicators.volume_surge([c.volume for c in short_candles]),
        )

    async def batch_get_market_samples(self, symbols: List[str]) -> List[MarketSample]:
        """Fetch samples concurrently; failed symbols are logged and dropped."""
        if not symbols:
            return []
        results = await asyncio.gather(
            *(self.get_market_sample(s) for s in symbols), return_exceptions=True
        )
        samples: List[MarketSample] = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, BaseException):
                logger.warning("Failed to fetch market data for {}: {}", symbol, result)
                continue
            samples.append(result)
        logger.info("Fetched market data for {}/{} symbols", len(samples), len(symbols))
        return samples

    async def get_samples_for_positions(self, positions: List[Position]) -> List[MarketSample]:
        symbols = list(dict.fromkeys(p.symbol for p in positions))
        return await self.batch_get_market_samples(symbols)

    @staticmethod
    def score_opportunity(sample: MarketSample) -> float:
        score = 0.0
        if sample.volume_surge:
            score += VOLUME_SURGE_SCORE

        rsi7 = sample.short_horizon.rsi7
        rsi14 = sample.long_horizon.rsi14
        rsis = [r for r in (rsi7, rsi14) if r is not None]
        if any(r < 30 or r > 70 for r in rsis):
            score += RSI_EXTREME_SCORE

        histogram = sample.short_horizon.macd_histogram or 0.0
        trend = sample.long_horizon.trend
        if (trend == Trend.BULLISH and histogram > 0) or (
            trend == Trend.BEARISH and histogram < 0
        ):
            score += TREND_ALIGNMENT_SCORE

        atr = sample.long_horizon.atr
        if atr and atr > 0 and sample.price > 0:
            score += min(MAX_VOLATILITY_SCORE, atr / sample.price * 1000.0)

        if abs(sample.change_24h_percent) > MOMENTUM_THRESHOLD_PERCENT:
            score += MOMENTUM_SCORE
        return score

    def analyze_opportunities(self, samples: List[MarketSample]) -> List[MarketSample]:
        """Attach opportunity scores and sort best first."""
        scored = [
            s.model_copy(update={"opportunity_score": self.score_opportunity(s)})
            for s in samples
        ]
        return sorted(scored, key=lambda s: s.opportunity_score or 0.0, reverse=True)

    async def get_ranked_samples(
        self,
        mode: CoinSelectionMode = CoinSelectionMode.DEFAULT,
        min_liquidity_usd: Optional[float] = None,
    ) -> List[MarketSample]:
        candidates = self.get_candidate_symbols(mode)
        liquid = await self.filter_by_liquidity(candidates, min_liquidity_usd)
        logger.info("{}/{} candidates passed the liquidity filter", len(liquid), len(candidates))
        samples = await self.batch_get_market_samples(liquid)
        return self.analyze_opportunities(samples)
