import pytest

from tradepilot.trading.decision.interfaces import BaseReasoningProvider
from tradepilot.trading.decision.prompt_based import LlmDecisionResolver, build_decision_prompt
from tradepilot.trading.errors import ProviderError
from tradepilot.trading.models import (
    AccountSnapshot,
    HistoricalFeedback,
    LongHorizonIndicators,
    MarketSample,
    Position,
    PositionSide,
    TradeDecisionAction,
)


class FakeProvider(BaseReasoningProvider):
    def __init__(self, name, reply=None, error=None):
        self.name = name
        self._reply = reply
        self._error = error
        self.calls = 0

    async def complete(self, prompt, system_prompt=None):
        self.calls += 1
        if self._error is not None:
            raise self._error
        return self._reply


def _account():
    return AccountSnapshot(total_equity=10_000.0, available_balance=9_000.0)


def _samples():
    return [
        MarketSample(
            symbol="BTCUSDT",
            price=61_250.0,
            volume_24h=2e9,
            long_horizon=LongHorizonIndicators(rsi14=75.0, atr=900.0),
        ),
        MarketSample(symbol="ETHUSDT", price=3_000.0, volume_24h=1e9),
    ]


async def _resolve(resolver):
    return await resolver.resolve(_account(), _samples(), HistoricalFeedback(), [])


@pytest.mark.asyncio
async def test_first_successful_provider_wins():
    first = FakeProvider("A", reply='{"action": "close_long", "symbol": "BTCUSDT"}')
    second = FakeProvider("B", reply='{"action": "wait"}')
    result = await _resolve(LlmDecisionResolver([first, second]))

    assert result.provider == "A"
    assert result.decisions[0].action == TradeDecisionAction.CLOSE_LONG
    assert second.calls == 0
    assert "TOP 2 MARKETS" in result.prompt


@pytest.mark.asyncio
async def test_falls_through_errors_and_prose_only_replies():
    failing = FakeProvider("A", error=ProviderError("A", "API error (500): boom"))
    prose = FakeProvider("B", reply="I would rather not trade today.")
    good = FakeProvider("C", reply='{"action": "hold"}')
    result = await _resolve(LlmDecisionResolver([failing, prose, good]))

    assert result.provider == "C"
    assert (failing.calls, prose.calls, good.calls) == (1, 1, 1)


@pytest.mark.asyncio
async def test_bracketed_prose_falls_through_to_next_provider():
    rapid = FakeProvider("rapid", reply="Market looks [bullish] but I'd wait for a retest.")
    backup = FakeProvider(
        "backup",
        reply='{"action": "open_long", "symbol": "ETHUSDT", "quantity": 1, "confidence": 80}',
    )
    result = await _resolve(LlmDecisionResolver([rapid, backup]))

    assert result.provider == "backup"
    assert result.decisions[0].action == TradeDecisionAction.OPEN_LONG
    assert backup.calls == 1


@pytest.mark.asyncio
async def test_undecodable_reply_from_last_provider_is_reported():
    result = await _resolve(
        LlmDecisionResolver([FakeProvider("A", reply='{"action": "open_long", oops}')])
    )

    decision = result.decisions[0]
    assert decision.action == TradeDecisionAction.WAIT
    assert decision.confidence == 0
    assert decision.reasoning.startswith("All AI providers failed. Last error: A: Invalid JSON")


@pytest.mark.asyncio
async def test_all_providers_failing_yields_wait_with_zero_confidence():
    resolver = LlmDecisionResolver(
        [
            FakeProvider("A", error=ProviderError("A", "timeout")),
            FakeProvider("B", error=RuntimeError("socket closed")),
        ]
    )
    result = await _resolve(resolver)

    assert len(result.decisions) == 1
    decision = result.decisions[0]
    assert decision.action == TradeDecisionAction.WAIT
    assert decision.confidence == 0
    assert decision.reasoning == "All AI providers failed. Last error: B: socket closed"


@pytest.mark.asyncio
async def test_no_providers_configured_yields_wait():
    result = await _resolve(LlmDecisionResolver([]))
    assert result.decisions[0].action == TradeDecisionAction.WAIT
    assert "All AI providers failed" in result.decisions[0].reasoning


@pytest.mark.asyncio
async def test_confidence_threshold_is_configurable():
    reply = '{"action": "open_long", "symbol": "ETHUSDT", "quantity": 1, "confidence": 65}'
    strict = await _resolve(LlmDecisionResolver([FakeProvider("A", reply=reply)]))
    relaxed = await _resolve(
        LlmDecisionResolver([FakeProvider("A", reply=reply)], confidence_threshold=60)
    )
    assert strict.decisions == []
    assert len(relaxed.decisions) == 1


def test_prompt_lists_positions_feedback_and_overbought_label():
    position = Position(
        symbol="SOLUSDT",
        side=PositionSide.LONG,
        quantity=3.0,
        entry_price=150.0,
        current_price=160.0,
        leverage=5.0,
        unrealized_pnl_percent=33.3,
    )
    feedback = HistoricalFeedback(
        total_trades=4, win_rate=25.0, avoid_symbols=["DOGEUSDT"], favor_symbols=["SOLUSDT"]
    )
    prompt = build_decision_prompt(_account(), [position], _samples(), feedback)

    assert "SOLUSDT LONG 3 @ $150.00 x5" in prompt
    assert "AVOID (poor history): DOGEUSDT" in prompt
    assert "FAVOR (strong history): SOLUSDT" in prompt
    assert "RSI14:75 OVERBOUGHT" in prompt
    assert "- Max 90% margin usage" in prompt
    assert prompt.index("BTCUSDT") < prompt.index("ETHUSDT")
