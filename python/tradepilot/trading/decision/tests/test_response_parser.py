import json

import pytest

from tradepilot.trading.decision.parser import (
    estimate_risk_usd,
    extract_json,
    normalize_confidence,
    parse_decision_response,
)
from tradepilot.trading.errors import ResponseParseError
from tradepilot.trading.models import MarketSample, TradeDecisionAction


@pytest.fixture()
def samples():
    return [MarketSample(symbol="BTCUSDT", price=61250.0)]


def _fenced(payload) -> str:
    return (
        "Market analysis: Bullish setup on BTC with rising volume.\n\n"
        f"```json\n{json.dumps(payload)}\n```"
    )


def _open_long(**overrides):
    item = {
        "symbol": "BTCUSDT",
        "action": "open_long",
        "confidence": 75,
        "position_size_usd": 1000,
        "stop_loss": 60800,
        "profit_target": 62500,
        "reasoning": "Breakout retest",
    }
    item.update(overrides)
    return item


def test_empty_array_yields_no_decisions(samples):
    parsed = parse_decision_response(_fenced([]), samples)
    assert parsed.decisions == []


def test_no_trade_yields_no_decisions(samples):
    parsed = parse_decision_response(
        _fenced([{"symbol": "BTCUSDT", "action": "no_trade"}]), samples
    )
    assert parsed.decisions == []


def test_open_long_above_threshold(samples):
    parsed = parse_decision_response(_fenced([_open_long()]), samples)
    assert len(parsed.decisions) == 1
    decision = parsed.decisions[0]
    assert decision.action == TradeDecisionAction.OPEN_LONG
    assert decision.symbol == "BTCUSDT"
    assert decision.stop_loss == 60800
    assert decision.take_profit == 62500
    assert decision.quantity == pytest.approx(1000 / 61250)
    assert decision.risk_usd is not None and decision.risk_usd > 0
    assert decision.risk_usd == pytest.approx(7.35)


def test_low_confidence_is_filtered(samples):
    parsed = parse_decision_response(_fenced([_open_long(confidence=60)]), samples)
    assert parsed.decisions == []
    assert len(parsed.filtered) == 1


def test_array_honors_first_element_only(samples):
    payload = [_open_long(), _open_long(symbol="ETHUSDT", action="open_short")]
    parsed = parse_decision_response(_fenced(payload), samples)
    assert [d.symbol for d in parsed.decisions] == ["BTCUSDT"]


def test_raw_json_without_fence(samples):
    parsed = parse_decision_response(json.dumps([_open_long()]), samples)
    assert len(parsed.decisions) == 1


def test_percent_string_confidence(samples):
    parsed = parse_decision_response(_fenced([_open_long(confidence="75%")]), samples)
    assert parsed.decisions[0].confidence == 75


def test_fractional_confidence_is_scaled(samples):
    parsed = parse_decision_response(_fenced([_open_long(confidence=0.85)]), samples)
    assert parsed.decisions[0].confidence == pytest.approx(85.0)


@pytest.mark.parametrize("confidence", ["1%", 1])
def test_whole_number_and_percent_confidences_are_not_rescaled(samples, confidence):
    parsed = parse_decision_response(_fenced([_open_long(confidence=confidence)]), samples)
    assert parsed.decisions == []
    assert parsed.filtered[0].confidence == 1.0


def test_trailing_comma_is_tolerated(samples):
    raw = (
        '```json\n[{"symbol": "BTCUSDT", "action": "open_long", "confidence": 80,'
        ' "position_size_usd": 500, "stop_loss": 60000,}]\n```'
    )
    parsed = parse_decision_response(raw, samples)
    assert len(parsed.decisions) == 1


def test_chain_of_thought_is_text_before_json(samples):
    parsed = parse_decision_response(_fenced([_open_long()]), samples)
    assert "Market analysis: Bullish setup on BTC" in parsed.chain_of_thought


def test_multiple_envelope_sorted_by_priority():
    raw = json.dumps(
        {
            "action": "MULTIPLE",
            "reasoning": "rotate",
            "decisions": [
                {"action": "OPEN_SHORT", "symbol": "ETH", "quantity": 1, "confidence": 0.9, "priority": 2},
                {"action": "OPEN_LONG", "symbol": "SOL", "quantity": 2, "confidence": 0.9},
                {"action": "CLOSE_LONG", "symbol": "BTCUSDT", "priority": 1},
            ],
        }
    )
    parsed = parse_decision_response(raw)
    assert [d.symbol for d in parsed.decisions] == ["BTCUSDT", "ETHUSDT", "SOLUSDT"]
    assert parsed.envelope_action == TradeDecisionAction.WAIT
    assert parsed.chain_of_thought == "rotate"


def test_single_object_with_camel_case_levels():
    raw = json.dumps(
        {
            "action": "OPEN_SHORT",
            "symbol": "ETHUSDT",
            "quantity": 0.5,
            "leverage": 5,
            "stopLoss": 2100,
            "takeProfit": 1900,
            "confidence": 0.85,
        }
    )
    parsed = parse_decision_response(raw)
    decision = parsed.decisions[0]
    assert parsed.envelope_action == TradeDecisionAction.OPEN_SHORT
    assert decision.stop_loss == 2100
    assert decision.take_profit == 1900
    assert decision.leverage == 5


def test_hold_and_wait_are_kept_but_not_executable():
    parsed = parse_decision_response('{"action": "WAIT", "reasoning": "chop"}')
    assert len(parsed.decisions) == 1
    assert not parsed.decisions[0].is_executable


def test_open_without_symbol_is_dropped():
    parsed = parse_decision_response('{"action": "open_long", "confidence": 90}')
    assert parsed.decisions == []


def test_rapidapi_text_wrapper_is_unwrapped():
    inner = json.dumps({"action": "close_short", "symbol": "SOLUSDT"})
    parsed = parse_decision_response(json.dumps({"text": inner}))
    assert parsed.decisions[0].action == TradeDecisionAction.CLOSE_SHORT


def test_malformed_response_becomes_wait():
    parsed = parse_decision_response("I think BTC goes up {not json")
    assert len(parsed.decisions) == 1
    decision = parsed.decisions[0]
    assert decision.action == TradeDecisionAction.WAIT
    assert decision.reasoning.startswith("Failed to parse AI response:")
    assert parsed.chain_of_thought == "I think BTC goes up {not json"


def test_broken_multiple_envelope_does_not_fall_back_to_inner_decision():
    raw = (
        '{"action": "MULTIPLE", "decisions": ['
        '{"action": "open_long", "symbol": "ETHUSDT", "quantity": 1, "confidence": 90, "priority": 2}, '
        '{"action": "close_long", "symbol": "BTCUSDT", "priority": 1}'
        "], note: unquoted}"
    )
    parsed = parse_decision_response(raw)

    assert [d.action for d in parsed.decisions] == [TradeDecisionAction.WAIT]
    assert "Invalid JSON" in parsed.decisions[0].reasoning


def test_truncated_envelope_becomes_wait():
    raw = '{"action": "MULTIPLE", "decisions": [{"action": "close_short", "symbol": "SOLUSDT"}]'
    parsed = parse_decision_response(raw)
    assert [d.action for d in parsed.decisions] == [TradeDecisionAction.WAIT]


def test_extract_json_uses_first_fenced_block_only():
    raw = '```json\n{"action": hold}\n```\n```json\n{"action": "wait"}\n```'
    with pytest.raises(ResponseParseError, match="Invalid JSON"):
        extract_json(raw)


def test_extract_json_skips_braces_inside_strings():
    value, index = extract_json('note: {"reasoning": "range {a, b}", "action": "hold"} tail')
    assert value["action"] == "hold"
    assert index == 6


def test_extract_json_without_payload_raises():
    with pytest.raises(ResponseParseError):
        extract_json("nothing here")


def test_helpers():
    assert normalize_confidence(1) == 1.0
    assert normalize_confidence("0.85") == pytest.approx(85.0)
    assert normalize_confidence("0.5%") == 0.5
    assert normalize_confidence(150) == 100.0
    assert normalize_confidence("abc") is None
    assert estimate_risk_usd(100.0, 95.0, quantity=2.0) == pytest.approx(10.0)
    assert estimate_risk_usd(100.0, None, quantity=2.0) is None
