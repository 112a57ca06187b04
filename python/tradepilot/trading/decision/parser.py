"""Parsing of free-form reasoning-service output into trading decisions.

Services wrap JSON in prose or code fences, emit trailing commas, quote
confidences as "75%" and alternate between three envelopes:

* a single decision object
* a ``MULTIPLE`` object carrying a prioritized ``decisions`` array
* a bare array (only the first element is honored)

:func:`parse_decision_response` never raises; malformed output becomes a
single ``wait`` decision carrying the error.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from ..constants import DEFAULT_CONFIDENCE_THRESHOLD, PRIORITY_SENTINEL
from ..errors import ResponseParseError
from ..models import MarketSample, TradeDecisionAction, TradingDecision
from ..utils import normalize_symbol, safe_float

MULTIPLE_ACTION = "MULTIPLE"
SKIP_ACTIONS = {"no_trade", "none", "noop"}

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([\]}])")

_CLOSERS = {"{": "}", "[": "]"}


@dataclass
class ParsedResponse:
    """Decisions recovered from one raw response."""

    decisions: List[TradingDecision] = field(default_factory=list)
    chain_of_thought: str = ""
    envelope_action: TradeDecisionAction = TradeDecisionAction.WAIT
    filtered: List[TradingDecision] = field(default_factory=list)


def sanitize_json(candidate: str) -> str:
    """Drop trailing commas, tabs and carriage returns that break json.loads."""
    cleaned = _TRAILING_COMMA_RE.sub(r"\1", candidate.strip())
    return cleaned.replace("\t", " ").replace("\r", "")


def _balanced_span(text: str, start: int) -> Optional[int]:
    """Return the index just past the bracket group opening at ``start``."""
    stack: List[str] = []
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return idx + 1
    return None


def find_json_candidate(text: str) -> Optional[Tuple[str, int]]:
    """Return the single ``(candidate, index)`` to decode, or None.

    The first fenced block wins when its body is JSON; otherwise the
    outermost group opened by the first ``{`` or ``[`` in the text. Nested
    groups are never tried on their own.
    """
    fenced = _FENCE_RE.search(text)
    if fenced:
        body = fenced.group(1).strip()
        if body[:1] in _CLOSERS:
            return body, fenced.start()
    for idx, ch in enumerate(text):
        if ch not in _CLOSERS:
            continue
        end = _balanced_span(text, idx)
        # unbalanced: hand the tail to the decoder so the error is reported
        return (text[idx:end] if end is not None else text[idx:]), idx
    return None


def extract_json(text: str) -> Tuple[Any, int]:
    """Decode the JSON candidate of ``text`` and return it with its offset.

    Raises:
        ResponseParseError: when there is no candidate or it does not decode.
    """
    found = find_json_candidate(text or "")
    if found is None:
        raise ResponseParseError("No JSON found in response")
    candidate, index = found
    try:
        return json.loads(sanitize_json(candidate)), index
    except json.JSONDecodeError as exc:
        raise ResponseParseError(f"Invalid JSON in response: {exc}") from exc


def normalize_confidence(value: Any) -> Optional[float]:
    """Return confidence in percent.

    Only fractions strictly between 0 and 1 are scaled (``0.85`` -> 85).
    Percent strings and whole numbers are taken as given: ``"1%"`` and ``1``
    both stay 1.
    """
    conf = safe_float(value)
    if conf is None:
        return None
    is_percent = isinstance(value, str) and value.strip().endswith("%")
    if not is_percent and 0 < conf < 1:
        conf *= 100.0
    return max(0.0, min(100.0, conf))


def _first(item: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if item.get(key) is not None:
            return item[key]
    return None


def _parse_priority(value: Any) -> Optional[int]:
    num = safe_float(value)
    return int(num) if num is not None else None


def _sort_by_priority(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    def key(item: Dict[str, Any]) -> float:
        prio = _parse_priority(item.get("priority")) if isinstance(item, dict) else None
        return float(prio) if prio is not None else float(PRIORITY_SENTINEL)

    return sorted(items, key=key)


def estimate_risk_usd(
    entry_price: Optional[float],
    stop_loss: Optional[float],
    quantity: Optional[float] = None,
    position_size_usd: Optional[float] = None,
) -> Optional[float]:
    """Loss in quote currency if the stop is hit: notional * |entry - stop| / entry."""
    if not entry_price or entry_price <= 0 or not stop_loss or stop_loss <= 0:
        return None
    notional = position_size_usd
    if not notional and quantity:
        notional = quantity * entry_price
    if not notional:
        return None
    return round(abs(notional) * abs(entry_price - stop_loss) / entry_price, 2)


def _to_decision(
    item: Any, prices: Dict[str, float]
) -> Optional[TradingDecision]:
    if not isinstance(item, dict):
        logger.debug("Ignoring non-object decision item: {}", item)
        return None
    raw_action = str(item.get("action") or "").strip().lower()
    if not raw_action or raw_action in SKIP_ACTIONS:
        return None
    try:
        action = TradeDecisionAction(raw_action)
    except ValueError:
        logger.warning("Ignoring unknown decision action '{}'", raw_action)
        return None

    raw_symbol = _first(item, "symbol", "coin")
    symbol = normalize_symbol(raw_symbol) if raw_symbol else None
    if (action.is_open or action.is_close) and not symbol:
        logger.warning("Dropping {} decision without symbol", action.value)
        return None

    price = prices.get(symbol) if symbol else None
    if price is None:
        price = safe_float(_first(item, "entry_price", "entryPrice", "price"))

    quantity = safe_float(item.get("quantity"))
    position_size_usd = safe_float(_first(item, "position_size_usd", "positionSizeUsd"))
    if quantity is None and position_size_usd and price:
        quantity = position_size_usd / price

    stop_loss = safe_float(_first(item, "stopLoss", "stop_loss"))
    take_profit = safe_float(_first(item, "takeProfit", "take_profit", "profit_target"))

    risk_usd = safe_float(item.get("risk_usd"))
    if not risk_usd and action.is_open:
        risk_usd = estimate_risk_usd(price, stop_loss, quantity, position_size_usd)

    return TradingDecision(
        action=action,
        symbol=symbol,
        quantity=quantity,
        leverage=safe_float(item.get("leverage")),
        stop_loss=stop_loss,
        take_profit=take_profit,
        reasoning=str(item.get("reasoning") or ""),
        confidence=normalize_confidence(item.get("confidence")),
        priority=_parse_priority(item.get("priority")),
        risk_usd=risk_usd,
    )


def _unwrap(payload: Any) -> Any:
    # RapidAPI-style wrappers: {"text": "<json>"}
    if isinstance(payload, dict) and isinstance(payload.get("text"), str) and "action" not in payload:
        inner, _ = extract_json(payload["text"])
        return inner
    return payload


def parse_decision_response(
    raw: str,
    market_samples: Optional[List[MarketSample]] = None,
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> ParsedResponse:
    """Recover trading decisions from a raw reasoning-service response.

    Args:
        raw: full response text
        market_samples: samples of this cycle, used for quantity and risk
            estimates when the service sizes positions in USD
        confidence_threshold: minimum confidence (percent) for open decisions

    Returns:
        ParsedResponse with decisions in execution priority order. Open
        decisions under the threshold are moved to ``filtered``.
    """
    prices = {s.symbol: s.price for s in market_samples or []}
    try:
        payload, index = extract_json(raw)
        chain_of_thought = (raw or "")[:index].strip()
        payload = _unwrap(payload)

        envelope_action = TradeDecisionAction.WAIT
        if isinstance(payload, list):
            if len(payload) > 1:
                logger.info(
                    "Array response carried {} decisions; honoring the first only",
                    len(payload),
                )
            items = payload[:1]
        elif isinstance(payload, dict):
            if (
                str(payload.get("action") or "").upper() == MULTIPLE_ACTION
                and isinstance(payload.get("decisions"), list)
            ):
                items = _sort_by_priority(payload["decisions"])
            else:
                items = [payload]
                single_action = str(payload.get("action") or "").lower()
                if single_action in TradeDecisionAction._value2member_map_:
                    envelope_action = TradeDecisionAction(single_action)
            if not chain_of_thought:
                chain_of_thought = str(
                    _first(payload, "chain_of_thought", "reasoning") or ""
                )
        else:
            raise ResponseParseError(
                f"Unexpected JSON payload type: {type(payload).__name__}"
            )

        decisions: List[TradingDecision] = []
        filtered: List[TradingDecision] = []
        for item in items:
            decision = _to_decision(item, prices)
            if decision is None:
                continue
            if decision.action.is_open and (decision.confidence or 0.0) < confidence_threshold:
                logger.info(
                    "Filtered {} {} with confidence {} below threshold {}",
                    decision.action.value,
                    decision.symbol,
                    decision.confidence,
                    confidence_threshold,
                )
                filtered.append(decision)
                continue
            decisions.append(decision)

        return ParsedResponse(
            decisions=decisions,
            chain_of_thought=chain_of_thought,
            envelope_action=envelope_action,
            filtered=filtered,
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning("Failed to parse AI response: {}", exc)
        return ParsedResponse(
            decisions=[
                TradingDecision(
                    action=TradeDecisionAction.WAIT,
                    reasoning=f"Failed to parse AI response: {exc}",
                    confidence=0.0,
                )
            ],
            chain_of_thought=raw or "",
        )
