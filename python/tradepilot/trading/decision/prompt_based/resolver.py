from __future__ import annotations

from typing import List, Optional, Sequence

from loguru import logger

from ...constants import DEFAULT_CONFIDENCE_THRESHOLD
from ...errors import ProviderError, ResponseParseError
from ...models import (
    AccountSnapshot,
    DecisionResult,
    HistoricalFeedback,
    MarketSample,
    Position,
    RiskConfig,
    TradeDecisionAction,
    TradingDecision,
)
from ..interfaces import BaseDecisionResolver, BaseReasoningProvider
from ..parser import extract_json, parse_decision_response
from .prompt import build_decision_prompt
from .system_prompt import SYSTEM_PROMPT


class LlmDecisionResolver(BaseDecisionResolver):
    """Prompt-driven resolver with ordered provider fallback.

    Flow per call:
    1. Render the cycle prompt from account, positions, samples and feedback.
    2. Ask each provider in order; the first one returning a decodable JSON
       payload wins. Errors, prose-only replies and undecodable JSON move on
       to the next provider.
    3. Parse the winning text into decisions. If every provider failed,
       return ``wait`` with confidence 0 and the last error.
    """

    def __init__(
        self,
        providers: Sequence[BaseReasoningProvider],
        *,
        risk_config: Optional[RiskConfig] = None,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> None:
        self._providers = list(providers)
        self._risk_config = risk_config or RiskConfig()
        self._confidence_threshold = confidence_threshold
        self._system_prompt = system_prompt

    @property
    def provider_names(self) -> List[str]:
        return [p.name for p in self._providers]

    async def resolve(
        self,
        account: AccountSnapshot,
        market_samples: List[MarketSample],
        feedback: HistoricalFeedback,
        positions: List[Position],
    ) -> DecisionResult:
        try:
            prompt = build_decision_prompt(
                account, positions, market_samples, feedback, self._risk_config
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to build decision prompt: {}", exc)
            return DecisionResult(decisions=[self._wait(f"Prompt build failed: {exc}")])

        last_error: Optional[str] = None
        for provider in self._providers:
            try:
                logger.info("Requesting decision from {}", provider.name)
                raw = await provider.complete(prompt, self._system_prompt)
            except ProviderError as exc:
                last_error = str(exc)
                logger.warning("Provider {} failed: {}", provider.name, exc)
                continue
            except Exception as exc:  # noqa: BLE001
                last_error = f"{provider.name}: {exc}"
                logger.warning("Provider {} raised unexpectedly: {}", provider.name, exc)
                continue

            try:
                extract_json(raw)
            except ResponseParseError as exc:
                last_error = f"{provider.name}: {exc}"
                logger.warning("Provider {} returned no usable JSON: {}", provider.name, exc)
                continue

            parsed = parse_decision_response(
                raw,
                market_samples=market_samples,
                confidence_threshold=self._confidence_threshold,
            )
            logger.info(
                "{} produced {} decision(s) ({} filtered by confidence)",
                provider.name,
                len(parsed.decisions),
                len(parsed.filtered),
            )
            return DecisionResult(
                decisions=parsed.decisions,
                chain_of_thought=parsed.chain_of_thought,
                prompt=prompt,
                raw_response=raw,
                provider=provider.name,
            )

        message = f"All AI providers failed. Last error: {last_error or 'no providers configured'}"
        logger.error(message)
        return DecisionResult(decisions=[self._wait(message)], prompt=prompt)

    @staticmethod
    def _wait(reason: str) -> TradingDecision:
        return TradingDecision(
            action=TradeDecisionAction.WAIT, reasoning=reason, confidence=0.0
        )
