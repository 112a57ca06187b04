from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from ..models import (
    AccountSnapshot,
    DecisionResult,
    HistoricalFeedback,
    MarketSample,
    Position,
)

# Contracts for decision making (module-local abstract interfaces).
# Providers speak to one reasoning endpoint; the resolver owns fallback and
# parsing and always returns a DecisionResult.


class BaseReasoningProvider(ABC):
    """One chat-style completion endpoint in the fallback chain."""

    name: str

    @abstractmethod
    async def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """Send the prompt and return the raw response text.

        Implementations raise :class:`ProviderError` (or a subclass) on
        timeouts, non-2xx statuses and structurally invalid payloads so the
        resolver can fall through to the next provider.
        """
        raise NotImplementedError


class BaseDecisionResolver(ABC):
    """Turns account/market context into zero or more trading decisions."""

    @abstractmethod
    async def resolve(
        self,
        account: AccountSnapshot,
        market_samples: List[MarketSample],
        feedback: HistoricalFeedback,
        positions: List[Position],
    ) -> DecisionResult:
        """Return the decisions for this cycle.

        Must never raise: provider outages and malformed output degrade to a
        ``wait`` decision carrying the error text.
        """
        raise NotImplementedError
