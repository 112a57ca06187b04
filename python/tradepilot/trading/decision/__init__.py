"""Decision making components."""

from .interfaces import BaseDecisionResolver, BaseReasoningProvider
from .parser import parse_decision_response
from .prompt_based.resolver import LlmDecisionResolver
from .providers import OpenAICompatibleProvider, RapidApiProvider, create_providers

__all__ = [
    "BaseDecisionResolver",
    "BaseReasoningProvider",
    "LlmDecisionResolver",
    "OpenAICompatibleProvider",
    "RapidApiProvider",
    "create_providers",
    "parse_decision_response",
]
