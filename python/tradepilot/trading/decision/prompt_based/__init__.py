from .prompt import build_decision_prompt
from .resolver import LlmDecisionResolver

__all__ = ["LlmDecisionResolver", "build_decision_prompt"]
