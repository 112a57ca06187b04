"""System prompt for the reasoning providers.

Carries only the role and the output contract. The per-cycle context (account,
positions, markets, performance and rules) is sent as the user message built
by :func:`build_decision_prompt`.
"""

SYSTEM_PROMPT: str = (
    "You are a crypto futures trading AI. RESPOND ONLY WITH VALID JSON. "
    "No explanations, no markdown, no code blocks. "
    "Just raw JSON starting with { and ending with }."
)

SINGLE_DECISION_SCHEMA: str = """{
  "action": "OPEN_LONG|OPEN_SHORT|CLOSE_LONG|CLOSE_SHORT|WAIT",
  "symbol": "BTCUSDT",
  "quantity": 0.01,
  "leverage": 5,
  "stopLoss": 45000,
  "takeProfit": 55000,
  "reasoning": "Brief technical analysis",
  "confidence": 0.85
}"""

MULTIPLE_DECISIONS_SCHEMA: str = """{
  "action": "MULTIPLE",
  "reasoning": "Overall strategy summary",
  "confidence": 0.85,
  "decisions": [
    {
      "action": "CLOSE_LONG",
      "symbol": "BTCUSDT",
      "reasoning": "Stop loss hit",
      "confidence": 0.9,
      "priority": 1
    },
    {
      "action": "OPEN_SHORT",
      "symbol": "ETHUSDT",
      "quantity": 0.5,
      "leverage": 5,
      "stopLoss": 2100,
      "takeProfit": 1900,
      "reasoning": "Strong bearish signal",
      "confidence": 0.85,
      "priority": 2
    }
  ]
}"""
