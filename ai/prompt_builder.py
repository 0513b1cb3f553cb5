"""
Deterministic prompt construction for AI setup evaluation.

The system message, task definition and output schema are fixed text tied
to PROMPT_VERSION; only the SETUP DATA block varies per candidate, and it is
rendered with sorted keys so identical candidates produce identical prompts.
Change the fixed text only together with a version bump.
"""

import json
from typing import Any, Dict

from ai.schemas import AIRequest, RESPONSE_SCHEMA_VERSION
from core.candidate import Candidate

PROMPT_VERSION = "1.0.0"

SYSTEM_MESSAGE = """You are a professional trading assistant helping evaluate swing and long-term trade setups.

You do NOT calculate indicators.
You do NOT predict prices.
You do NOT give buy/sell commands.
You only interpret the provided data.

Your job is to analyze:
- How momentum and trend evolved to reach the current setup
- Whether the setup looks early, healthy, or extended
- Whether entry timing is appropriate or should be delayed
- What risks or invalidation conditions exist

You must base your analysis STRICTLY on the provided data.
If information is insufficient, say so explicitly.

Respond ONLY in valid JSON."""

TASK_DEFINITION = """Analyze the following trade setup using the provided screener data and indicator values.

Your tasks:
1. Describe how momentum and trend strength have evolved.
2. Identify the stage of the move (early, middle, late).
3. Assess whether the current price appears near value or extended.
4. Decide whether the setup is suitable for immediate entry or should wait.
5. Highlight any caution, exhaustion, or failure risks.
6. Clearly state conditions that would invalidate the setup.

Do not calculate indicators.
Do not predict future prices.
Do not suggest position size.

Use ONLY the data provided below."""

OUTPUT_SCHEMA = """Respond ONLY in valid JSON using this exact structure:

{
  "schema_version": "%s",
  "confidence": number,
  "stage": "early" | "middle" | "late",
  "momentum_trend": "strengthening" | "stable" | "weakening",
  "price_position": "near_value" | "slightly_extended" | "extended",
  "entry_timing": "immediate" | "wait",
  "continuation_bias": "high" | "medium" | "low",
  "holding_period_days": "x-y",
  "primary_risk": "string",
  "invalidate_if": "string"
}

Validation rules:
- schema_version: must be exactly "%s" (required)
- confidence: 0.0 to 10.0 (required)
- stage: "early", "middle", or "late" (required)
- momentum_trend: "strengthening", "stable", or "weakening" (required)
- price_position: "near_value", "slightly_extended", or "extended" (required)
- entry_timing: "immediate" or "wait" (required)
- continuation_bias: "high", "medium", or "low" (required)
- holding_period_days: range string like "7-14" or "10-20" (required)
- primary_risk: description of main risk (required)
- invalidate_if: conditions that would invalidate setup (required)""" % (
    RESPONSE_SCHEMA_VERSION,
    RESPONSE_SCHEMA_VERSION,
)


class PromptBuilder:
    """Builds the locked evaluation prompt for one candidate."""

    version = PROMPT_VERSION

    def __init__(self, temperature: float = 0.3, max_tokens: int = 800):
        self.temperature = temperature
        self.max_tokens = max_tokens

    def build(self, candidate: Candidate, run_type: str = "swing") -> AIRequest:
        """Prompt for one candidate; ``run_type`` is sent as the setup's strategy."""
        user_prompt = "\n\n".join([TASK_DEFINITION, OUTPUT_SCHEMA, self.setup_data_block(candidate, run_type)])
        return AIRequest(
            system_prompt=SYSTEM_MESSAGE,
            user_prompt=user_prompt,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

    def setup_data_block(self, candidate: Candidate, run_type: str = "swing") -> str:
        return "SETUP DATA:\n\n" + json.dumps(self.setup_data(candidate, run_type), indent=2, sort_keys=True, default=str)

    def setup_data(self, candidate: Candidate, run_type: str = "swing") -> Dict[str, Any]:
        indicators = candidate.indicators or {}
        metadata = candidate.metadata or {}
        mtf = candidate.multi_timeframe or {}
        price = candidate.latest_close or 0

        trend_alignment = mtf.get("trend_alignment") or {}
        if not isinstance(trend_alignment, dict):
            trend_alignment = {}

        ema20 = indicators.get("ema20")
        return {
            "symbol": candidate.symbol,
            "strategy": run_type,
            "setup_status": metadata.get("setup_status"),
            "scores": {
                "screener_score": candidate.score,
                "base_score": candidate.base_score,
                "mtf_score": candidate.mtf_score,
                "quality_score": candidate.trade_quality_score or 0,
            },
            "trend_alignment": {
                "weekly": trend_alignment.get("weekly", "unknown"),
                "daily": trend_alignment.get("daily", "unknown"),
                "hourly": trend_alignment.get("hourly", "unknown"),
            },
            "current_price": price,
            "levels": {
                "recent_swing_low": metadata.get("recent_swing_low") or (round(ema20 * 0.95, 2) if ema20 else None),
                "recent_swing_high": metadata.get("recent_swing_high") or (round(price * 1.05, 2) if price else None),
            },
            "indicators": {
                "ema20": ema20,
                "ema50": indicators.get("ema50"),
                "ema200": indicators.get("ema200"),
                "rsi": indicators.get("rsi"),
                "adx": indicators.get("adx"),
                "atr": indicators.get("atr"),
                "macd": indicators.get("macd"),
                "supertrend": indicators.get("supertrend"),
                "volume": indicators.get("volume"),
            },
            "quality_breakdown": candidate.trade_quality_breakdown or {},
            "market_context": {
                "index_trend": mtf.get("index_trend") or metadata.get("index_trend", "unknown"),
                "sector_strength": metadata.get("sector_strength", "unknown"),
            },
        }
