"""
AI scoring schemas and data structures.

Defines the contract between the AI scorer and model providers. The
evaluation response is a fixed, versioned JSON shape; anything that does
not validate against ``AIEvaluation`` is a parse failure.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.exceptions import AIResponseError

RESPONSE_SCHEMA_VERSION = "1.0"

Stage = Literal["early", "middle", "late"]
MomentumTrend = Literal["strengthening", "stable", "weakening"]
PricePosition = Literal["near_value", "slightly_extended", "extended"]
EntryTiming = Literal["immediate", "wait"]
ContinuationBias = Literal["high", "medium", "low"]

AVOID_CONFIDENCE_BELOW = 6.0

_HOLDING_PERIOD = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*$")


@dataclass
class AIRequest:
    """Single provider request."""
    system_prompt: str
    user_prompt: str
    temperature: float = 0.3
    max_tokens: int = 800


@dataclass
class ModelResponse:
    """Raw provider answer plus token usage."""
    content: str
    model: str
    provider: str
    input_tokens: int = 0
    output_tokens: int = 0


class AIEvaluation(BaseModel):
    """Parsed AI setup evaluation."""
    model_config = ConfigDict(extra="ignore")

    schema_version: Literal["1.0"]
    confidence: float = Field(ge=0.0, le=10.0)
    stage: Stage
    momentum_trend: MomentumTrend
    price_position: PricePosition
    entry_timing: EntryTiming
    continuation_bias: ContinuationBias
    holding_period_days: str
    primary_risk: str = Field(min_length=1)
    invalidate_if: str = Field(min_length=1)

    @field_validator("holding_period_days")
    @classmethod
    def validate_holding_period(cls, v: str) -> str:
        """Accept "low-high" day ranges with low <= high"""
        match = _HOLDING_PERIOD.match(v)
        if not match:
            raise ValueError(f"holding_period_days must look like '7-14', got '{v}'")
        low, high = int(match.group(1)), int(match.group(2))
        if low > high:
            raise ValueError(f"holding_period_days range is inverted: '{v}'")
        return f"{low}-{high}"

    @property
    def avoid(self) -> bool:
        return self.entry_timing == "wait" or self.confidence < AVOID_CONFIDENCE_BELOW

    @property
    def risk(self) -> str:
        if self.stage == "late" or self.momentum_trend == "weakening":
            return "high"
        if self.stage == "early" and self.momentum_trend == "strengthening":
            return "low"
        return "medium"

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump()
        data["avoid"] = self.avoid
        data["risk"] = self.risk
        return data


def strip_code_fences(content: str) -> str:
    """Remove a markdown code fence around a JSON body, if present."""
    if "```json" in content:
        return content.split("```json")[1].split("```")[0].strip()
    if "```" in content:
        return content.split("```")[1].split("```")[0].strip()
    return content.strip()


def parse_evaluation(content: Optional[str]) -> AIEvaluation:
    """
    Parse raw provider content into an AIEvaluation.

    Raises:
        AIResponseError: on invalid JSON, a schema violation, or a
            missing/mismatched schema_version
    """
    if not content:
        raise AIResponseError("empty response", raw=content)

    try:
        payload = json.loads(strip_code_fences(content))
    except json.JSONDecodeError as e:
        raise AIResponseError(f"invalid JSON: {e}", raw=content) from e

    if not isinstance(payload, dict):
        raise AIResponseError("response is not a JSON object", raw=content)

    version = payload.get("schema_version")
    if version != RESPONSE_SCHEMA_VERSION:
        raise AIResponseError(
            f"schema_version mismatch: expected {RESPONSE_SCHEMA_VERSION}, got {version!r}",
            raw=content,
        )

    try:
        return AIEvaluation(**payload)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise AIResponseError(f"schema violation: {fields}", raw=content) from e
