"""
Trade value objects handed to the decision gates.

- TradeFacts: read-only market facts about one instrument (no risk math)
- TradeIntent: what we propose to do (entry/stop/targets, no quantity)
- TradeRecommendation: facts + intent + sizing, the gates' input contract

All three are frozen; gates read them through the capability interface
``is_long`` / ``is_short`` / ``is_avoid`` / ``risk_reward`` / ``facts``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

BIAS_LONG = "long"
BIAS_SHORT = "short"
BIAS_AVOID = "avoid"
VALID_BIASES = (BIAS_LONG, BIAS_SHORT, BIAS_AVOID)

Target = Tuple[float, float]  # (price, probability)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TradeFacts:
    """
    Snapshot of what is true about an instrument right now.

    Attributes:
        trend_flags: e.g. "ema_bullish", "supertrend_bullish", "bullish"
        momentum_flags: e.g. "rsi_bullish", "macd_bearish", "adx_strong"
    """
    symbol: str
    instrument_id: str
    timeframe: str = "swing"
    indicators_snapshot: Dict[str, Any] = field(default_factory=dict)
    trend_flags: Tuple[str, ...] = ()
    momentum_flags: Tuple[str, ...] = ()
    screener_score: float = 0.0
    setup_status: Optional[str] = None
    detected_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        object.__setattr__(self, "trend_flags", tuple(self.trend_flags))
        object.__setattr__(self, "momentum_flags", tuple(self.momentum_flags))
        object.__setattr__(self, "screener_score", float(self.screener_score or 0.0))

    @property
    def bullish(self) -> bool:
        return bool({"bullish", "ema_bullish", "supertrend_bullish"} & set(self.trend_flags))

    @property
    def bearish(self) -> bool:
        return bool({"bearish", "ema_bearish", "supertrend_bearish"} & set(self.trend_flags))

    @property
    def ready(self) -> bool:
        return self.setup_status == "READY"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "instrument_id": self.instrument_id,
            "timeframe": self.timeframe,
            "indicators_snapshot": self.indicators_snapshot,
            "trend_flags": list(self.trend_flags),
            "momentum_flags": list(self.momentum_flags),
            "screener_score": self.screener_score,
            "setup_status": self.setup_status,
            "detected_at": self.detected_at.isoformat(),
        }


@dataclass(frozen=True)
class TradeIntent:
    """Proposed action. Quantity is an execution concern and lives elsewhere."""
    bias: str
    proposed_entry: float
    proposed_sl: float
    proposed_targets: Tuple[Target, ...] = ()
    expected_rr: float = 0.0
    sizing_hint: str = "medium"  # "small" / "medium" / "large"
    strategy_key: Optional[str] = None

    def __post_init__(self):
        bias = str(self.bias).lower()
        if bias not in VALID_BIASES:
            raise ValueError(f"bias must be one of {VALID_BIASES}, got '{self.bias}'")
        object.__setattr__(self, "bias", bias)
        object.__setattr__(self, "proposed_entry", float(self.proposed_entry or 0.0))
        object.__setattr__(self, "proposed_sl", float(self.proposed_sl or 0.0))
        object.__setattr__(
            self,
            "proposed_targets",
            tuple((float(price), float(prob)) for price, prob in self.proposed_targets),
        )

    @property
    def is_long(self) -> bool:
        return self.bias == BIAS_LONG

    @property
    def is_short(self) -> bool:
        return self.bias == BIAS_SHORT

    @property
    def is_avoid(self) -> bool:
        return self.bias == BIAS_AVOID

    @property
    def risk_per_share(self) -> float:
        if not self.proposed_entry or not self.proposed_sl:
            return 0.0
        return abs(self.proposed_entry - self.proposed_sl)

    @property
    def reward_per_share(self) -> float:
        if not self.proposed_targets:
            return 0.0
        return abs(self.proposed_targets[0][0] - self.proposed_entry)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bias": self.bias,
            "proposed_entry": self.proposed_entry,
            "proposed_sl": self.proposed_sl,
            "proposed_targets": [list(t) for t in self.proposed_targets],
            "expected_rr": self.expected_rr,
            "sizing_hint": self.sizing_hint,
            "strategy_key": self.strategy_key,
            "risk_per_share": self.risk_per_share,
            "reward_per_share": self.reward_per_share,
        }


@dataclass(frozen=True)
class TradeRecommendation:
    """
    Final immutable contract in front of execution.

    Normally built with ``from_intent``; the flat fields make it easy to
    construct directly in tests and from external callers.
    """
    entry_price: Optional[float]
    stop_loss: Optional[float]
    quantity: Optional[int]
    symbol: Optional[str]
    instrument_id: Optional[str]
    bias: str
    confidence_score: float
    risk_reward: float
    target_prices: Tuple[Target, ...] = ()
    facts: Optional[TradeFacts] = None
    invalidation_conditions: Tuple[str, ...] = ()
    avoid: bool = False
    risk_amount: float = 0.0
    reasoning: Tuple[str, ...] = ()
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        object.__setattr__(self, "bias", str(self.bias).lower())
        object.__setattr__(self, "target_prices", tuple(tuple(t) for t in self.target_prices))
        object.__setattr__(self, "invalidation_conditions", tuple(self.invalidation_conditions))
        object.__setattr__(self, "reasoning", tuple(self.reasoning))

    @classmethod
    def from_intent(
        cls,
        facts: TradeFacts,
        intent: TradeIntent,
        quantity: int = 0,
        risk_amount: float = 0.0,
        confidence_score: Optional[float] = None,
        invalidation_conditions: Optional[List[str]] = None,
        reasoning: Optional[List[str]] = None,
        created_at: Optional[datetime] = None,
    ) -> "TradeRecommendation":
        """
        Combine facts and intent into a recommendation.

        Confidence defaults to the screener score (0-100 scale) when not given.
        """
        return cls(
            entry_price=intent.proposed_entry,
            stop_loss=intent.proposed_sl,
            quantity=int(quantity),
            symbol=facts.symbol,
            instrument_id=facts.instrument_id,
            bias=intent.bias,
            confidence_score=float(confidence_score if confidence_score is not None else facts.screener_score),
            risk_reward=intent.expected_rr,
            target_prices=intent.proposed_targets,
            facts=facts,
            invalidation_conditions=tuple(invalidation_conditions or ()),
            avoid=intent.is_avoid,
            risk_amount=float(risk_amount),
            reasoning=tuple(reasoning if reasoning is not None else build_reasoning(facts, intent)),
            created_at=created_at or _utcnow(),
        )

    @property
    def is_long(self) -> bool:
        return self.bias == BIAS_LONG

    @property
    def is_short(self) -> bool:
        return self.bias == BIAS_SHORT

    @property
    def is_avoid(self) -> bool:
        return self.avoid or self.bias == BIAS_AVOID

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "instrument_id": self.instrument_id,
            "bias": self.bias,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "target_prices": [list(t) for t in self.target_prices],
            "risk_reward": self.risk_reward,
            "risk_amount": self.risk_amount,
            "confidence_score": self.confidence_score,
            "quantity": self.quantity,
            "avoid": self.avoid,
            "invalidation_conditions": list(self.invalidation_conditions),
            "reasoning": list(self.reasoning),
            "facts": self.facts.to_dict() if self.facts else None,
            "created_at": self.created_at.isoformat(),
        }


def build_reasoning(facts: TradeFacts, intent: TradeIntent) -> List[str]:
    """Human-readable bullet points for a recommendation."""
    reasoning = []
    if "bullish" in facts.trend_flags:
        reasoning.append("Bullish trend confirmed (EMA + Supertrend)")
    if "bearish" in facts.trend_flags:
        reasoning.append("Bearish trend detected")
    if "rsi_bullish" in facts.momentum_flags:
        reasoning.append("RSI in bullish zone (50-70)")
    if "macd_bullish" in facts.momentum_flags:
        reasoning.append("MACD bullish crossover")
    if "adx_strong" in facts.momentum_flags:
        reasoning.append("Strong trend (ADX > 25)")

    if facts.setup_status == "READY":
        reasoning.append("Setup ready for entry")
    elif facts.setup_status == "WAIT_PULLBACK":
        reasoning.append("Waiting for pullback")

    if intent.expected_rr >= 3.0:
        reasoning.append(f"Excellent risk-reward ({intent.expected_rr:.2f}R)")
    elif intent.expected_rr >= 2.0:
        reasoning.append(f"Good risk-reward ({intent.expected_rr:.2f}R)")
    return reasoning
