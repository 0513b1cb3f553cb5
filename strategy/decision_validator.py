"""
Structural gate for TradeRecommendations.

Checks that a recommendation is well-formed and clears the minimum
risk-reward and confidence thresholds. No I/O, no market data.
"""

from typing import Any, Dict, List, Optional

from strategy.gates import GateResult, run_gate

DEFAULT_MIN_RISK_REWARD = 2.0
DEFAULT_MIN_CONFIDENCE = 60.0


def _positive(value: Any) -> bool:
    try:
        return value is not None and float(value) > 0
    except (TypeError, ValueError):
        return False


def _number(value: Any) -> Optional[float]:
    """float(value), 0.0 for None, None when it is not a number"""
    try:
        return float(value or 0.0)
    except (TypeError, ValueError):
        return None


def check_required_fields(rec, config: Dict[str, Any]) -> List[str]:
    errors = []
    if not _positive(rec.entry_price):
        errors.append("Missing entry_price")
    if not _positive(rec.stop_loss):
        errors.append("Missing stop_loss")
    if not _positive(rec.quantity):
        errors.append("Missing quantity")
    if not rec.symbol or not str(rec.symbol).strip():
        errors.append("Missing symbol")
    if rec.instrument_id is None or not str(rec.instrument_id).strip():
        errors.append("Missing instrument_id")
    return errors


def check_stop_side(rec, config: Dict[str, Any]) -> List[str]:
    if not (_positive(rec.entry_price) and _positive(rec.stop_loss)):
        return []
    entry, stop = float(rec.entry_price), float(rec.stop_loss)
    if rec.is_long and stop >= entry:
        return ["Stop loss must be below entry price for long trades"]
    if rec.is_short and stop <= entry:
        return ["Stop loss must be above entry price for short trades"]
    return []


def check_risk_reward(rec, config: Dict[str, Any]) -> List[str]:
    min_rr = float(config.get("min_risk_reward", DEFAULT_MIN_RISK_REWARD))
    rr = _number(rec.risk_reward)
    if rr is None:
        return [f"Invalid risk_reward: {rec.risk_reward!r}"]
    if rr < min_rr:
        return [f"Risk-reward ratio too low: {rr:.2f} < {min_rr}"]
    return []


def check_confidence(rec, config: Dict[str, Any]) -> List[str]:
    min_confidence = float(config.get("min_confidence", DEFAULT_MIN_CONFIDENCE))
    confidence = _number(rec.confidence_score)
    if confidence is None:
        return [f"Invalid confidence_score: {rec.confidence_score!r}"]
    if confidence < min_confidence:
        return [f"Confidence score too low: {confidence:.1f} < {min_confidence}"]
    return []


def check_bias(rec, config: Dict[str, Any]) -> List[str]:
    errors = []
    if not (rec.is_long or rec.is_short):
        errors.append(f"Invalid bias: {rec.bias} (must be long or short)")
    if rec.is_avoid:
        errors.append("Trade marked as avoid")
    return errors


def check_targets(rec, config: Dict[str, Any]) -> List[str]:
    if not rec.target_prices:
        return ["No target prices specified"]
    return []


VALIDATION_RULES = (
    check_required_fields,
    check_stop_side,
    check_risk_reward,
    check_confidence,
    check_bias,
    check_targets,
)


def validate_recommendation(recommendation, config: Optional[Dict[str, Any]] = None) -> GateResult:
    """
    Run every structural check and report all violations.

    Args:
        recommendation: TradeRecommendation (or anything with the same interface)
        config: Optional ``min_risk_reward`` (2.0) and ``min_confidence`` (60.0)

    Returns:
        GateResult; reason is "Validation failed: <first error>" or "Valid structure"
    """
    return run_gate(
        recommendation,
        VALIDATION_RULES,
        config or {},
        failure_prefix="Validation failed",
        success_reason="Valid structure",
    )
