"""
Contextual gate: filters weak setups using trend and momentum facts
already attached to the recommendation. Nothing is recalculated.
"""

import logging
from typing import Any, Dict, List, Optional

from core.audit_log import AuditLogger
from strategy.decision_validator import validate_recommendation
from strategy.gates import GateResult, run_gate

logger = logging.getLogger(__name__)

BULLISH_MOMENTUM = ("rsi_bullish", "macd_bullish")
BEARISH_MOMENTUM = ("rsi_bearish", "macd_bearish")


def check_trend_validity(rec, config: Dict[str, Any]) -> List[str]:
    facts = rec.facts
    if facts is None:
        return []
    if rec.is_long:
        if not facts.bullish:
            return ["Long trade requires bullish trend"]
        if not facts.trend_flags:
            return ["No trend confirmation flags present"]
    if rec.is_short and not facts.bearish:
        return ["Short trade requires bearish trend"]
    return []


def check_momentum_alignment(rec, config: Dict[str, Any]) -> List[str]:
    facts = rec.facts
    if facts is None:
        return []
    bullish = any(flag in facts.momentum_flags for flag in BULLISH_MOMENTUM)
    bearish = any(flag in facts.momentum_flags for flag in BEARISH_MOMENTUM)
    if rec.is_long and bearish and not bullish:
        return ["Momentum diverging - bearish signals for long trade"]
    if rec.is_short and bullish and not bearish:
        return ["Momentum diverging - bullish signals for short trade"]
    return []


def check_invalidation(rec, config: Dict[str, Any]) -> List[str]:
    if rec.facts is None:
        return []
    if rec.facts.setup_status == "NOT_READY":
        return ["Setup status is NOT_READY"]
    return []


SETUP_QUALITY_RULES = (
    check_trend_validity,
    check_momentum_alignment,
    check_invalidation,
)


def check_setup_quality(recommendation, config: Optional[Dict[str, Any]] = None) -> GateResult:
    """
    Returns:
        GateResult; reason is "Setup quality check failed: <first error>"
        or "Setup quality acceptable"
    """
    return run_gate(
        recommendation,
        SETUP_QUALITY_RULES,
        config or {},
        failure_prefix="Setup quality check failed",
        success_reason="Setup quality acceptable",
    )


def evaluate_recommendation(
    recommendation,
    config: Optional[Dict[str, Any]] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> GateResult:
    """
    Structural gate followed by the setup-quality gate.

    Approved only if both gates approve. Errors from both gates are kept,
    structural ones first. When an audit logger is given the decision is
    written to the audit trail.
    """
    config = config or {}
    structural = validate_recommendation(recommendation, config)
    contextual = check_setup_quality(recommendation, config)

    if structural.approved and contextual.approved:
        result = GateResult(approved=True, reason="Approved: valid structure and setup quality", errors=[])
    else:
        first = structural if not structural.approved else contextual
        result = GateResult(
            approved=False,
            reason=first.reason,
            errors=list(structural.errors) + list(contextual.errors),
        )

    log = logger.info if result.approved else logger.warning
    log(f"Decision for {recommendation.symbol}: {'APPROVED' if result.approved else 'REJECTED'} - {result.reason}")

    if audit_logger:
        audit_logger.log_decision(
            symbol=recommendation.symbol,
            approved=result.approved,
            reason=result.reason,
            errors=result.errors,
            gates={
                "structure": structural.to_dict(),
                "setup_quality": contextual.to_dict(),
            },
            context={
                "bias": recommendation.bias,
                "entry_price": recommendation.entry_price,
                "stop_loss": recommendation.stop_loss,
                "risk_reward": recommendation.risk_reward,
                "confidence_score": recommendation.confidence_score,
            },
        )
    return result
