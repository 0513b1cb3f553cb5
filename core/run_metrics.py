"""Funnel metrics computed at the end of a Run."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Sequence, Set

from core.candidate import Candidate

logger = logging.getLogger(__name__)


def compression_efficiency(eligible_count: int, final_count: int) -> float:
    """final / eligible x 100, rounded to 2dp; 0.0 when nothing was eligible"""
    if eligible_count <= 0:
        return 0.0
    return round(final_count / eligible_count * 100, 2)


def compression_ratio(eligible_count: int, final_count: int) -> float:
    """eligible / final, rounded to 2dp; 0.0 when nothing was selected"""
    if final_count <= 0:
        return 0.0
    return round(eligible_count / final_count, 2)


def ai_success_rate(successful_calls: int, calls: int) -> float:
    if calls <= 0:
        return 0.0
    return round(successful_calls / calls * 100, 2)


def overlap_with_previous(final_symbols: Set[str], previous_symbols: Optional[Set[str]]) -> float:
    """Share of this run's finals that were also final last run, in percent"""
    if not final_symbols or not previous_symbols:
        return 0.0
    return round(len(final_symbols & previous_symbols) / len(final_symbols) * 100, 2)


def _average(values: Iterable[Optional[float]]) -> Optional[float]:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return round(sum(present) / len(present), 2)


def calculate_run_metrics(
    eligible: Sequence[Candidate],
    ranked: Sequence[Candidate],
    evaluated: Sequence[Candidate],
    final: Sequence[Candidate],
    tier_counts: Dict[str, int],
    ai_calls: int,
    ai_successful_calls: int,
    ai_cost: float,
    previous_final_symbols: Optional[Set[str]] = None,
    stage_durations: Optional[Dict[str, float]] = None,
) -> Dict[str, Any]:
    """
    Build the metrics map merged into a completed Run.

    ``previous_final_symbols`` is None when there is no earlier completed run
    of the same type; overlap is then 0 and every final counts as new.
    """
    final_symbols = {c.symbol for c in final}
    previous = previous_final_symbols or set()

    metrics: Dict[str, Any] = {
        "eligible_count": len(eligible),
        "ranked_count": len(ranked),
        "ai_evaluated_count": len(evaluated),
        "final_count": len(final),
        "compression_efficiency": compression_efficiency(len(eligible), len(final)),
        "compression_ratio": compression_ratio(len(eligible), len(final)),
        "ai_calls_count": ai_calls,
        "ai_cost": round(ai_cost, 4),
        "ai_success_rate": ai_success_rate(ai_successful_calls, ai_calls),
        "overlap_with_prev_run": overlap_with_previous(final_symbols, previous_final_symbols),
        "new_candidates_count": len(final_symbols - previous),
        "avg_screener_score": _average(c.score for c in eligible),
        "avg_quality_score": _average(c.trade_quality_score for c in ranked),
        "avg_ai_confidence": _average(c.ai_confidence for c in evaluated),
        "tier_1_count": tier_counts.get("tier_1", 0),
        "tier_2_count": tier_counts.get("tier_2", 0),
        "tier_3_count": tier_counts.get("tier_3", 0),
        "metrics_calculated_at": datetime.now(timezone.utc).isoformat(),
    }
    if stage_durations:
        metrics["stage_durations"] = {k: round(v, 3) for k, v in stage_durations.items()}

    logger.debug(
        f"Run metrics: eligible={metrics['eligible_count']} final={metrics['final_count']} "
        f"compression={metrics['compression_efficiency']}% overlap={metrics['overlap_with_prev_run']}%"
    )
    return metrics