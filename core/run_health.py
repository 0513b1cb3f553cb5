"""
Run health checks.

A completed run is healthy when its funnel shape is in the expected band.
``summarize_recent_runs`` rolls health up across recent runs and reports
whether compression, overlap and AI cost are trending up or down.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from core.run import Run, RunStatus, RunType

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS: Dict[str, float] = {
    "min_compression": 2.0,
    "max_compression": 10.0,
    "min_eligible": 50,
    "max_eligible": 200,
    "min_final": 1,
    "max_final": 10,
    "max_overlap": 80.0,
    "max_ai_cost": 10.0,
}


@dataclass
class RunHealth:
    run_id: str
    healthy: bool
    issues: List[str] = field(default_factory=list)
    metrics: Dict[str, float] = field(default_factory=dict)


def assess_run_health(run: Run, thresholds: Optional[Dict[str, float]] = None) -> RunHealth:
    t = {**DEFAULT_THRESHOLDS, **(thresholds or {})}
    m = run.metrics

    compression = float(m.get("compression_efficiency", 0.0) or 0.0)
    eligible = int(m.get("eligible_count", 0) or 0)
    final = int(m.get("final_count", 0) or 0)
    overlap = float(m.get("overlap_with_prev_run", 0.0) or 0.0)
    ai_cost = float(m.get("ai_cost", run.ai_cost) or 0.0)

    issues = []
    if compression < t["min_compression"] or compression > t["max_compression"]:
        issues.append("compression_out_of_range")
    if eligible < t["min_eligible"] or eligible > t["max_eligible"]:
        issues.append("eligible_count_out_of_range")
    if final < t["min_final"] or final > t["max_final"]:
        issues.append("final_count_out_of_range")
    if overlap > t["max_overlap"]:
        issues.append("high_overlap")
    if ai_cost > t["max_ai_cost"]:
        issues.append("high_ai_cost")

    return RunHealth(
        run_id=run.id,
        healthy=not issues,
        issues=issues,
        metrics={
            "compression_efficiency": compression,
            "eligible_count": eligible,
            "final_count": final,
            "overlap": overlap,
            "ai_cost": ai_cost,
        },
    )


def trend(values: Sequence[float]) -> str:
    """Compare the later half against the earlier half with a 10% band."""
    if len(values) < 2:
        return "stable"
    midpoint = len(values) // 2
    first = sum(values[:midpoint]) / midpoint
    second = sum(values[midpoint:]) / (len(values) - midpoint)
    if second > first * 1.1:
        return "increasing"
    if second < first * 0.9:
        return "decreasing"
    return "stable"


def summarize_recent_runs(
    store,
    run_type: Optional[RunType] = None,
    limit: int = 10,
    thresholds: Optional[Dict[str, float]] = None,
) -> Dict[str, Any]:
    """
    Health roll-up over the latest completed runs.

    Args:
        store: RunStore (or anything with ``recent_runs``)
    """
    runs = store.recent_runs(run_type=run_type, status=RunStatus.COMPLETED, limit=limit)
    runs = list(reversed(runs))  # oldest first, so "increasing" means over time

    reports = [assess_run_health(r, thresholds) for r in runs]
    issues = [
        {"run_id": h.run_id, "issues": h.issues, "metrics": h.metrics}
        for h in reports if not h.healthy
    ]

    trends: Dict[str, Any] = {}
    if reports:
        compressions = [h.metrics["compression_efficiency"] for h in reports]
        overlaps = [h.metrics["overlap"] for h in reports]
        costs = [h.metrics["ai_cost"] for h in reports]
        trends = {
            "compression_trend": trend(compressions),
            "overlap_trend": trend(overlaps),
            "ai_cost_trend": trend(costs),
            "avg_compression": round(sum(compressions) / len(compressions), 2),
            "avg_overlap": round(sum(overlaps) / len(overlaps), 2),
            "avg_ai_cost": round(sum(costs) / len(costs), 4),
        }

    summary = {
        "total_runs_checked": len(reports),
        "runs_with_issues": len(issues),
        "issues": issues,
        "trends": trends,
        "overall_health": "healthy" if not issues else "degraded",
    }
    if issues:
        logger.warning(f"{len(issues)}/{len(reports)} recent runs outside the expected band")
    return summary
