"""
Shared plumbing for the pre-execution decision gates.

A gate is an ordered chain of rules. Each rule looks at a recommendation
and returns the violations it found (empty list = pass). The gate result
collects every violation; the reason cites the first one.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Sequence

Rule = Callable[[Any, Dict[str, Any]], List[str]]


@dataclass(frozen=True)
class GateResult:
    approved: bool
    reason: str
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"approved": self.approved, "reason": self.reason, "errors": list(self.errors)}


def run_gate(
    recommendation: Any,
    rules: Sequence[Rule],
    config: Dict[str, Any],
    failure_prefix: str,
    success_reason: str,
) -> GateResult:
    """
    Evaluate ``rules`` in order and fold their violations into a GateResult.

    Args:
        recommendation: Object exposing the TradeRecommendation interface
        rules: Rule callables, evaluated in order
        config: Gate thresholds passed through to each rule
        failure_prefix: Reason prefix on rejection, e.g. "Validation failed"
        success_reason: Reason on approval
    """
    errors: List[str] = []
    for rule in rules:
        errors.extend(rule(recommendation, config))

    if errors:
        return GateResult(approved=False, reason=f"{failure_prefix}: {errors[0]}", errors=errors)
    return GateResult(approved=True, reason=success_reason, errors=[])
