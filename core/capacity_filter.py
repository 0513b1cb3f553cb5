"""
Layer 4: Capacity filter and final selection.

Blends screener and AI scores, sorts, and splits candidates into tiers:
- tier_1: actionable now; combined score >= tier_1_min_score, not flagged
  avoid by the AI, and within current capacity
- tier_2: watchlist; combined score >= tier_2_min_score (tier_1 overflow
  lands here)
- tier_3: everything else

Capacity comes from the final limit, free position slots, exposure
headroom and the SystemContext (drawdown, losing streak, daily loss,
volatile regime).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.candidate import Candidate, CandidateStage
from core.system_context import PortfolioSnapshot, SystemContext

logger = logging.getLogger(__name__)

DEFAULT_FINAL_LIMITS = {"swing": 5, "longterm": 5}
DEFAULT_WEIGHTS = {
    "swing": {"screener": 0.6, "ai": 0.4},
    "longterm": {"screener": 0.7, "ai": 0.3},
}


@dataclass
class SelectionResult:
    tier_1: List[Candidate] = field(default_factory=list)
    tier_2: List[Candidate] = field(default_factory=list)
    tier_3: List[Candidate] = field(default_factory=list)
    capacity: int = 0
    blocked_reason: Optional[str] = None
    input_count: int = 0

    @property
    def final(self) -> List[Candidate]:
        return self.tier_1

    @property
    def summary(self) -> Dict[str, Any]:
        return {
            "input_count": self.input_count,
            "tier_1_count": len(self.tier_1),
            "tier_2_count": len(self.tier_2),
            "tier_3_count": len(self.tier_3),
            "final_count": len(self.tier_1),
            "capacity": self.capacity,
            "blocked_reason": self.blocked_reason,
        }


class CapacityFilter:

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.final_limits = {**DEFAULT_FINAL_LIMITS, **self.config.get("final_limit", {})}
        self.weights = {**DEFAULT_WEIGHTS, **self.config.get("weights", {})}
        self.tier_1_min_score = float(self.config.get("tier_1_min_score", 60.0))
        self.tier_2_min_score = float(self.config.get("tier_2_min_score", 40.0))
        self.max_open_positions = int(self.config.get("max_open_positions", 10))
        self.max_exposure_pct = float(self.config.get("max_exposure_pct", 80.0))
        self.max_drawdown_pct = float(self.config.get("max_drawdown_pct", 15.0))
        self.max_consecutive_losses = int(self.config.get("max_consecutive_losses", 3))
        self.daily_loss_limit_pct = float(self.config.get("daily_loss_limit_pct", 2.0))

    def select(
        self,
        candidates: Sequence[Candidate],
        run_type: str = "swing",
        portfolio: Optional[PortfolioSnapshot] = None,
        context: Optional[SystemContext] = None,
        final_limit: Optional[int] = None,
    ) -> SelectionResult:
        """
        Tier candidates against current capacity.

        Empty input returns an empty result; this never raises on empty input.
        """
        result = SelectionResult(input_count=len(candidates))
        if not candidates:
            logger.info("Layer 4: no candidates to select from")
            return result

        limit = final_limit if final_limit is not None else int(self.final_limits.get(run_type, 5))
        capacity, blocked = self.capacity(limit, portfolio, context)
        result.capacity = capacity
        result.blocked_reason = blocked

        scored = [(self.combined_score(c, run_type), c) for c in candidates]
        scored.sort(key=lambda item: -item[0])

        for combined, candidate in scored:
            eligible_t1 = combined >= self.tier_1_min_score and not candidate.ai_avoid
            if eligible_t1 and len(result.tier_1) < capacity:
                result.tier_1.append(
                    candidate.advance(
                        CandidateStage.FINAL,
                        combined_score=combined,
                        tier="tier_1",
                        rank=len(result.tier_1) + 1,
                    )
                )
            elif combined >= self.tier_2_min_score:
                result.tier_2.append(candidate.advance(candidate.stage, combined_score=combined, tier="tier_2"))
            else:
                result.tier_3.append(candidate.advance(candidate.stage, combined_score=combined, tier="tier_3"))

        logger.info(
            f"Layer 4: {len(result.tier_1)} final of {len(candidates)} "
            f"(capacity={capacity}, tier_2={len(result.tier_2)}, tier_3={len(result.tier_3)}"
            f"{', blocked=' + blocked if blocked else ''})"
        )
        return result

    def combined_score(self, candidate: Candidate, run_type: str = "swing") -> float:
        if candidate.ai_confidence is None:
            return round(candidate.score, 2)
        weights = self.weights.get(run_type) or DEFAULT_WEIGHTS["swing"]
        ai_score = candidate.ai_confidence * 10
        return round(weights["screener"] * candidate.score + weights["ai"] * ai_score, 2)

    def capacity(
        self,
        limit: int,
        portfolio: Optional[PortfolioSnapshot],
        context: Optional[SystemContext],
    ) -> Tuple[int, Optional[str]]:
        """
        Slots available for new tier_1 picks.

        Returns:
            (capacity, reason) where reason names the block when capacity is 0
        """
        capacity = max(limit, 0)

        if context is not None:
            if context.drawdown >= self.max_drawdown_pct:
                return 0, f"drawdown {context.drawdown:.1f}% >= {self.max_drawdown_pct:.1f}%"
            if context.consecutive_losses >= self.max_consecutive_losses:
                return 0, f"{context.consecutive_losses} consecutive losses"

        if portfolio is not None:
            if context is not None and portfolio.capital > 0:
                loss_limit = -portfolio.capital * self.daily_loss_limit_pct / 100
                if context.today_pnl <= loss_limit:
                    return 0, f"daily loss {context.today_pnl:.2f} beyond limit {loss_limit:.2f}"

            free_slots = self.max_open_positions - portfolio.open_positions_count
            if free_slots <= 0:
                return 0, f"max open positions ({self.max_open_positions}) reached"
            capacity = min(capacity, free_slots)

            if portfolio.capital > 0:
                exposure_pct = portfolio.total_exposure / portfolio.capital * 100
                if exposure_pct >= self.max_exposure_pct:
                    return 0, f"exposure {exposure_pct:.1f}% >= {self.max_exposure_pct:.1f}%"

        if context is not None and context.is_volatile and capacity > 1:
            capacity = max(capacity // 2, 1)

        return capacity, None
