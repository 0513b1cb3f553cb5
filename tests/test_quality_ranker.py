"""
Tests for Layer 2 trade quality ranking.
"""

import pytest

from core.candidate import CandidateStage
from core.quality_ranker import QualityRanker
from core.screener import EligibilityScreener
from tests.helpers import make_candidate, make_facts, make_provider, make_universe


def screened(*facts):
    """Run facts through Layer 1 so metadata looks like production output."""
    screener = EligibilityScreener(make_provider(facts))
    return screener.screen(make_universe([f.symbol for f in facts]), run_id="run-1").candidates


class TestScoreBreakdown:

    def test_strong_setup_sub_scores(self):
        candidate = screened(make_facts("TCS"))[0]
        breakdown = QualityRanker().score_breakdown(candidate)

        assert set(breakdown) == {
            "trend_quality", "structure_quality", "location_quality",
            "volatility_quality", "liquidity", "risk_reward",
        }
        assert breakdown["trend_quality"] == 25.0
        assert breakdown["structure_quality"] == 0.0
        assert breakdown["volatility_quality"] == 15.0
        assert breakdown["liquidity"] == 10.0

    def test_structure_from_smc_and_pattern(self):
        candidate = make_candidate(
            metadata={"smc_validation": {"valid": True, "score": 3}, "structure_pattern": "HH-HL"},
        )
        assert QualityRanker().score_breakdown(candidate)["structure_quality"] == 18.0

    def test_structure_capped_at_20(self):
        candidate = make_candidate(
            metadata={"smc_validation": {"valid": True, "score": 8}, "structure_pattern": "HH-HL"},
        )
        assert QualityRanker().score_breakdown(candidate)["structure_quality"] == 20.0

    def test_extended_location_can_go_negative(self):
        candidate = make_candidate(
            facts=make_facts("TCS", latest_close=120.0),
            metadata={"momentum": {"change_5d": 16.0}},
        )
        assert QualityRanker().score_breakdown(candidate)["location_quality"] == -15.0

    def test_missing_price_scores_zero_location(self):
        candidate = make_candidate(facts=make_facts("TCS", latest_close=None))
        breakdown = QualityRanker().score_breakdown(candidate)
        assert breakdown["location_quality"] == 0.0
        assert breakdown["risk_reward"] == 0.0


class TestRank:

    def test_composite_blend(self):
        candidate = screened(make_facts("TCS"))[0]
        ranker = QualityRanker()

        ranked = ranker.rank([candidate])[0]
        breakdown = ranker.score_breakdown(candidate)
        expected = round(0.6 * round(sum(breakdown.values()), 2) + 0.25 * 100.0 + 0.15 * 80.0, 2)

        assert ranked.trade_quality_score == pytest.approx(expected)
        assert ranked.trade_quality_breakdown == breakdown
        assert ranked.trade_quality_rank == 1
        assert ranked.stage == CandidateStage.RANKED

    def test_orders_by_composite(self):
        weak = make_facts("LAG", ema50=99.5, ema200=99.0, volume_latest=900_000.0)
        candidates = screened(weak, make_facts("LEAD"))

        ranked = QualityRanker().rank(candidates)
        assert [c.symbol for c in ranked] == ["LEAD", "LAG"]
        assert ranked[0].trade_quality_score > ranked[1].trade_quality_score

    def test_ties_keep_layer1_order(self):
        candidates = screened(make_facts("AAA"), make_facts("BBB"), make_facts("CCC"))
        by_layer1 = sorted(candidates, key=lambda c: c.layer1_rank)

        ranked = QualityRanker().rank(list(reversed(by_layer1)))

        assert [c.symbol for c in ranked] == [c.symbol for c in by_layer1]
        assert [c.layer1_rank for c in ranked] == [1, 2, 3]
        assert [c.trade_quality_rank for c in ranked] == [1, 2, 3]

    def test_limit(self):
        candidates = screened(*[make_facts(f"S{i:02d}") for i in range(40)])

        assert len(QualityRanker().rank(candidates)) == 30
        assert len(QualityRanker({"limit": 10}).rank(candidates)) == 10
        assert len(QualityRanker().rank(candidates, limit=5)) == 5

    def test_empty_input(self):
        assert QualityRanker().rank([]) == []

    def test_input_not_mutated(self):
        candidate = screened(make_facts("TCS"))[0]
        QualityRanker().rank([candidate])

        assert candidate.trade_quality_score is None
        assert candidate.stage == CandidateStage.SCREENED
