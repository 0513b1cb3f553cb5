"""
Layer 2: Trade quality ranking.

Scores each Layer 1 candidate on six sub-scores (max 100 total):
- Trend quality (25)
- Structure quality (20)
- Location quality (20)
- Volatility quality (15)
- Liquidity (10)
- Risk-reward potential (10)

The composite trade_quality_score blends that breakdown with the Layer 1
base and multi-timeframe scores. Pure function of its input; ties keep
Layer 1 order.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from core.candidate import Candidate, CandidateStage

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 30


class QualityRanker:

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.default_limit = int(self.config.get("limit", DEFAULT_LIMIT))
        weights = self.config.get("weights", {})
        self.quality_weight = float(weights.get("quality", 0.6))
        self.base_weight = float(weights.get("base", 0.25))
        self.mtf_weight = float(weights.get("mtf", 0.15))

    def rank(self, candidates: Sequence[Candidate], limit: Optional[int] = None) -> List[Candidate]:
        """
        Rank candidates by trade quality and keep the top ``limit``.

        Returns:
            New Candidate values at stage ``ranked`` with quality fields set
        """
        limit = self.default_limit if limit is None else limit
        if not candidates:
            return []

        scored = []
        for position, candidate in enumerate(candidates):
            breakdown = self.score_breakdown(candidate)
            total = round(sum(breakdown.values()), 2)
            composite = round(
                self.quality_weight * total
                + self.base_weight * candidate.base_score
                + self.mtf_weight * candidate.mtf_score,
                2,
            )
            tiebreak = candidate.layer1_rank if candidate.layer1_rank is not None else position + 1
            scored.append((composite, tiebreak, breakdown, candidate))

        scored.sort(key=lambda item: (-item[0], item[1]))

        ranked = [
            candidate.advance(
                CandidateStage.RANKED,
                trade_quality_score=composite,
                trade_quality_breakdown=breakdown,
                trade_quality_rank=index + 1,
            )
            for index, (composite, _, breakdown, candidate) in enumerate(scored[:limit])
        ]

        logger.info(f"Layer 2: ranked {len(ranked)} of {len(candidates)} candidates (limit={limit})")
        return ranked

    def score_breakdown(self, candidate: Candidate) -> Dict[str, float]:
        indicators = candidate.indicators or {}
        metadata = candidate.metadata or {}
        mtf = candidate.multi_timeframe or {}
        return {
            "trend_quality": self._trend_quality(indicators, mtf),
            "structure_quality": self._structure_quality(mtf, metadata),
            "location_quality": self._location_quality(candidate, indicators, metadata),
            "volatility_quality": self._volatility_quality(metadata),
            "liquidity": self._liquidity(indicators),
            "risk_reward": self._risk_reward(candidate, indicators),
        }

    @staticmethod
    def _trend_quality(indicators: Dict[str, Any], mtf: Dict[str, Any]) -> float:
        score = 0.0
        ema20, ema50, ema200 = indicators.get("ema20"), indicators.get("ema50"), indicators.get("ema200")

        if ema20 and ema50 and ema200:
            if ema20 > ema50 > ema200:
                gap_20_50 = abs((ema20 - ema50) / ema50 * 100)
                gap_50_200 = abs((ema50 - ema200) / ema200 * 100)
                if gap_20_50 > 2.0 and gap_50_200 > 2.0:
                    score += 15
                elif gap_20_50 > 1.0 and gap_50_200 > 1.0:
                    score += 10
                else:
                    score += 5
            elif ema20 > ema50:
                score += 5

        alignment = mtf.get("trend_alignment") or {}
        if isinstance(alignment, dict) and alignment.get("aligned"):
            bullish_count = alignment.get("bullish_count", 0) or 0
            if bullish_count >= 3:
                score += 10
            elif bullish_count >= 2:
                score += 5

        return round(min(score, 25.0), 2)

    @staticmethod
    def _structure_quality(mtf: Dict[str, Any], metadata: Dict[str, Any]) -> float:
        score = 0.0

        smc = metadata.get("smc_validation")
        if isinstance(smc, dict) and smc.get("valid"):
            score += 10
            score += float(smc.get("score") or 0)

        structure = mtf.get("structure") or {}
        bos = structure.get("bos") if isinstance(structure, dict) else None
        if isinstance(bos, dict) and bos.get("type") == "bullish":
            age = bos.get("age") or 0
            if age <= 10:
                score += 10
            elif age <= 20:
                score += 5

        if metadata.get("structure_pattern") == "HH-HL":
            score += 5

        return round(min(score, 20.0), 2)

    @staticmethod
    def _location_quality(candidate: Candidate, indicators: Dict[str, Any], metadata: Dict[str, Any]) -> float:
        close = candidate.latest_close
        if not close:
            return 0.0

        score = 0.0
        ema20, ema50 = indicators.get("ema20"), indicators.get("ema50")
        if ema20 and ema50:
            from_ema20 = abs((close - ema20) / ema20 * 100)
            from_ema50 = abs((close - ema50) / ema50 * 100)
            if from_ema20 <= 2.0:
                score += 10
            elif from_ema20 <= 5.0:
                score += 7
            elif from_ema50 <= 10.0:
                score += 5
            if from_ema20 > 10.0:
                score -= 5

        supertrend = indicators.get("supertrend") or {}
        st_value = supertrend.get("value") if isinstance(supertrend, dict) else None
        if st_value:
            from_st = abs((close - st_value) / st_value * 100)
            if from_st <= 3.0:
                score += 5
            elif from_st <= 5.0:
                score += 3

        momentum = metadata.get("momentum") or {}
        change_5d = momentum.get("change_5d")
        if change_5d is not None:
            if change_5d > 15.0:
                score -= 10
            elif change_5d > 10.0:
                score -= 5

        # A badly extended setup can go negative; it still sorts below a zero.
        return round(min(score, 20.0), 2)

    @staticmethod
    def _volatility_quality(metadata: Dict[str, Any]) -> float:
        volatility = metadata.get("volatility") or {}
        atr_pct = volatility.get("atr_percent")
        if atr_pct is None:
            return 0.0
        if 2.0 <= atr_pct <= 5.0:
            return 15.0
        if 1.5 <= atr_pct <= 6.0:
            return 10.0
        if 1.0 <= atr_pct <= 7.0:
            return 5.0
        return 0.0

    @staticmethod
    def _liquidity(indicators: Dict[str, Any]) -> float:
        volume = indicators.get("volume") or {}
        average = volume.get("average") or 0
        if not average:
            return 0.0
        ratio = volume.get("spike_ratio")
        if ratio is None:
            ratio = (volume.get("latest") or 0) / average
        if ratio >= 1.5:
            return 10.0
        if ratio >= 1.2:
            return 7.0
        if ratio >= 1.0:
            return 5.0
        return 2.0

    @staticmethod
    def _risk_reward(candidate: Candidate, indicators: Dict[str, Any]) -> float:
        close = candidate.latest_close
        atr = indicators.get("atr")
        if not close or not atr:
            return 0.0

        ema20, ema50 = indicators.get("ema20"), indicators.get("ema50")
        entry = ema20 if ema20 and close > ema20 else close
        if ema50 and entry > ema50:
            stop = ema50 * 0.98
        else:
            stop = entry - atr * 2

        risk = abs(entry - stop)
        if risk == 0:
            return 0.0

        target = entry + risk * 2.5
        if abs((target - close) / close * 100) > 15.0:
            return 2.0

        rr = abs(target - entry) / risk
        if rr >= 3.0:
            return 10.0
        if rr >= 2.5:
            return 8.0
        if rr >= 2.0:
            return 5.0
        return 0.0
