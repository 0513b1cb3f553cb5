"""
Layer 1: Eligibility screening.

Scores every instrument in the universe from its indicator facts and keeps
the best ``limit``. Instruments with missing or too-short data are skipped;
an error on one instrument never stops the screen.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from core.candidate import Candidate, CandidateStage, IndicatorFacts
from core.exceptions import InsufficientIndicatorData
from core.indicator_provider import IndicatorProvider
from core.universe import Instrument

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50


@dataclass
class ScreenResult:
    """Output of one Layer 1 pass"""
    candidates: List[Candidate]
    screened: int = 0
    skipped_insufficient: int = 0
    skipped_price: int = 0
    skipped_score: int = 0
    errors: List[str] = field(default_factory=list)


class EligibilityScreener:
    """
    Layer 1 screener.

    Scoring (normalized to 0-100 over the points that applied):
    - EMA20 > EMA50: 15, EMA20 > EMA200: 15
    - Supertrend bullish: 20
    - ADX > 25: 15, > 20: 10 (out of 15)
    - RSI in (50, 70): 10, in (40, 60): 5 (out of 10)
    - MACD line above signal: 10
    - Volume spike >= min_volume_spike: 15

    The final score blends that base score with the multi-timeframe score.
    """

    def __init__(self, provider: IndicatorProvider, config: Optional[Dict[str, Any]] = None):
        self.provider = provider
        self.config = config or {}
        self.min_candles = int(self.config.get("min_candles", 50))
        self.min_price = float(self.config.get("min_price", 50))
        self.max_price = float(self.config.get("max_price", 50_000))
        self.exclude_penny_stocks = bool(self.config.get("exclude_penny_stocks", False))
        self.min_score = float(self.config.get("min_score", 0.0))
        self.default_limit = int(self.config.get("limit", DEFAULT_LIMIT))
        self.base_weight = float(self.config.get("base_weight", 0.6))
        self.mtf_weight = float(self.config.get("mtf_weight", 0.4))
        self.use_ema200 = bool(self.config.get("use_ema200", True))
        self.require_volume_confirmation = bool(self.config.get("require_volume_confirmation", True))
        self.min_volume_spike = float(self.config.get("min_volume_spike", 1.5))

    def screen(
        self,
        universe: Sequence[Instrument],
        run_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> ScreenResult:
        """
        Screen the universe.

        Args:
            universe: Instruments to score
            run_id: Run the resulting candidates belong to
            limit: Result cap (defaults to configured limit)

        Returns:
            ScreenResult with candidates sorted by score, highest first
        """
        limit = self.default_limit if limit is None else limit
        result = ScreenResult(candidates=[])
        scored: List[Candidate] = []

        for instrument in universe:
            result.screened += 1
            try:
                facts = self.provider.get_facts(instrument)
                if facts.candles_count < self.min_candles:
                    raise InsufficientIndicatorData(
                        instrument.symbol, f"{facts.candles_count} candles < {self.min_candles}"
                    )
                if not self._passes_price_filter(instrument, facts):
                    result.skipped_price += 1
                    continue
                candidate = self._analyze(instrument, facts, run_id)
            except InsufficientIndicatorData as e:
                logger.debug(f"Skipping {instrument.symbol}: {e.reason}")
                result.skipped_insufficient += 1
                continue
            except Exception as e:
                logger.warning(f"Screening failed for {instrument.symbol}: {e}", exc_info=True)
                result.errors.append(f"{instrument.symbol}: {e}")
                continue

            if candidate.score < self.min_score:
                result.skipped_score += 1
                continue
            scored.append(candidate)

        ranked = sorted(scored, key=lambda c: -c.score)[:limit]
        result.candidates = [c.with_rank(i + 1) for i, c in enumerate(ranked)]

        logger.info(
            f"Layer 1: {len(result.candidates)} eligible of {result.screened} screened "
            f"(insufficient={result.skipped_insufficient}, price={result.skipped_price}, "
            f"below_min_score={result.skipped_score}, errors={len(result.errors)})"
        )
        return result

    def _passes_price_filter(self, instrument: Instrument, facts: IndicatorFacts) -> bool:
        price = instrument.ltp if instrument.ltp is not None else facts.latest_close
        if price is None:
            return True
        if price < self.min_price or price > self.max_price:
            return False
        if self.exclude_penny_stocks and price < 10:
            return False
        return True

    def _analyze(self, instrument: Instrument, facts: IndicatorFacts, run_id: Optional[str]) -> Candidate:
        base_score = self.base_score(facts)
        mtf_score = facts.mtf_score
        score = round(base_score * self.base_weight + mtf_score * self.mtf_weight, 2)

        return Candidate(
            instrument_id=instrument.instrument_id,
            symbol=instrument.symbol,
            run_id=run_id,
            score=score,
            base_score=base_score,
            mtf_score=mtf_score,
            stage=CandidateStage.SCREENED,
            metadata=self._build_metadata(instrument, facts),
            indicators=facts.indicator_snapshot(),
            multi_timeframe=dict(facts.multi_timeframe),
        )

    def base_score(self, facts: IndicatorFacts) -> float:
        score = 0.0
        possible = 0.0

        if facts.ema20 is not None and facts.ema50 is not None:
            possible += 15
            if facts.ema20 > facts.ema50:
                score += 15

        if self.use_ema200 and facts.ema20 is not None and facts.ema200 is not None:
            possible += 15
            if facts.ema20 > facts.ema200:
                score += 15

        if facts.supertrend_direction:
            possible += 20
            if facts.supertrend_bullish:
                score += 20

        if facts.adx is not None:
            possible += 15
            if facts.adx > 25:
                score += 15
            elif facts.adx > 20:
                score += 10

        if facts.rsi is not None:
            possible += 10
            if 50 < facts.rsi < 70:
                score += 10
            elif 40 < facts.rsi < 60:
                score += 5

        if facts.macd_line is not None and facts.macd_signal is not None:
            possible += 10
            if facts.macd_bullish:
                score += 10

        if self.require_volume_confirmation and facts.volume_average:
            possible += 15
            if facts.volume_spike_ratio >= self.min_volume_spike:
                score += 15

        return round(score / possible * 100, 2) if possible > 0 else 0.0

    def _build_metadata(self, instrument: Instrument, facts: IndicatorFacts) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            "ltp": instrument.ltp if instrument.ltp is not None else facts.latest_close,
            "candles_count": facts.candles_count,
            "trend_alignment": self._trend_alignment(facts),
            "volatility": self._volatility(facts),
            "momentum": self._momentum(facts),
            "setup_status": facts.setup_status,
            "trend_flags": list(facts.trend_flags),
            "momentum_flags": list(facts.momentum_flags),
        }
        if facts.multi_timeframe:
            metadata["multi_timeframe"] = {
                "score": facts.multi_timeframe.get("score"),
                "trend_alignment": facts.multi_timeframe.get("trend_alignment"),
                "momentum_alignment": facts.multi_timeframe.get("momentum_alignment"),
                "timeframes_analyzed": list(facts.multi_timeframe.get("timeframes", []) or []),
            }
        for key in ("smc_validation", "structure_pattern", "recent_swing_low", "recent_swing_high",
                    "index_trend", "sector_strength"):
            if key in facts.extra:
                metadata[key] = facts.extra[key]
        return metadata

    @staticmethod
    def _trend_alignment(facts: IndicatorFacts) -> List[str]:
        alignment = []
        if facts.ema20 is not None and facts.ema50 is not None and facts.ema20 > facts.ema50:
            alignment.append("ema_bullish")
        if facts.supertrend_bullish:
            alignment.append("supertrend_bullish")
        if facts.macd_bullish:
            alignment.append("macd_bullish")
        return alignment

    @staticmethod
    def _volatility(facts: IndicatorFacts) -> Optional[Dict[str, Any]]:
        if not facts.atr or not facts.latest_close:
            return None
        atr_pct = round(facts.atr / facts.latest_close * 100, 2)
        if atr_pct < 2:
            level = "low"
        elif atr_pct < 5:
            level = "medium"
        else:
            level = "high"
        return {"atr": facts.atr, "atr_percent": atr_pct, "level": level}

    @staticmethod
    def _momentum(facts: IndicatorFacts) -> Optional[Dict[str, Any]]:
        if facts.change_5d is None and facts.rsi is None:
            return None
        level = "neutral"
        if facts.rsi is not None:
            if facts.rsi <= 30:
                level = "oversold"
            elif facts.rsi >= 70:
                level = "overbought"
        return {"change_5d": facts.change_5d, "rsi": facts.rsi, "level": level}
