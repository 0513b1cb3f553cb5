"""
Candidate -> TradeFacts / TradeIntent / TradeRecommendation.

Pure functions over the values a finished Run produces. Nothing here
recomputes indicators; flags are read off the candidate's indicator
snapshot.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from core.candidate import Candidate
from strategy.trade_intent import (
    BIAS_AVOID,
    BIAS_LONG,
    TradeFacts,
    TradeIntent,
    TradeRecommendation,
)

logger = logging.getLogger(__name__)

DEFAULT_RISK_PCT = 0.75          # % of capital risked per trade
DEFAULT_MAX_POSITION_PCT = 20.0  # % of capital in one position
DEFAULT_TP_MULTIPLE = 2.5        # primary target = entry + 2.5R
DEFAULT_EXTENDED_MULTIPLE = 4.0  # secondary target = entry + 4R
DEFAULT_ATR_STOP_MULTIPLE = 2.0
DEFAULT_EMA_ENTRY_BAND_PCT = 2.0


@dataclass
class PositionSize:
    quantity: int
    capital_used: float
    risk_amount: float
    position_pct: float


def build_trade_facts(candidate: Candidate, timeframe: str = "swing") -> TradeFacts:
    """Extract trend and momentum flags from a candidate's indicator snapshot."""
    indicators = candidate.indicators or {}
    return TradeFacts(
        symbol=candidate.symbol,
        instrument_id=candidate.instrument_id,
        timeframe=timeframe,
        indicators_snapshot=dict(indicators),
        trend_flags=tuple(_trend_flags(indicators)),
        momentum_flags=tuple(_momentum_flags(indicators)),
        screener_score=candidate.score,
        setup_status=candidate.metadata.get("setup_status"),
    )


def _trend_flags(indicators: Dict[str, Any]) -> List[str]:
    flags = []
    ema20, ema50, ema200 = indicators.get("ema20"), indicators.get("ema50"), indicators.get("ema200")
    if ema20 is not None and ema50 is not None:
        if ema20 > ema50:
            flags.append("ema_bullish")
        elif ema20 < ema50:
            flags.append("ema_bearish")
    if ema20 is not None and ema200 is not None:
        if ema20 > ema200:
            flags.append("ema200_bullish")
        elif ema20 < ema200:
            flags.append("ema200_bearish")

    supertrend = indicators.get("supertrend") or {}
    direction = supertrend.get("direction") if isinstance(supertrend, dict) else None
    if direction == "bullish":
        flags.append("supertrend_bullish")
    elif direction == "bearish":
        flags.append("supertrend_bearish")

    if "ema_bullish" in flags and "supertrend_bullish" in flags:
        flags.append("bullish")
    if "ema_bearish" in flags and "supertrend_bearish" in flags:
        flags.append("bearish")
    return flags


def _momentum_flags(indicators: Dict[str, Any]) -> List[str]:
    flags = []
    rsi = indicators.get("rsi")
    if rsi is not None:
        if rsi < 30:
            flags.append("rsi_oversold")
        elif rsi > 70:
            flags.append("rsi_overbought")
        if 50 < rsi < 70:
            flags.append("rsi_bullish")
        elif 30 < rsi < 50:
            flags.append("rsi_bearish")

    macd = indicators.get("macd") or {}
    line, signal = macd.get("line"), macd.get("signal")
    if line is not None and signal is not None:
        if line > signal:
            flags.append("macd_bullish")
        elif line < signal:
            flags.append("macd_bearish")

    adx = indicators.get("adx")
    if adx is not None:
        if adx > 25:
            flags.append("adx_strong")
        elif adx < 20:
            flags.append("adx_weak")
    return flags


def build_trade_intent(
    candidate: Candidate,
    config: Optional[Dict[str, Any]] = None,
    facts: Optional[TradeFacts] = None,
) -> Optional[TradeIntent]:
    """
    Propose entry, stop and targets for a candidate.

    Entry is EMA20 when the close sits within the EMA band around it,
    otherwise the close. Stop is the tighter of the ATR stop, EMA50 (when
    below entry) and the recent swing low. Bias is long only for bullish,
    READY setups the AI did not flag; everything else is avoid.

    Returns:
        TradeIntent, or None when the price levels cannot be computed
    """
    config = config or {}
    facts = facts or build_trade_facts(candidate)
    indicators = candidate.indicators or {}

    close = candidate.latest_close
    ema20 = indicators.get("ema20")
    ema50 = indicators.get("ema50")
    atr = indicators.get("atr")
    if not close or not ema20 or not atr:
        logger.debug(f"{candidate.symbol}: missing close/ema20/atr, no trade intent")
        return None

    band = float(config.get("ema_entry_band_pct", DEFAULT_EMA_ENTRY_BAND_PCT))
    distance_pct = (close - ema20) / ema20 * 100
    entry = ema20 if -band <= distance_pct <= band else close

    stops = [entry - atr * float(config.get("atr_stop_multiple", DEFAULT_ATR_STOP_MULTIPLE))]
    if ema50 is not None and ema50 < entry:
        stops.append(ema50)
    swing_low = candidate.metadata.get("recent_swing_low")
    if swing_low is not None and swing_low < entry:
        stops.append(float(swing_low))
    stop = max(stops)

    risk = entry - stop
    if risk <= 0:
        logger.debug(f"{candidate.symbol}: non-positive risk per share, no trade intent")
        return None

    target = entry + risk * float(config.get("tp_multiple", DEFAULT_TP_MULTIPLE))
    swing_high = candidate.metadata.get("recent_swing_high")
    if swing_high is not None and entry < swing_high <= target * 1.2:
        target = float(swing_high)
    extended = entry + risk * float(config.get("extended_multiple", DEFAULT_EXTENDED_MULTIPLE))

    if candidate.ai_avoid or not facts.ready or not facts.bullish:
        bias = BIAS_AVOID
    else:
        bias = BIAS_LONG

    return TradeIntent(
        bias=bias,
        proposed_entry=round(entry, 2),
        proposed_sl=round(stop, 2),
        proposed_targets=((round(target, 2), 0.6), (round(extended, 2), 0.3)),
        expected_rr=round((target - entry) / risk, 2),
        sizing_hint=_sizing_hint(candidate),
        strategy_key=f"{facts.timeframe}_trading",
    )


def _sizing_hint(candidate: Candidate) -> str:
    evaluation = candidate.ai_evaluation or {}
    if not evaluation:
        return "medium"
    confidence = float(evaluation.get("confidence", 0.0))
    bias = evaluation.get("continuation_bias")
    if bias == "high" and confidence >= 8.0:
        return "large"
    if bias == "low" or confidence < 6.5:
        return "small"
    return "medium"


def size_position(
    intent: TradeIntent,
    capital: float,
    risk_pct: float = DEFAULT_RISK_PCT,
    max_position_pct: float = DEFAULT_MAX_POSITION_PCT,
) -> PositionSize:
    """
    Risk-based quantity capped by a max position size.

    quantity = min(floor(capital * risk_pct% / risk_per_share),
                   floor(capital * max_position_pct% / entry))
    """
    risk_per_share = intent.risk_per_share
    if capital <= 0 or risk_per_share <= 0 or intent.proposed_entry <= 0:
        return PositionSize(quantity=0, capital_used=0.0, risk_amount=0.0, position_pct=0.0)

    by_risk = math.floor(capital * risk_pct / 100 / risk_per_share)
    by_capital = math.floor(capital * max_position_pct / 100 / intent.proposed_entry)
    quantity = max(min(by_risk, by_capital), 0)

    capital_used = round(quantity * intent.proposed_entry, 2)
    return PositionSize(
        quantity=quantity,
        capital_used=capital_used,
        risk_amount=round(quantity * risk_per_share, 2),
        position_pct=round(capital_used / capital * 100, 2),
    )


def build_recommendation(
    candidate: Candidate,
    capital: float,
    config: Optional[Dict[str, Any]] = None,
    timeframe: str = "swing",
) -> Optional[TradeRecommendation]:
    """
    Full candidate -> recommendation path used before the decision gates.

    Confidence is the AI confidence on the 0-100 scale when the candidate
    was evaluated, otherwise its screener score.
    """
    config = config or {}
    facts = build_trade_facts(candidate, timeframe=timeframe)
    intent = build_trade_intent(candidate, config, facts=facts)
    if intent is None:
        return None

    size = size_position(
        intent,
        capital,
        risk_pct=float(config.get("risk_pct", DEFAULT_RISK_PCT)),
        max_position_pct=float(config.get("max_position_pct", DEFAULT_MAX_POSITION_PCT)),
    )
    confidence = candidate.ai_confidence * 10 if candidate.ai_confidence is not None else candidate.score
    evaluation = candidate.ai_evaluation or {}
    invalidation = [evaluation["invalidate_if"]] if evaluation.get("invalidate_if") else []

    return TradeRecommendation.from_intent(
        facts,
        intent,
        quantity=size.quantity,
        risk_amount=size.risk_amount,
        confidence_score=confidence,
        invalidation_conditions=invalidation,
    )
