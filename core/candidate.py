"""
Candidate data model.

IndicatorFacts are the per-instrument inputs handed to the funnel by an
external provider. A Candidate is created by Layer 1 and every later layer
produces a new Candidate value with extra fields appended; an existing
Candidate is never mutated.
"""

from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional


class CandidateStage(str, Enum):
    SCREENED = "screened"
    RANKED = "ranked"
    AI_EVALUATED = "ai_evaluated"
    FINAL = "final"

    @property
    def order(self) -> int:
        return _STAGE_ORDER.index(self)


_STAGE_ORDER = [
    CandidateStage.SCREENED,
    CandidateStage.RANKED,
    CandidateStage.AI_EVALUATED,
    CandidateStage.FINAL,
]


@dataclass(frozen=True)
class IndicatorFacts:
    """Precomputed indicator values for one instrument."""
    instrument_id: str
    symbol: str
    candles_count: int
    latest_close: Optional[float] = None
    ema20: Optional[float] = None
    ema50: Optional[float] = None
    ema200: Optional[float] = None
    rsi: Optional[float] = None
    adx: Optional[float] = None
    atr: Optional[float] = None
    macd_line: Optional[float] = None
    macd_signal: Optional[float] = None
    supertrend_direction: Optional[str] = None   # "bullish" / "bearish"
    supertrend_value: Optional[float] = None
    volume_latest: Optional[float] = None
    volume_average: Optional[float] = None
    change_5d: Optional[float] = None
    setup_status: Optional[str] = None            # "READY" / "NOT_READY" / ...
    trend_flags: List[str] = field(default_factory=list)
    momentum_flags: List[str] = field(default_factory=list)
    multi_timeframe: Dict[str, Any] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndicatorFacts":
        """Build facts from a plain mapping, keeping unknown keys in ``extra``."""
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        extra = dict(kwargs.pop("extra", {}) or {})
        extra.update({k: v for k, v in data.items() if k not in known})
        kwargs["instrument_id"] = str(kwargs.get("instrument_id", data.get("symbol", "")))
        kwargs["candles_count"] = int(kwargs.get("candles_count", 0) or 0)
        return cls(extra=extra, **kwargs)

    @property
    def volume_spike_ratio(self) -> float:
        if not self.volume_average:
            return 0.0
        return (self.volume_latest or 0.0) / self.volume_average

    @property
    def supertrend_bullish(self) -> bool:
        return self.supertrend_direction == "bullish"

    @property
    def macd_bullish(self) -> bool:
        if self.macd_line is None or self.macd_signal is None:
            return False
        return self.macd_line > self.macd_signal

    @property
    def mtf_score(self) -> float:
        return float(self.multi_timeframe.get("score") or 0.0)

    def indicator_snapshot(self) -> Dict[str, Any]:
        """Indicator values in the shape later layers and the prompt consume."""
        supertrend = None
        if self.supertrend_direction:
            supertrend = {
                "direction": self.supertrend_direction,
                "value": self.supertrend_value,
            }
        return {
            "latest_close": self.latest_close,
            "ema20": self.ema20,
            "ema50": self.ema50,
            "ema200": self.ema200,
            "rsi": self.rsi,
            "adx": self.adx,
            "atr": self.atr,
            "macd": {"line": self.macd_line, "signal": self.macd_signal},
            "supertrend": supertrend,
            "volume": {
                "latest": self.volume_latest,
                "average": self.volume_average,
                "spike_ratio": round(self.volume_spike_ratio, 2),
            },
        }


@dataclass(frozen=True)
class Candidate:
    """
    Instrument that survived at least Layer 1 of a Run.

    Fields past ``multi_timeframe`` are filled in by later layers through
    ``advance``; once set they are never overwritten.
    """
    instrument_id: str
    symbol: str
    run_id: Optional[str]
    score: float
    base_score: float
    mtf_score: float
    stage: CandidateStage = CandidateStage.SCREENED
    metadata: Dict[str, Any] = field(default_factory=dict)
    indicators: Dict[str, Any] = field(default_factory=dict)
    multi_timeframe: Dict[str, Any] = field(default_factory=dict)

    layer1_rank: Optional[int] = None
    trade_quality_score: Optional[float] = None
    trade_quality_breakdown: Optional[Dict[str, float]] = None
    trade_quality_rank: Optional[int] = None
    ai_confidence: Optional[float] = None
    ai_evaluation: Optional[Dict[str, Any]] = None
    ai_cached: Optional[bool] = None
    combined_score: Optional[float] = None
    tier: Optional[str] = None
    rank: Optional[int] = None

    def advance(self, stage: CandidateStage, **enrichment: Any) -> "Candidate":
        """
        Return a copy at ``stage`` with ``enrichment`` appended.

        Raises:
            ValueError: if the stage moves backwards or an already-set
                field would be overwritten
        """
        if stage.order < self.stage.order:
            raise ValueError(f"{self.symbol}: cannot move from {self.stage.value} back to {stage.value}")
        for name, value in enrichment.items():
            current = getattr(self, name)
            if current is not None and current != value:
                raise ValueError(f"{self.symbol}: field '{name}' already set")
        return replace(self, stage=stage, **enrichment)

    def with_rank(self, layer1_rank: int) -> "Candidate":
        return self.advance(self.stage, layer1_rank=layer1_rank)

    @property
    def ai_avoid(self) -> bool:
        return bool(self.ai_evaluation and self.ai_evaluation.get("avoid"))

    @property
    def latest_close(self) -> Optional[float]:
        return self.indicators.get("latest_close") or self.metadata.get("ltp")

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record["stage"] = self.stage.value
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Candidate":
        data = dict(record)
        data["stage"] = CandidateStage(data["stage"])
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
