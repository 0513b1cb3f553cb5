"""
Read-only snapshot of account and market state used by decision layers.

Built once per decision from an AccountSnapshot and never updated; a new
decision captures a new context.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo

import yaml

from core.exceptions import CriticalDataUnavailable

logger = logging.getLogger(__name__)

MARKET_TZ = ZoneInfo("Asia/Kolkata")

REGIME_BULLISH = "bullish"
REGIME_BEARISH = "bearish"
REGIME_NEUTRAL = "neutral"
REGIME_VOLATILE = "volatile"
REGIMES = (REGIME_BULLISH, REGIME_BEARISH, REGIME_NEUTRAL, REGIME_VOLATILE)

PRE_MARKET_START = time(9, 0)
MARKET_OPEN = time(9, 15)
MARKET_CLOSE = time(15, 30)
POST_MARKET_END = time(16, 0)


@dataclass(frozen=True)
class OpenPosition:
    symbol: str
    entry_price: float
    quantity: int


@dataclass(frozen=True)
class ClosedTrade:
    closed_at: datetime
    realized_pnl: float


@dataclass(frozen=True)
class AccountSnapshot:
    """Account state as reported by the account provider."""
    capital: float
    max_drawdown_pct: float = 0.0
    open_positions: List[OpenPosition] = field(default_factory=list)
    closed_trades: List[ClosedTrade] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccountSnapshot":
        positions = [
            OpenPosition(
                symbol=p["symbol"],
                entry_price=float(p["entry_price"]),
                quantity=int(p["quantity"]),
            )
            for p in data.get("open_positions", [])
        ]
        trades = []
        for t in data.get("closed_trades", []):
            closed_at = t["closed_at"]
            if isinstance(closed_at, str):
                closed_at = datetime.fromisoformat(closed_at)
            if closed_at.tzinfo is None:
                closed_at = closed_at.replace(tzinfo=MARKET_TZ)
            trades.append(ClosedTrade(closed_at=closed_at, realized_pnl=float(t["realized_pnl"])))
        return cls(
            capital=float(data.get("capital", 0.0)),
            max_drawdown_pct=float(data.get("max_drawdown_pct", 0.0)),
            open_positions=positions,
            closed_trades=trades,
        )

    @property
    def total_exposure(self) -> float:
        return sum(p.entry_price * p.quantity for p in self.open_positions)


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Capacity inputs for Layer 4."""
    capital: float
    total_exposure: float = 0.0
    open_positions_count: int = 0

    @classmethod
    def from_account(cls, account: AccountSnapshot) -> "PortfolioSnapshot":
        return cls(
            capital=account.capital,
            total_exposure=account.total_exposure,
            open_positions_count=len(account.open_positions),
        )


def time_of_day(now: Optional[datetime] = None) -> str:
    """Classify ``now`` against the exchange session (Asia/Kolkata)."""
    now = (now or datetime.now(timezone.utc)).astimezone(MARKET_TZ)
    if now.weekday() >= 5:
        return "after_hours"
    t = now.time()
    if t < PRE_MARKET_START:
        return "pre_market"
    if MARKET_OPEN <= t <= MARKET_CLOSE:
        return "market_hours"
    if MARKET_CLOSE < t < POST_MARKET_END:
        return "post_market"
    return "after_hours"


@dataclass(frozen=True)
class SystemContext:
    market_regime: str = REGIME_NEUTRAL
    recent_pnl: Mapping[str, float] = field(default_factory=dict)
    drawdown: float = 0.0
    open_positions: Mapping[str, float] = field(default_factory=dict)
    time_of_day: str = "after_hours"
    trading_day_stats: Mapping[str, int] = field(default_factory=dict)
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if self.market_regime not in REGIMES:
            raise ValueError(f"Unknown market regime: {self.market_regime}")
        # Nested maps are copied and exposed read-only
        for name in ("recent_pnl", "open_positions", "trading_day_stats"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    @classmethod
    def empty(cls, now: Optional[datetime] = None) -> "SystemContext":
        now = now or datetime.now(timezone.utc)
        return cls(
            open_positions={"count": 0, "total_exposure": 0.0},
            time_of_day=time_of_day(now),
            captured_at=now,
        )

    @classmethod
    def from_account_snapshot(
        cls,
        account: AccountSnapshot,
        market_regime: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "SystemContext":
        """
        Capture a context from account state.

        Args:
            account: Account snapshot
            market_regime: Explicit regime; derived from PnL/drawdown when None
            now: Capture time (defaults to current UTC time)
        """
        now = now or datetime.now(timezone.utc)
        local_now = now.astimezone(MARKET_TZ)
        today_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
        week_start = today_start - timedelta(days=today_start.weekday())

        closed_today = sorted(
            (t for t in account.closed_trades if t.closed_at >= today_start),
            key=lambda t: t.closed_at,
            reverse=True,
        )
        today_pnl = sum(t.realized_pnl for t in closed_today)
        week_pnl = sum(t.realized_pnl for t in account.closed_trades if t.closed_at >= week_start)

        consecutive_losses = 0
        for trade in closed_today:
            if trade.realized_pnl < 0:
                consecutive_losses += 1
            else:
                break

        drawdown = float(account.max_drawdown_pct)
        regime = market_regime or derive_regime(week_pnl, drawdown)

        return cls(
            market_regime=regime,
            recent_pnl={"today": round(today_pnl, 2), "week": round(week_pnl, 2)},
            drawdown=drawdown,
            open_positions={
                "count": len(account.open_positions),
                "total_exposure": round(account.total_exposure, 2),
            },
            time_of_day=time_of_day(now),
            trading_day_stats={
                "trades": len(closed_today),
                "wins": sum(1 for t in closed_today if t.realized_pnl > 0),
                "losses": sum(1 for t in closed_today if t.realized_pnl < 0),
                "consecutive_losses": consecutive_losses,
            },
            captured_at=now,
        )

    @property
    def today_pnl(self) -> float:
        return self.recent_pnl.get("today", 0.0)

    @property
    def week_pnl(self) -> float:
        return self.recent_pnl.get("week", 0.0)

    @property
    def open_positions_count(self) -> int:
        return int(self.open_positions.get("count", 0))

    @property
    def total_exposure(self) -> float:
        return float(self.open_positions.get("total_exposure", 0.0))

    @property
    def consecutive_losses(self) -> int:
        return int(self.trading_day_stats.get("consecutive_losses", 0))

    @property
    def is_volatile(self) -> bool:
        return self.market_regime == REGIME_VOLATILE

    def significant_drawdown(self, threshold: float = 10.0) -> bool:
        return self.drawdown >= threshold

    def to_dict(self) -> Dict[str, Any]:
        return {
            "market_regime": self.market_regime,
            "recent_pnl": dict(self.recent_pnl),
            "drawdown": self.drawdown,
            "open_positions": dict(self.open_positions),
            "time_of_day": self.time_of_day,
            "trading_day_stats": dict(self.trading_day_stats),
            "captured_at": self.captured_at.isoformat(),
        }


def derive_regime(week_pnl: float, drawdown: float) -> str:
    """Heuristic regime from weekly PnL and drawdown."""
    if drawdown > 15.0:
        return REGIME_VOLATILE
    if week_pnl > 0 and drawdown < 5.0:
        return REGIME_BULLISH
    if week_pnl < 0 and drawdown > 10.0:
        return REGIME_BEARISH
    return REGIME_NEUTRAL


class FileAccountProvider:
    """
    AccountSnapshot source backed by a JSON/YAML file.

    The file is re-read on every ``get_snapshot`` so a long-lived tracker
    sees updates written between runs.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def get_snapshot(self) -> AccountSnapshot:
        """
        Raises:
            CriticalDataUnavailable: if the file is missing or unreadable
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                if self.path.suffix.lower() == ".json":
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
            return AccountSnapshot.from_dict(data or {})
        except (OSError, ValueError, KeyError, yaml.YAMLError) as e:
            raise CriticalDataUnavailable(f"account snapshot {self.path}", e) from e
