"""
Instrument universe loading.

Resolves the list of instruments a Run screens, from an explicit list, a
YAML/JSON file, or the inline ``universe.instruments`` config section, and
applies exchange/segment/symbol pre-filters.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Instrument:
    """Tradeable instrument in the universe"""
    instrument_id: str
    symbol: str
    exchange: str = "NSE"
    segment: str = "equity"
    ltp: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Instrument":
        symbol = str(data["symbol"]).upper()
        ltp = data.get("ltp")
        return cls(
            instrument_id=str(data.get("instrument_id") or data.get("id") or symbol),
            symbol=symbol,
            exchange=str(data.get("exchange", "NSE")).upper(),
            segment=str(data.get("segment", "equity")).lower(),
            ltp=float(ltp) if ltp is not None else None,
        )


class UniverseLoader:
    """
    Builds the instrument universe for a Run.

    Config (``universe`` section):
        file: path to a YAML or JSON list of instruments
        instruments: inline list of instruments (used when no file is set)
        exchanges / segments: allowed values (empty = allow all)
        exclude_symbols: symbols never screened
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.exchanges = {e.upper() for e in self.config.get("exchanges", [])}
        self.segments = {s.lower() for s in self.config.get("segments", [])}
        self.exclude_symbols = {s.upper() for s in self.config.get("exclude_symbols", [])}

    def load(self, instruments: Optional[Iterable[Any]] = None) -> List[Instrument]:
        """
        Resolve and pre-filter the universe.

        Args:
            instruments: Optional explicit universe (Instrument objects or dicts)

        Returns:
            Instruments in source order, deduplicated by instrument_id
        """
        if instruments is not None:
            raw = list(instruments)
            source = "explicit"
        elif self.config.get("file"):
            raw = self._read_file(Path(self.config["file"]))
            source = str(self.config["file"])
        else:
            raw = list(self.config.get("instruments", []))
            source = "config"

        universe: List[Instrument] = []
        seen = set()
        for item in raw:
            instrument = item if isinstance(item, Instrument) else Instrument.from_dict(item)
            if instrument.instrument_id in seen:
                logger.debug(f"Duplicate instrument {instrument.symbol} dropped")
                continue
            seen.add(instrument.instrument_id)
            if not self._passes_prefilter(instrument):
                continue
            universe.append(instrument)

        logger.info(f"Universe loaded from {source}: {len(universe)}/{len(raw)} instruments")
        return universe

    def _passes_prefilter(self, instrument: Instrument) -> bool:
        if instrument.symbol in self.exclude_symbols:
            return False
        if self.exchanges and instrument.exchange not in self.exchanges:
            return False
        if self.segments and instrument.segment not in self.segments:
            return False
        return True

    @staticmethod
    def _read_file(path: Path) -> List[Dict[str, Any]]:
        if not path.exists():
            raise FileNotFoundError(f"Universe file not found: {path}")
        with open(path, "r") as f:
            if path.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
        if isinstance(data, dict):
            data = data.get("instruments", [])
        return list(data or [])
