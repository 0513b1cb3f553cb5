"""
Indicator facts providers.

The funnel never computes indicators; it asks a provider for the facts of
each instrument. ``StaticIndicatorProvider`` serves facts from a mapping or
a JSON/YAML file and is what the CLI uses.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Protocol

import yaml

from core.candidate import IndicatorFacts
from core.exceptions import InsufficientIndicatorData
from core.universe import Instrument

logger = logging.getLogger(__name__)


class IndicatorProvider(Protocol):
    def get_facts(self, instrument: Instrument) -> IndicatorFacts:
        ...


class StaticIndicatorProvider:
    """Serves precomputed facts keyed by instrument id or symbol."""

    def __init__(self, facts: Iterable[Any]):
        self._facts: Dict[str, IndicatorFacts] = {}
        for item in facts:
            fact = item if isinstance(item, IndicatorFacts) else IndicatorFacts.from_dict(item)
            self._facts[fact.instrument_id] = fact
            self._facts[fact.symbol.upper()] = fact

    @classmethod
    def from_file(cls, path: str) -> "StaticIndicatorProvider":
        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Indicator facts file not found: {path}")
        with open(file_path, "r") as f:
            data = json.load(f) if file_path.suffix == ".json" else yaml.safe_load(f)
        if isinstance(data, dict):
            data = data.get("facts", [])
        logger.info(f"Loaded indicator facts for {len(data or [])} instruments from {path}")
        return cls(data or [])

    def get_facts(self, instrument: Instrument) -> IndicatorFacts:
        fact: Optional[IndicatorFacts] = self._facts.get(instrument.instrument_id)
        if fact is None:
            fact = self._facts.get(instrument.symbol.upper())
        if fact is None:
            raise InsufficientIndicatorData(instrument.symbol, "no indicator facts")
        return fact
