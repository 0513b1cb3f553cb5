"""
Run-scoped AI cost accounting.

Every cache-miss evaluation produces exactly one CostRecord, bound to the
outcome of that evaluation. Totals only grow. The tracker is passed into the
scorer explicitly; there is no process-wide counter.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

# USD per 1K tokens
DEFAULT_RATES: Dict[str, Dict[str, float]] = {
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-4o": {"input": 0.0025, "output": 0.01},
    "gpt-4": {"input": 0.03, "output": 0.06},
}
DEFAULT_MODEL = "gpt-4o-mini"


@dataclass(frozen=True)
class CostRecord:
    model: str
    provider: str
    input_tokens: int
    output_tokens: int
    cost: float
    success: bool
    cached: bool = False
    error: Optional[str] = None


def calculate_cost(
    model: str,
    input_tokens: int,
    output_tokens: int,
    rates: Optional[Dict[str, Dict[str, float]]] = None,
) -> float:
    """Token cost in USD, rounded to 4 decimals; unknown models use the default rate."""
    table = rates or DEFAULT_RATES
    rate = table.get(model) or table.get(DEFAULT_MODEL) or DEFAULT_RATES[DEFAULT_MODEL]
    cost = (input_tokens / 1000.0) * rate["input"] + (output_tokens / 1000.0) * rate["output"]
    return round(cost, 4)


class CostTracker:
    """
    Accumulates AI calls and cost for one Run.

    ``max_calls`` is an optional call budget; ``budget_exhausted`` turns true
    once that many records have been added.
    """

    def __init__(self, rates: Optional[Dict[str, Dict[str, float]]] = None, max_calls: Optional[int] = None):
        self.rates = rates or DEFAULT_RATES
        self.max_calls = max_calls
        self._records: List[CostRecord] = []
        self._lock = threading.Lock()

    def record(
        self,
        model: str,
        provider: str,
        input_tokens: int,
        output_tokens: int,
        success: bool,
        error: Optional[str] = None,
    ) -> CostRecord:
        entry = CostRecord(
            model=model,
            provider=provider,
            input_tokens=max(int(input_tokens), 0),
            output_tokens=max(int(output_tokens), 0),
            cost=calculate_cost(model, max(int(input_tokens), 0), max(int(output_tokens), 0), self.rates),
            success=success,
            error=error,
        )
        with self._lock:
            self._records.append(entry)
        logger.debug(
            f"AI call recorded: model={model} tokens={entry.input_tokens}/{entry.output_tokens} "
            f"cost=${entry.cost:.4f} success={success}"
        )
        return entry

    @property
    def calls(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def successful_calls(self) -> int:
        with self._lock:
            return sum(1 for r in self._records if r.success)

    @property
    def failed_calls(self) -> int:
        with self._lock:
            return sum(1 for r in self._records if not r.success)

    @property
    def total_cost(self) -> float:
        with self._lock:
            return round(sum(r.cost for r in self._records), 4)

    @property
    def total_tokens(self) -> Dict[str, int]:
        with self._lock:
            return {
                "input": sum(r.input_tokens for r in self._records),
                "output": sum(r.output_tokens for r in self._records),
            }

    @property
    def budget_exhausted(self) -> bool:
        return self.max_calls is not None and self.calls >= self.max_calls

    def success_rate(self) -> float:
        """Successful calls / calls x 100, 0.0 when nothing was called"""
        with self._lock:
            calls = len(self._records)
            ok = sum(1 for r in self._records if r.success)
        if calls == 0:
            return 0.0
        return round(ok / calls * 100, 2)

    def records(self) -> List[CostRecord]:
        with self._lock:
            return list(self._records)

    def summary(self) -> Dict[str, object]:
        return {
            "calls": self.calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "total_cost": self.total_cost,
            "tokens": self.total_tokens,
        }
