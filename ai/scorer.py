"""
Layer 3: AI scoring.

Sends ranked candidates, best first, through the locked evaluation prompt
and keeps the ones that come back with a valid evaluation. Handles the
response cache, cost accounting, the per-run evaluation cap and the
per-candidate failure policy (timeouts, provider errors and bad responses
skip the candidate; the run goes on).
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ai.cost_tracker import CostRecord, CostTracker
from ai.model_client import ModelClient
from ai.prompt_builder import PromptBuilder
from ai.response_cache import DEFAULT_TTL_SECONDS, ResponseCache, cache_key
from ai.schemas import AIEvaluation, AIRequest, parse_evaluation
from core.candidate import Candidate, CandidateStage
from core.exceptions import AIResponseError, ProviderError, ProviderRateLimited, ProviderTimeout

log = logging.getLogger(__name__)

DEFAULT_MAX_EVALUATIONS = 15


@dataclass
class AICallResult:
    content: str
    model: str
    cached: bool
    evaluation: AIEvaluation
    cost_record: Optional[CostRecord] = None


@dataclass
class AIScoringReport:
    """What happened inside one Layer 3 pass"""
    attempted: int = 0
    evaluated: int = 0
    cache_hits: int = 0
    timeouts: int = 0
    rate_limited: int = 0
    provider_errors: int = 0
    parse_failures: int = 0
    filtered_low_confidence: int = 0
    stopped_early: bool = False
    disabled: bool = False

    @property
    def failures(self) -> int:
        return self.timeouts + self.rate_limited + self.provider_errors + self.parse_failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "evaluated": self.evaluated,
            "cache_hits": self.cache_hits,
            "failures": self.failures,
            "timeouts": self.timeouts,
            "rate_limited": self.rate_limited,
            "provider_errors": self.provider_errors,
            "parse_failures": self.parse_failures,
            "filtered_low_confidence": self.filtered_low_confidence,
            "stopped_early": self.stopped_early,
            "disabled": self.disabled,
        }


@dataclass
class ScoringResult:
    candidates: List[Candidate]
    report: AIScoringReport


class AIScorer:
    """
    AI evaluation service for ranked candidates.

    Core rules:
    - At most ``max_evaluations`` candidates are processed per call, in the
      order given; cache hits and failures use up a slot too
    - Cache hits cost nothing and add no CostRecord
    - Every cache miss adds exactly one CostRecord carrying its outcome
    - Only responses that parse cleanly are cached
    """

    def __init__(
        self,
        client: Optional[ModelClient],
        config: Optional[Dict[str, Any]] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        cache: Optional[ResponseCache] = None,
    ):
        self.config = config or {}
        self.client = client
        self.enabled = bool(self.config.get("enabled", True)) and client is not None
        self.timeout_s = float(self.config.get("timeout_s", 20.0))
        self.max_evaluations = int(self.config.get("max_evaluations", DEFAULT_MAX_EVALUATIONS))
        min_conf = self.config.get("min_confidence")
        self.min_confidence = float(min_conf) if min_conf is not None else None
        self.prompt_builder = prompt_builder or PromptBuilder(
            temperature=float(self.config.get("temperature", 0.3)),
            max_tokens=int(self.config.get("max_tokens", 800)),
        )
        ttl_hours = self.config.get("cache_ttl_hours")
        ttl = float(ttl_hours) * 3600 if ttl_hours is not None else DEFAULT_TTL_SECONDS
        self.cache = cache if cache is not None else ResponseCache(ttl_seconds=ttl)

        if self.config.get("enabled", True) and client is None:
            log.warning("AI scoring enabled but no model client configured; running disabled")

    def score(
        self,
        candidates: Sequence[Candidate],
        cost_tracker: CostTracker,
        run_type: str = "swing",
    ) -> ScoringResult:
        """
        Evaluate candidates and return the ones with a valid evaluation.

        Args:
            candidates: Layer 2 output, best first
            cost_tracker: Run-scoped tracker receiving one record per cache miss
            run_type: Run being scored; sent as the prompt strategy
        """
        report = AIScoringReport()
        if not candidates:
            return ScoringResult(candidates=[], report=report)

        if not self.enabled:
            report.disabled = True
            return ScoringResult(candidates=self._passthrough(candidates), report=report)

        evaluated: List[Candidate] = []
        for candidate in list(candidates)[: self.max_evaluations]:
            request = self.prompt_builder.build(candidate, run_type)

            if cost_tracker.budget_exhausted and self._cached(request) is None:
                log.warning(
                    f"AI call budget exhausted ({cost_tracker.max_calls} calls); "
                    f"stopping after {report.attempted} candidates"
                )
                report.stopped_early = True
                break

            report.attempted += 1
            try:
                result = self.complete(request, cost_tracker)
            except ProviderRateLimited as e:
                report.rate_limited += 1
                log.warning(f"AI rate limited for {candidate.symbol}: {e}")
                continue
            except ProviderTimeout as e:
                report.timeouts += 1
                log.warning(f"AI timeout for {candidate.symbol}: {e}")
                continue
            except ProviderError as e:
                report.provider_errors += 1
                log.error(f"AI provider error for {candidate.symbol}: {e}")
                continue
            except AIResponseError as e:
                report.parse_failures += 1
                log.warning(f"Unparseable AI response for {candidate.symbol}: {e}")
                continue

            if result.cached:
                report.cache_hits += 1

            evaluation = result.evaluation
            if self.min_confidence is not None and evaluation.confidence < self.min_confidence:
                report.filtered_low_confidence += 1
                log.debug(f"{candidate.symbol} dropped: confidence {evaluation.confidence} < {self.min_confidence}")
                continue

            report.evaluated += 1
            evaluated.append(
                candidate.advance(
                    CandidateStage.AI_EVALUATED,
                    ai_confidence=evaluation.confidence,
                    ai_evaluation=evaluation.to_dict(),
                    ai_cached=result.cached,
                )
            )

        log.info(
            f"Layer 3: {report.evaluated}/{report.attempted} evaluated "
            f"(cache_hits={report.cache_hits}, failures={report.failures}, "
            f"calls={cost_tracker.calls}, cost=${cost_tracker.total_cost:.4f})"
        )
        return ScoringResult(candidates=evaluated, report=report)

    def complete(self, request: AIRequest, cost_tracker: CostTracker) -> AICallResult:
        """
        Answer one prompt from cache or the provider.

        Raises:
            ProviderError: provider failure (a failed CostRecord is added)
            AIResponseError: unparseable response (a failed CostRecord is added)
        """
        cached = self._cached(request)
        if cached is not None:
            return AICallResult(
                content=cached.content,
                model=cached.model,
                cached=True,
                evaluation=parse_evaluation(cached.content),
            )

        model = getattr(self.client, "model", "unknown")
        provider = getattr(self.client, "provider", "unknown")
        start = time.perf_counter()
        try:
            response = self.client.complete(request, timeout=self.timeout_s)
        except ProviderError as e:
            cost_tracker.record(model, e.provider, 0, 0, success=False, error=type(e).__name__)
            raise
        except Exception as e:
            cost_tracker.record(model, provider, 0, 0, success=False, error=type(e).__name__)
            raise ProviderError(provider, str(e), e) from e

        latency = (time.perf_counter() - start) * 1000
        try:
            evaluation = parse_evaluation(response.content)
        except AIResponseError as e:
            cost_tracker.record(
                response.model, response.provider, response.input_tokens, response.output_tokens,
                success=False, error="AIResponseError",
            )
            raise

        record = cost_tracker.record(
            response.model, response.provider, response.input_tokens, response.output_tokens, success=True,
        )
        self.cache.put(self._key(request), response.content, response.model, response.provider)
        log.debug(f"AI evaluation via {response.provider}/{response.model} in {latency:.1f}ms")

        return AICallResult(
            content=response.content,
            model=response.model,
            cached=False,
            evaluation=evaluation,
            cost_record=record,
        )

    def _key(self, request: AIRequest) -> str:
        return cache_key(getattr(self.client, "model", "unknown"), request.system_prompt, request.user_prompt)

    def _cached(self, request: AIRequest):
        return self.cache.get(self._key(request))

    def _passthrough(self, candidates: Sequence[Candidate]) -> List[Candidate]:
        """Disabled mode: rank by a 50/50 screener/quality blend, no AI fields."""
        blended = sorted(
            candidates,
            key=lambda c: -(0.5 * c.score + 0.5 * (c.trade_quality_score or 0.0)),
        )
        selected = [c.advance(CandidateStage.AI_EVALUATED) for c in blended[: self.max_evaluations]]
        log.info(f"Layer 3 disabled: passing through {len(selected)} candidates without AI scores")
        return selected
