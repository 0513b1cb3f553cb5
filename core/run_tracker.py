"""
Funnel orchestration.

Runs Layers 1-4 in order for one Run:
1. Eligibility screening
2. Quality ranking
3. AI scoring
4. Capacity filter / final selection

Each layer's output is persisted under the Run id before the next layer
starts, stage counts are merged into the Run as they become known, and the
Run is finalized exactly once. Any exception inside a layer fails the Run,
alerts, and is re-raised as RunFailure; nothing is retried here.
"""

import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from ai.cost_tracker import CostTracker
from ai.model_client import ModelClient, create_provider_chain
from ai.response_cache import ResponseCache
from ai.scorer import AIScorer
from core.audit_log import AuditLogger
from core.candidate import Candidate
from core.capacity_filter import CapacityFilter
from core.exceptions import RunFailure
from core.indicator_provider import IndicatorProvider, StaticIndicatorProvider
from core.quality_ranker import QualityRanker
from core.run import Run, RunType
from core.run_health import assess_run_health
from core.run_metrics import calculate_run_metrics
from core.screener import EligibilityScreener
from core.system_context import AccountSnapshot, PortfolioSnapshot, SystemContext
from core.universe import UniverseLoader
from infra.alerting import AlertService, AlertSeverity
from infra.metrics import MetricsRecorder
from infra.run_store import RunStore

logger = logging.getLogger(__name__)


class RunTracker:
    """
    Owns the collaborators of a funnel run.

    One tracker can execute many runs; its AI response cache lives as long
    as the tracker, so a tracker kept for a trading day shares answers
    across that day's runs. Cost tracking is always per run.
    """

    def __init__(
        self,
        store: RunStore,
        screener: EligibilityScreener,
        ranker: QualityRanker,
        scorer: AIScorer,
        capacity_filter: CapacityFilter,
        universe_loader: Optional[UniverseLoader] = None,
        account_provider: Any = None,
        alert_service: Optional[AlertService] = None,
        metrics: Optional[MetricsRecorder] = None,
        audit_logger: Optional[AuditLogger] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        self.store = store
        self.screener = screener
        self.ranker = ranker
        self.scorer = scorer
        self.capacity_filter = capacity_filter
        self.universe_loader = universe_loader or UniverseLoader()
        self.account_provider = account_provider
        self.alert_service = alert_service
        self.metrics = metrics or MetricsRecorder(enabled=False)
        self.audit_logger = audit_logger
        self.config = config or {}

        ai_cfg = self.config.get("ai", {})
        self.cost_rates = ai_cfg.get("cost_rates")
        self.max_calls = ai_cfg.get("max_calls")
        self.health_thresholds = self.config.get("health", {})

    @classmethod
    def from_config(
        cls,
        config: Dict[str, Any],
        provider: Optional[IndicatorProvider] = None,
        client: Optional[ModelClient] = None,
        store: Optional[RunStore] = None,
        account_provider: Any = None,
        cache: Optional[ResponseCache] = None,
    ) -> "RunTracker":
        """
        Wire a tracker from a validated funnel config dict.

        Args:
            config: Full funnel config (see config/funnel.yaml)
            provider: Indicator facts provider (default: ``indicators.facts_file``)
            client: Model client (default: chain built from ``ai.providers``)
        """
        ai_cfg = dict(config.get("ai", {}))
        if provider is None:
            facts_file = config.get("indicators", {}).get("facts_file")
            if not facts_file:
                raise ValueError("No indicator provider given and indicators.facts_file not set")
            provider = StaticIndicatorProvider.from_file(facts_file)
        if client is None and ai_cfg.get("enabled", True) and ai_cfg.get("providers"):
            client = create_provider_chain(ai_cfg["providers"])

        monitoring = config.get("monitoring", {})
        audit_file = config.get("audit", {}).get("file")
        return cls(
            store=store or RunStore(config.get("storage", {}).get("db_path", "data/funnel.db")),
            screener=EligibilityScreener(provider, config.get("screener", {})),
            ranker=QualityRanker(config.get("quality_ranker", {})),
            scorer=AIScorer(client, ai_cfg, cache=cache),
            capacity_filter=CapacityFilter(config.get("capacity", {})),
            universe_loader=UniverseLoader(config.get("universe", {})),
            account_provider=account_provider,
            alert_service=AlertService.from_config(config.get("alerts", {})),
            metrics=MetricsRecorder(
                enabled=bool(monitoring.get("metrics_enabled", False)),
                port=int(monitoring.get("metrics_port", 9101)),
            ),
            audit_logger=AuditLogger(audit_file) if audit_file else None,
            config=config,
        )

    def run(
        self,
        run_type: str,
        universe: Optional[Iterable[Any]] = None,
        limit: Optional[int] = None,
    ) -> Run:
        """
        Execute one funnel run.

        Args:
            run_type: "swing" or "longterm"
            universe: Optional explicit instrument list
            limit: Optional Layer 1 result cap

        Returns:
            The completed Run

        Raises:
            RunFailure: if any layer raised; the Run is persisted as failed
        """
        run_type = RunType(run_type)
        instruments = self.universe_loader.load(universe)
        run = self.store.create_run(Run(run_type=run_type, universe_size=len(instruments)))
        cost_tracker = CostTracker(rates=self.cost_rates, max_calls=self.max_calls)
        durations: Dict[str, float] = {}
        stage = "screening"

        logger.info(f"Run {run.id} started: type={run_type.value} universe={len(instruments)}")

        try:
            # Layer 1
            start = time.perf_counter()
            screen = self.screener.screen(instruments, run_id=run.id, limit=limit)
            eligible = screen.candidates
            self._finish_stage(run, "screening", start, durations, eligible, {
                "eligible_count": len(eligible),
                "screening_skipped": screen.skipped_insufficient + screen.skipped_price + screen.skipped_score,
                "screening_errors": len(screen.errors),
            })

            # Layer 2
            stage = "ranking"
            start = time.perf_counter()
            ranked = self.ranker.rank(eligible)
            self._finish_stage(run, "ranking", start, durations, ranked, {"ranked_count": len(ranked)})

            # Layer 3
            stage = "ai_scoring"
            start = time.perf_counter()
            scoring = self.scorer.score(ranked, cost_tracker, run_type.value)
            evaluated = scoring.candidates
            run.record_ai_usage(cost_tracker.calls, cost_tracker.total_cost)
            self._finish_stage(run, "ai_scoring", start, durations, evaluated, {
                "ai_evaluated_count": len(evaluated),
                "ai_report": scoring.report.to_dict(),
            })
            self.metrics.record_ai_usage(
                successful=cost_tracker.successful_calls,
                failed=cost_tracker.failed_calls,
                cache_hits=scoring.report.cache_hits,
                cost=cost_tracker.total_cost,
            )

            # Layer 4
            stage = "selection"
            start = time.perf_counter()
            portfolio, context = self._capture_account()
            selection = self.capacity_filter.select(evaluated, run_type.value, portfolio, context)
            final = selection.final
            self.store.save_candidates(run.id, selection.tier_2 + selection.tier_3)
            self._finish_stage(run, "selection", start, durations, final, {
                "final_count": len(final),
                "capacity": selection.capacity,
                "capacity_blocked_reason": selection.blocked_reason,
            })

            stage = "metrics"
            previous = self.store.latest_completed_run(run_type, before=run.started_at, exclude_id=run.id)
            previous_symbols = self.store.final_symbols(previous.id) if previous else None
            run.merge_metrics(calculate_run_metrics(
                eligible=eligible,
                ranked=ranked,
                evaluated=evaluated,
                final=final,
                tier_counts={
                    "tier_1": len(selection.tier_1),
                    "tier_2": len(selection.tier_2),
                    "tier_3": len(selection.tier_3),
                },
                ai_calls=cost_tracker.calls,
                ai_successful_calls=cost_tracker.successful_calls,
                ai_cost=cost_tracker.total_cost,
                previous_final_symbols=previous_symbols,
                stage_durations=durations,
            ))
            run.mark_completed()
            self.store.update_run(run)
        except Exception as e:
            self._fail(run, stage, e, cost_tracker)
            raise RunFailure(run.id, stage, str(e)) from e

        self._check_health(run)
        self.metrics.record_run(run_type.value, run.status.value, run.metrics.get("compression_efficiency"))
        if self.audit_logger:
            self.audit_logger.log_run(run, final_symbols=[c.symbol for c in final])

        logger.info(
            f"Run {run.id} completed: {run.metrics['eligible_count']} eligible -> "
            f"{run.metrics['ranked_count']} ranked -> {run.metrics['ai_evaluated_count']} evaluated -> "
            f"{run.metrics['final_count']} final (AI calls={run.ai_calls_count}, cost=${run.ai_cost:.4f})"
        )
        return run

    def _finish_stage(
        self,
        run: Run,
        stage: str,
        start: float,
        durations: Dict[str, float],
        candidates: List[Candidate],
        counts: Dict[str, Any],
    ) -> None:
        durations[stage] = time.perf_counter() - start
        self.store.save_candidates(run.id, candidates)
        run.merge_metrics(counts)
        self.store.update_run(run)
        self.metrics.record_stage(run.run_type.value, stage, len(candidates), durations[stage])
        logger.debug(f"Run {run.id} stage {stage}: {len(candidates)} candidates in {durations[stage]:.3f}s")

    def _capture_account(self):
        if self.account_provider is None:
            return None, None
        account: AccountSnapshot = self.account_provider.get_snapshot()
        return PortfolioSnapshot.from_account(account), SystemContext.from_account_snapshot(account)

    def _fail(self, run: Run, stage: str, error: Exception, cost_tracker: CostTracker) -> None:
        logger.error(f"Run {run.id} failed during {stage}: {error}", exc_info=True)
        run.record_ai_usage(cost_tracker.calls, cost_tracker.total_cost)
        run.mark_failed(f"{type(error).__name__}: {error}")
        try:
            self.store.update_run(run)
        except Exception as store_error:
            logger.error(f"Could not persist failure of run {run.id}: {store_error}")

        if self.alert_service:
            self.alert_service.notify(
                AlertSeverity.CRITICAL,
                f"Funnel run failed ({run.run_type.value})",
                f"Run {run.id} failed during {stage}: {error}",
                {"run_id": run.id, "stage": stage, "ai_calls": run.ai_calls_count},
            )
        self.metrics.record_run(run.run_type.value, run.status.value)
        if self.audit_logger:
            self.audit_logger.log_run(run)

    def _check_health(self, run: Run) -> None:
        health = assess_run_health(run, self.health_thresholds)
        run.merge_metrics({"health": {"healthy": health.healthy, "issues": health.issues}})
        self.store.update_run(run)
        if health.healthy:
            return
        logger.warning(f"Run {run.id} health issues: {', '.join(health.issues)}")
        if self.alert_service:
            self.alert_service.notify(
                AlertSeverity.WARNING,
                f"Funnel run unhealthy ({run.run_type.value})",
                f"Run {run.id}: {', '.join(health.issues)}",
                health.metrics,
            )


def run_funnel(
    run_type: str,
    universe: Optional[Iterable[Any]] = None,
    limit: Optional[int] = None,
    tracker: Optional[RunTracker] = None,
) -> Run:
    """
    Run the funnel once.

    Without an explicit tracker one is wired from the default config file.
    """
    if tracker is None:
        from tools.config_validator import load_funnel_config

        tracker = RunTracker.from_config(load_funnel_config())
    return tracker.run(run_type, universe=universe, limit=limit)
