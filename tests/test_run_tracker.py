"""
End-to-end funnel run tests.

Verifies:
1. A full run compresses 100 instruments to the final few, with per-stage
   persistence and funnel metrics on the Run
2. AI timeouts are absorbed and reflected in the success rate
3. A layer failure finalizes the Run as failed, alerts, and re-raises
4. Overlap with the previous completed run of the same type
5. Capacity inputs come from the account provider
"""

import json
from unittest.mock import Mock

import pytest

from ai.response_cache import ResponseCache
from ai.scorer import AIScorer
from core.audit_log import AuditLogger
from core.candidate import CandidateStage
from core.capacity_filter import CapacityFilter
from core.exceptions import CriticalDataUnavailable, RunFailure
from core.quality_ranker import QualityRanker
from core.run import RunStatus, RunType
from core.run_tracker import RunTracker, run_funnel
from core.screener import EligibilityScreener
from core.system_context import AccountSnapshot, OpenPosition
from tests.helpers import (
    FakeAccountProvider,
    make_facts,
    make_provider,
    make_universe,
    mock_client,
    numbered_symbols,
    symbol_responder,
)

SYMBOLS = numbered_symbols(100)
STRONG = SYMBOLS[:40]
TIMEOUTS = set(SYMBOLS[:5])


@pytest.fixture
def universe():
    return make_universe(SYMBOLS)


@pytest.fixture
def provider():
    facts = [make_facts(s) for s in STRONG] + [make_facts(s, candles_count=10) for s in SYMBOLS[40:]]
    return make_provider(facts)


@pytest.fixture
def build_tracker(store, provider, metrics, dry_run_alerts):
    def build(client=None, account_provider=None, audit_logger=None, config=None, screener=None, cache=None):
        config = config or {}
        client = client if client is not None else mock_client(responder=symbol_responder(timeouts=TIMEOUTS))
        return RunTracker(
            store=store,
            screener=screener or EligibilityScreener(provider, config.get("screener", {})),
            ranker=QualityRanker(config.get("quality_ranker", {})),
            scorer=AIScorer(client, config.get("ai", {}), cache=cache),
            capacity_filter=CapacityFilter(config.get("capacity", {})),
            account_provider=account_provider,
            alert_service=dry_run_alerts,
            metrics=metrics,
            audit_logger=audit_logger,
            config=config,
        )
    return build


class TestFullRun:

    def test_funnel_compression(self, build_tracker, universe, store):
        run = build_tracker().run("swing", universe=universe)

        assert run.status == RunStatus.COMPLETED
        assert run.universe_size == 100
        m = run.metrics
        assert m["eligible_count"] == 40
        assert m["screening_skipped"] == 60
        assert m["ranked_count"] == 30
        assert m["ai_evaluated_count"] == 10
        assert m["final_count"] == 5
        assert m["compression_efficiency"] == 12.5
        assert m["ai_success_rate"] == 66.67
        assert m["ai_report"]["timeouts"] == 5
        assert m["tier_1_count"] == 5
        assert m["tier_2_count"] == 5
        assert run.ai_calls_count == 15
        assert run.ai_cost == pytest.approx(0.003)

    def test_final_candidates_persisted_under_run(self, build_tracker, universe, store):
        run = build_tracker().run("swing", universe=universe)

        finals = store.list_candidates(run.id, CandidateStage.FINAL)
        assert len(finals) == 5
        assert all(c.run_id == run.id for c in finals)
        assert [c.rank for c in finals] == [1, 2, 3, 4, 5]
        assert all(c.tier == "tier_1" for c in finals)
        assert all(c.ai_confidence == 8.0 for c in finals)
        assert finals[0].combined_score == pytest.approx(87.2)
        assert not {c.symbol for c in finals} & TIMEOUTS

        assert store.count_candidates(run.id, CandidateStage.SCREENED) == 40
        assert store.count_candidates(run.id, CandidateStage.RANKED) == 30
        assert store.count_candidates(run.id, CandidateStage.AI_EVALUATED) == 10

    def test_run_persisted_completed(self, build_tracker, universe, store):
        run = build_tracker().run("swing", universe=universe)

        stored = store.get_run(run.id)
        assert stored.status == RunStatus.COMPLETED
        assert stored.metrics["final_count"] == 5
        assert stored.metrics["health"]["healthy"] is False
        assert set(stored.metrics["stage_durations"]) == {"screening", "ranking", "ai_scoring", "selection"}

    def test_unhealthy_run_warns(self, build_tracker, universe, dry_run_alerts):
        build_tracker().run("swing", universe=universe)

        texts = [a["text"] for a in dry_run_alerts.sent]
        assert any(t.startswith("[WARNING] Funnel run unhealthy (swing)") for t in texts)
        assert any("compression_out_of_range" in t for t in texts)

    def test_health_thresholds_from_config(self, build_tracker, universe, dry_run_alerts):
        config = {"health": {"max_compression": 20.0, "min_eligible": 10}}
        run = build_tracker(config=config).run("swing", universe=universe)

        assert run.metrics["health"] == {"healthy": True, "issues": []}
        assert dry_run_alerts.sent == []

    def test_metrics_recorded(self, build_tracker, universe, metrics):
        build_tracker().run("swing", universe=universe)

        assert metrics.stage_snapshot() == {"screening": 40, "ranking": 30, "ai_scoring": 10, "selection": 5}
        assert metrics.sample("funnel_runs_total", {"run_type": "swing", "status": "completed"}) == 1
        assert metrics.sample("funnel_ai_calls_total", {"outcome": "failure"}) == 5

    def test_audit_entry(self, build_tracker, universe, tmp_path):
        audit = AuditLogger(str(tmp_path / "audit.jsonl"))
        run = build_tracker(audit_logger=audit).run("swing", universe=universe)

        entry = audit.get_recent(1, entry_type="run")[0]
        assert entry["run_id"] == run.id
        assert entry["status"] == "completed"
        assert len(entry["final_symbols"]) == 5

    def test_ai_disabled_passthrough(self, build_tracker, universe):
        tracker = build_tracker(config={"ai": {"enabled": False}})
        run = tracker.run("swing", universe=universe)

        assert run.ai_calls_count == 0
        assert run.metrics["ai_evaluated_count"] == 15
        assert run.metrics["ai_report"]["disabled"] is True
        assert run.metrics["final_count"] == 5

    def test_empty_universe(self, build_tracker):
        run = build_tracker().run("swing", universe=[])

        assert run.status == RunStatus.COMPLETED
        assert run.metrics["eligible_count"] == 0
        assert run.metrics["final_count"] == 0
        assert run.metrics["compression_efficiency"] == 0.0

    def test_unknown_run_type(self, build_tracker):
        with pytest.raises(ValueError):
            build_tracker().run("intraday", universe=[])


class TestPreviousRunOverlap:

    def test_second_run_overlaps_first(self, build_tracker, universe):
        tracker = build_tracker()
        first = tracker.run("swing", universe=universe)
        second = tracker.run("swing", universe=universe)

        assert first.metrics["overlap_with_prev_run"] == 0.0
        assert first.metrics["new_candidates_count"] == 5
        assert second.metrics["overlap_with_prev_run"] == 100.0
        assert second.metrics["new_candidates_count"] == 0

    def test_second_run_reuses_cached_answers(self, build_tracker, universe):
        tracker = build_tracker()
        tracker.run("swing", universe=universe)
        second = tracker.run("swing", universe=universe)

        # Only the five timeouts are asked again
        assert second.ai_calls_count == 5
        assert second.metrics["ai_report"]["cache_hits"] == 10

    def test_overlap_only_against_same_type(self, build_tracker, universe):
        tracker = build_tracker()
        tracker.run("longterm", universe=universe)
        swing = tracker.run("swing", universe=universe)

        assert swing.metrics["overlap_with_prev_run"] == 0.0


class TestFailure:

    def test_layer_failure_fails_run(self, build_tracker, universe, store, dry_run_alerts, metrics):
        screener = Mock()
        screener.screen.side_effect = RuntimeError("indicator store offline")
        tracker = build_tracker(screener=screener)

        with pytest.raises(RunFailure) as exc:
            tracker.run("swing", universe=universe)

        assert isinstance(exc.value.__cause__, RuntimeError)
        assert exc.value.stage == "screening"
        failed = store.get_run(exc.value.run_id)
        assert failed.status == RunStatus.FAILED
        assert failed.error_message == "RuntimeError: indicator store offline"
        assert failed.completed_at is not None
        assert dry_run_alerts.sent[0]["text"].startswith("[CRITICAL] Funnel run failed (swing)")
        assert metrics.sample("funnel_runs_total", {"run_type": "swing", "status": "failed"}) == 1

    def test_account_failure_during_selection(self, build_tracker, universe, store):
        account = FakeAccountProvider(error=CriticalDataUnavailable("broker positions"))
        tracker = build_tracker(account_provider=account)

        with pytest.raises(RunFailure) as exc:
            tracker.run("swing", universe=universe)

        assert exc.value.stage == "selection"
        failed = store.get_run(exc.value.run_id)
        assert failed.ai_calls_count == 15
        assert failed.metrics["ai_evaluated_count"] == 10
        assert store.count_candidates(failed.id, CandidateStage.FINAL) == 0

    def test_failed_run_not_used_for_overlap(self, build_tracker, universe):
        broken = Mock()
        broken.screen.side_effect = RuntimeError("boom")
        with pytest.raises(RunFailure):
            build_tracker(screener=broken).run("swing", universe=universe)

        run = build_tracker().run("swing", universe=universe)
        assert run.metrics["new_candidates_count"] == 5


class TestCapacityFromAccount:

    def test_open_positions_limit_finals(self, build_tracker, universe):
        positions = [OpenPosition(f"HELD{i}", 100.0, 10) for i in range(8)]
        account = FakeAccountProvider(AccountSnapshot(capital=1_000_000.0, open_positions=positions))

        run = build_tracker(account_provider=account).run("swing", universe=universe)

        assert account.calls == 1
        assert run.metrics["capacity"] == 2
        assert run.metrics["final_count"] == 2
        assert run.metrics["tier_2_count"] == 8

    def test_drawdown_blocks_all(self, build_tracker, universe):
        account = FakeAccountProvider(AccountSnapshot(capital=1_000_000.0, max_drawdown_pct=20.0))
        run = build_tracker(account_provider=account).run("swing", universe=universe)

        assert run.metrics["final_count"] == 0
        assert run.metrics["capacity_blocked_reason"].startswith("drawdown")


class TestFromConfig:

    def test_wires_collaborators(self, store, provider):
        config = {
            "ai": {"enabled": True, "providers": [{"provider": "mock", "fixed_response": "{}"}], "max_calls": 7},
            "capacity": {"final_limit": {"swing": 3}},
            "alerts": {"enabled": False},
        }
        cache = ResponseCache()
        tracker = RunTracker.from_config(config, provider=provider, store=store, cache=cache)

        assert tracker.scorer.enabled is True
        assert tracker.scorer.cache is cache
        assert tracker.max_calls == 7
        assert tracker.capacity_filter.final_limits["swing"] == 3
        assert tracker.audit_logger is None

    def test_requires_provider(self, store):
        with pytest.raises(ValueError, match="facts_file"):
            RunTracker.from_config({}, store=store)

    def test_facts_file(self, store, tmp_path):
        facts_path = tmp_path / "facts.json"
        facts_path.write_text('[{"symbol": "TCS", "candles_count": 100}]')
        tracker = RunTracker.from_config(
            {"indicators": {"facts_file": str(facts_path)}, "ai": {"enabled": False}},
            store=store,
        )
        assert tracker.scorer.enabled is False


def test_run_funnel_uses_given_tracker(build_tracker, universe):
    run = run_funnel("longterm", universe=universe, tracker=build_tracker())
    assert run.run_type == RunType.LONGTERM
    assert run.metrics["final_count"] == 5


def sent_strategies(client):
    return {
        json.loads(request.user_prompt.split("SETUP DATA:")[1])["strategy"]
        for request in client.requests
    }


class TestPromptStrategy:

    def test_longterm_run_sends_longterm_prompts(self, build_tracker, universe):
        client = mock_client()
        build_tracker(client=client).run("longterm", universe=universe)

        assert len(client.requests) == 15
        assert sent_strategies(client) == {"longterm"}

    def test_one_tracker_serves_both_run_types(self, build_tracker, universe):
        client = mock_client()
        tracker = build_tracker(client=client)
        tracker.run("swing", universe=universe)
        longterm = tracker.run("longterm", universe=universe)

        # Different strategy means a different prompt, so nothing is served from cache
        assert longterm.metrics["ai_report"]["cache_hits"] == 0
        assert sent_strategies(client) == {"swing", "longterm"}
