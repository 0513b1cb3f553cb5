"""
Funnel runner: one swing/longterm run from the command line.

Flow:
1. Load and validate config/funnel.yaml
2. Wire RunTracker (indicator facts file, AI provider chain, SQLite store)
3. Run Layers 1-4 and print the run summary
4. Optionally build trade recommendations for the finals and pass them
   through the decision gates

Usage:
    python -m runner.run_funnel --type swing --facts data/facts.json
    python -m runner.run_funnel --type longterm --account data/account.yaml --gates
    python -m runner.run_funnel --health
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.audit_log import AuditLogger
from core.exceptions import RunFailure
from core.indicator_provider import StaticIndicatorProvider
from core.run import Run, RunType
from core.run_health import summarize_recent_runs
from core.run_tracker import RunTracker
from core.system_context import FileAccountProvider
from strategy.intent_builder import build_recommendation
from strategy.setup_quality import evaluate_recommendation
from tools.config_validator import ConfigError, DEFAULT_CONFIG_PATH, load_funnel_config

logger = logging.getLogger(__name__)


def setup_logging(log_cfg: Dict[str, Any]) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    log_file = log_cfg.get("file")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, str(log_cfg.get("level", "INFO")).upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
    )


def run_gates(
    tracker: RunTracker,
    run: Run,
    config: Dict[str, Any],
    capital: float,
    audit_logger: Optional[AuditLogger] = None,
) -> List[Dict[str, Any]]:
    """Build recommendations for a run's finals and evaluate both gates."""
    decisions = []
    gate_config = {**config.get("decision", {})}
    for candidate in tracker.store.list_candidates(run.id, stage="final"):
        recommendation = build_recommendation(
            candidate, capital, config.get("sizing", {}), timeframe=run.run_type.value
        )
        if recommendation is None:
            logger.info(f"{candidate.symbol}: no trade levels, skipped by gates")
            continue
        result = evaluate_recommendation(recommendation, gate_config, audit_logger=audit_logger)
        decisions.append({"symbol": candidate.symbol, **result.to_dict()})
    return decisions


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="Candidate funnel runner")
    parser.add_argument("--type", dest="run_type", choices=[t.value for t in RunType], default="swing",
                        help="Run type (default: swing)")
    parser.add_argument("--config", default=str(DEFAULT_CONFIG_PATH), help="Funnel config file")
    parser.add_argument("--facts", help="Indicator facts file (overrides indicators.facts_file)")
    parser.add_argument("--universe", help="Instrument list file (overrides universe.file)")
    parser.add_argument("--account", help="Account snapshot file (enables capacity checks)")
    parser.add_argument("--limit", type=int, help="Layer 1 output cap for this run")
    parser.add_argument("--no-ai", action="store_true", help="Skip AI scoring (pass-through)")
    parser.add_argument("--gates", action="store_true", help="Run decision gates on final candidates")
    parser.add_argument("--capital", type=float, help="Capital for sizing (default: account capital)")
    parser.add_argument("--health", action="store_true", help="Print recent run health and exit")

    args = parser.parse_args(argv)

    try:
        config = load_funnel_config(args.config)
    except ConfigError as e:
        logging.basicConfig(level=logging.ERROR, format="%(levelname)s: %(message)s")
        for error in e.errors:
            logger.error(error)
        return 2

    setup_logging(config.get("logging", {}))

    if args.facts:
        config["indicators"]["facts_file"] = args.facts
    if args.universe:
        config["universe"]["file"] = args.universe
    if args.no_ai:
        config["ai"]["enabled"] = False

    account_provider = FileAccountProvider(args.account) if args.account else None

    if args.health:
        from infra.run_store import RunStore

        store = RunStore(config["storage"]["db_path"])
        summary = summarize_recent_runs(store, run_type=RunType(args.run_type), thresholds=config.get("health"))
        print(json.dumps(summary, indent=2, default=str))
        store.close()
        return 0

    facts_file = config["indicators"].get("facts_file")
    if not facts_file:
        logger.error("No indicator facts: pass --facts or set indicators.facts_file")
        return 2
    try:
        provider = StaticIndicatorProvider.from_file(facts_file)
    except FileNotFoundError as e:
        logger.error(str(e))
        return 2

    tracker = RunTracker.from_config(config, provider=provider, account_provider=account_provider)
    tracker.metrics.start()

    try:
        run = tracker.run(args.run_type, limit=args.limit)
    except RunFailure as e:
        logger.error(str(e))
        tracker.store.close()
        return 1

    summary = {
        "run_id": run.id,
        "run_type": run.run_type.value,
        "status": run.status.value,
        "universe_size": run.universe_size,
        "duration_seconds": run.duration_seconds,
        "ai_calls": run.ai_calls_count,
        "ai_cost": run.ai_cost,
        "metrics": run.metrics,
    }

    if args.gates:
        capital = args.capital
        if capital is None and account_provider is not None:
            capital = account_provider.get_snapshot().capital
        summary["decisions"] = run_gates(tracker, run, config, capital or 0.0, tracker.audit_logger)
    tracker.store.close()

    print(json.dumps(summary, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
