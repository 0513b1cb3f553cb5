"""
Tests for the funnel command line runner.
"""

import json
from dataclasses import asdict

import pytest
import yaml

from runner.run_funnel import main
from tests.helpers import make_facts

SYMBOLS = ["TCS", "INFY", "HDFCBANK"]


@pytest.fixture
def facts_file(tmp_path):
    path = tmp_path / "facts.json"
    path.write_text(json.dumps([asdict(make_facts(s)) for s in SYMBOLS]))
    return path


@pytest.fixture
def config_file(tmp_path):
    config = {
        "universe": {"instruments": [{"symbol": s, "instrument_id": f"NSE_EQ|{s}"} for s in SYMBOLS]},
        "storage": {"db_path": str(tmp_path / "funnel.db")},
        "logging": {"level": "WARNING", "file": None},
        "audit": {"file": str(tmp_path / "audit.jsonl")},
    }
    path = tmp_path / "funnel.yaml"
    path.write_text(yaml.safe_dump(config))
    return path


def run_cli(capsys, *argv):
    code = main(list(argv))
    out = capsys.readouterr().out
    return code, json.loads(out) if out.strip() else None


class TestRunFunnelCli:

    def test_swing_run_without_ai(self, capsys, config_file, facts_file):
        code, summary = run_cli(capsys, "--config", str(config_file), "--facts", str(facts_file), "--no-ai")

        assert code == 0
        assert summary["status"] == "completed"
        assert summary["run_type"] == "swing"
        assert summary["universe_size"] == 3
        assert summary["ai_calls"] == 0
        assert summary["metrics"]["eligible_count"] == 3
        assert summary["metrics"]["final_count"] == 3
        assert "decisions" not in summary

    def test_gates_on_finals(self, capsys, config_file, facts_file, tmp_path):
        code, summary = run_cli(
            capsys, "--config", str(config_file), "--facts", str(facts_file),
            "--no-ai", "--gates", "--capital", "1000000",
        )

        assert code == 0
        assert {d["symbol"] for d in summary["decisions"]} == set(SYMBOLS)
        audit_lines = (tmp_path / "audit.jsonl").read_text().splitlines()
        assert sum(1 for line in audit_lines if json.loads(line)["type"] == "decision") == 3

    def test_health_after_run(self, capsys, config_file, facts_file):
        run_cli(capsys, "--config", str(config_file), "--facts", str(facts_file), "--no-ai", "--type", "longterm")
        code, summary = run_cli(capsys, "--config", str(config_file), "--health", "--type", "longterm")

        assert code == 0
        assert summary["total_runs_checked"] == 1
        assert summary["overall_health"] == "degraded"

    def test_missing_facts(self, capsys, config_file):
        code, summary = run_cli(capsys, "--config", str(config_file))
        assert code == 2
        assert summary is None

    def test_facts_file_not_found(self, capsys, config_file, tmp_path):
        code, summary = run_cli(capsys, "--config", str(config_file), "--facts", str(tmp_path / "missing.json"))
        assert code == 2
        assert summary is None

    def test_invalid_config(self, capsys, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"screener": {"min_candles": 0}}))

        code, _ = run_cli(capsys, "--config", str(path))
        assert code == 2

    def test_missing_config(self, capsys, tmp_path):
        code, _ = run_cli(capsys, "--config", str(tmp_path / "nope.yaml"))
        assert code == 2
