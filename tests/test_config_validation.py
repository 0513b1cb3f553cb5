"""
Test configuration validation.

Verifies the shipped config/funnel.yaml passes, schema errors are reported
with their location, and logical contradictions are caught by the sanity
checks.
"""

import logging
from pathlib import Path

import pytest
import yaml

from tools.config_validator import (
    ConfigError,
    load_funnel_config,
    load_yaml_file,
    validate_config_file,
    validate_funnel_config,
    validate_sanity_checks,
)


SHIPPED_CONFIG = Path(__file__).resolve().parent.parent / "config" / "funnel.yaml"


def write_config(tmp_path, config):
    path = tmp_path / "funnel.yaml"
    path.write_text(yaml.safe_dump(config))
    return path


def test_shipped_config_is_valid():
    """config/funnel.yaml must pass schema and sanity checks"""
    assert validate_config_file(SHIPPED_CONFIG) == []


def test_empty_config_gets_defaults(tmp_path):
    path = tmp_path / "funnel.yaml"
    path.write_text("")

    config = load_funnel_config(path)

    assert config["screener"]["min_candles"] == 50
    assert config["quality_ranker"]["limit"] == 30
    assert config["ai"]["max_evaluations"] == 15
    assert config["storage"]["db_path"] == "data/funnel.db"
    assert config["indicators"]["facts_file"] is None


def test_schema_error_location():
    errors = validate_funnel_config({"screener": {"min_candles": 0}})
    assert len(errors) == 1
    assert "screener -> min_candles" in errors[0]


def test_invalid_price_band():
    errors = validate_funnel_config({"screener": {"min_price": 100, "max_price": 50}})
    assert any("max_price" in e for e in errors)


def test_unknown_provider():
    errors = validate_funnel_config({"ai": {"providers": [{"provider": "cohere"}]}})
    assert any("ai -> providers -> 0 -> provider" in e for e in errors)


def test_cost_rates_need_both_sides():
    errors = validate_funnel_config({"ai": {"cost_rates": {"gpt-4o-mini": {"input": 0.1}}}})
    assert any("missing output" in e for e in errors)


def test_final_limit_run_type():
    errors = validate_funnel_config({"capacity": {"final_limit": {"intraday": 5}}})
    assert any("intraday" in e for e in errors)


def test_alert_severity():
    assert validate_funnel_config({"alerts": {"min_severity": "CRITICAL"}}) == []
    assert validate_funnel_config({"alerts": {"min_severity": "loud"}}) != []


def test_top_level_must_be_mapping():
    errors = validate_funnel_config(["screener"])
    assert "top level must be a mapping" in errors[0]


class TestSanityChecks:

    def test_defaults_pass(self):
        assert validate_sanity_checks({}) == []

    def test_tier_contradiction(self):
        errors = validate_sanity_checks({"capacity": {"tier_1_min_score": 50, "tier_2_min_score": 55}})
        assert len(errors) == 1
        assert errors[0].startswith("CONTRADICTION: capacity.tier_2_min_score")

    def test_capacity_weights_must_sum_to_one(self):
        errors = validate_sanity_checks({"capacity": {"weights": {"swing": {"screener": 0.6, "ai": 0.6}}}})
        assert errors == ["UNSAFE: capacity.weights.swing sum to 1.20, expected 1.0"]

    def test_screener_weights(self):
        errors = validate_sanity_checks({"screener": {"base_weight": 0.5, "mtf_weight": 0.4}})
        assert any("screener.base_weight" in e for e in errors)

    def test_ranker_weights(self):
        errors = validate_sanity_checks({"quality_ranker": {"weights": {"quality": 0.5, "base": 0.25, "mtf": 0.15}}})
        assert any("quality_ranker.weights" in e for e in errors)

    def test_health_band_contradiction(self):
        errors = validate_sanity_checks({"health": {"min_compression": 12, "max_compression": 10}})
        assert any("health.min_compression" in e for e in errors)

    def test_advisories_are_warnings_only(self, caplog):
        config = {
            "ai": {"max_evaluations": 40, "providers": []},
            "capacity": {"final_limit": {"swing": 12}},
        }
        with caplog.at_level(logging.WARNING, logger="tools.config_validator"):
            errors = validate_sanity_checks(config)

        assert errors == []
        assert "ai.max_evaluations" in caplog.text
        assert "final_limit.swing" in caplog.text
        assert "no ai.providers" in caplog.text


class TestLoadFunnelConfig:

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError) as exc:
            load_funnel_config(tmp_path / "missing.yaml")
        assert "not found" in exc.value.errors[0]

    def test_malformed_yaml_has_context(self, tmp_path):
        path = tmp_path / "funnel.yaml"
        path.write_text("screener:\n  limit: [1, 2\n")

        errors = validate_config_file(path)

        assert len(errors) == 1
        assert "Invalid YAML" in errors[0]
        assert "line" in errors[0]

    def test_sanity_errors_raise(self, tmp_path):
        path = write_config(tmp_path, {"capacity": {"tier_1_min_score": 40, "tier_2_min_score": 40}})
        with pytest.raises(ConfigError, match="CONTRADICTION"):
            load_funnel_config(path)

    def test_sections_filled(self, tmp_path):
        path = write_config(tmp_path, {"ai": {"enabled": False}, "indicators": {"facts_file": "facts.json"}})
        config = load_funnel_config(path)

        assert config["ai"]["enabled"] is False
        assert config["ai"]["providers"] == []
        assert config["indicators"]["facts_file"] == "facts.json"
        assert config["capacity"]["tier_1_min_score"] == 60.0

    def test_load_yaml_file_empty(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_yaml_file(path) == {}
