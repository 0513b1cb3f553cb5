"""
Tests for AI evaluation parsing against the fixed response schema.
"""

import json

import pytest

from ai.schemas import parse_evaluation, strip_code_fences
from core.exceptions import AIResponseError
from tests.helpers import ai_response


class TestParseEvaluation:

    def test_valid_response(self):
        evaluation = parse_evaluation(ai_response(confidence=7.5))

        assert evaluation.confidence == 7.5
        assert evaluation.stage == "early"
        assert evaluation.holding_period_days == "7-14"
        assert evaluation.avoid is False
        assert evaluation.risk == "low"

    def test_code_fenced_json(self):
        content = f"```json\n{ai_response()}\n```"
        assert parse_evaluation(content).confidence == 8.0

    def test_unknown_keys_ignored(self):
        payload = json.loads(ai_response())
        payload["commentary"] = "looks fine"
        assert parse_evaluation(json.dumps(payload)).confidence == 8.0

    @pytest.mark.parametrize("content", [None, "", "not json at all", "[1, 2, 3]"])
    def test_unparseable(self, content):
        with pytest.raises(AIResponseError):
            parse_evaluation(content)

    def test_missing_schema_version(self):
        payload = json.loads(ai_response())
        del payload["schema_version"]
        with pytest.raises(AIResponseError, match="schema_version"):
            parse_evaluation(json.dumps(payload))

    def test_schema_version_mismatch(self):
        with pytest.raises(AIResponseError, match="schema_version"):
            parse_evaluation(ai_response(schema_version="2.0"))

    @pytest.mark.parametrize("override", [
        {"confidence": 11.0},
        {"confidence": -1.0},
        {"stage": "very_late"},
        {"entry_timing": "now"},
        {"holding_period_days": "two weeks"},
        {"holding_period_days": "14-7"},
        {"primary_risk": ""},
    ])
    def test_schema_violations(self, override):
        with pytest.raises(AIResponseError) as exc:
            parse_evaluation(ai_response(**override))
        assert exc.value.raw is not None

    def test_missing_required_field(self):
        payload = json.loads(ai_response())
        del payload["invalidate_if"]
        with pytest.raises(AIResponseError, match="invalidate_if"):
            parse_evaluation(json.dumps(payload))


class TestDerivedFields:

    def test_wait_means_avoid(self):
        assert parse_evaluation(ai_response(entry_timing="wait")).avoid is True

    def test_low_confidence_means_avoid(self):
        assert parse_evaluation(ai_response(confidence=5.5)).avoid is True

    def test_late_stage_is_high_risk(self):
        assert parse_evaluation(ai_response(stage="late")).risk == "high"

    def test_middle_stage_is_medium_risk(self):
        assert parse_evaluation(ai_response(stage="middle", momentum_trend="stable")).risk == "medium"

    def test_to_dict_includes_derived(self):
        data = parse_evaluation(ai_response()).to_dict()
        assert data["avoid"] is False
        assert data["risk"] == "low"
        assert data["invalidate_if"] == "Daily close below EMA50"

    def test_holding_period_normalized(self):
        assert parse_evaluation(ai_response(holding_period_days=" 10 - 20 ")).holding_period_days == "10-20"


def test_strip_code_fences_plain():
    assert strip_code_fences("  {\"a\": 1}  ") == "{\"a\": 1}"
    assert strip_code_fences("```\n{}\n```") == "{}"
