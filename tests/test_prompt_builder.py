"""
Tests for the locked evaluation prompt.
"""

import json

from ai.prompt_builder import OUTPUT_SCHEMA, PROMPT_VERSION, SYSTEM_MESSAGE, TASK_DEFINITION, PromptBuilder
from tests.helpers import make_candidate, make_facts, prompt_symbol


def setup_json(request):
    block = request.user_prompt.split("SETUP DATA:\n\n", 1)[1]
    return json.loads(block)


class TestPromptBuilder:

    def test_fixed_sections_present(self):
        request = PromptBuilder().build(make_candidate("TCS"))

        assert request.system_prompt == SYSTEM_MESSAGE
        assert request.user_prompt.startswith(TASK_DEFINITION)
        assert OUTPUT_SCHEMA in request.user_prompt
        assert '"schema_version": "1.0"' in request.user_prompt
        assert PROMPT_VERSION == PromptBuilder.version

    def test_sampling_settings(self):
        request = PromptBuilder(temperature=0.1, max_tokens=500).build(make_candidate())
        assert request.temperature == 0.1
        assert request.max_tokens == 500

    def test_deterministic_for_identical_candidates(self):
        builder = PromptBuilder()
        first = builder.build(make_candidate("TCS"))
        second = builder.build(make_candidate("TCS"))
        assert first.user_prompt == second.user_prompt

    def test_only_setup_data_varies(self):
        builder = PromptBuilder()
        tcs = builder.build(make_candidate("TCS")).user_prompt
        infy = builder.build(make_candidate("INFY")).user_prompt

        assert tcs != infy
        assert tcs.split("SETUP DATA:")[0] == infy.split("SETUP DATA:")[0]

    def test_setup_data_fields(self):
        candidate = make_candidate(
            "TCS",
            trade_quality_score=72.5,
            metadata={"recent_swing_low": 96.0, "sector_strength": "strong"},
        )
        data = setup_json(PromptBuilder().build(candidate, "longterm"))

        assert data["symbol"] == "TCS"
        assert data["strategy"] == "longterm"
        assert data["setup_status"] == "READY"
        assert data["scores"] == {
            "screener_score": 92.0,
            "base_score": 100.0,
            "mtf_score": 80.0,
            "quality_score": 72.5,
        }
        assert data["trend_alignment"] == {"weekly": "bullish", "daily": "bullish", "hourly": "bullish"}
        assert data["current_price"] == 102.0
        assert data["levels"]["recent_swing_low"] == 96.0
        assert data["indicators"]["ema20"] == 100.0
        assert data["market_context"]["sector_strength"] == "strong"
        assert data["market_context"]["index_trend"] == "unknown"

    def test_default_levels_derived_from_price(self):
        data = setup_json(PromptBuilder().build(make_candidate("TCS")))
        assert data["levels"]["recent_swing_low"] == 95.0
        assert data["levels"]["recent_swing_high"] == 107.1

    def test_missing_alignment_reads_unknown(self):
        candidate = make_candidate("TCS", facts=make_facts("TCS", multi_timeframe={"score": 50}))
        data = setup_json(PromptBuilder().build(candidate))
        assert data["trend_alignment"]["daily"] == "unknown"

    def test_symbol_is_recoverable_from_prompt(self):
        assert prompt_symbol(PromptBuilder().build(make_candidate("HDFCBANK"))) == "HDFCBANK"
