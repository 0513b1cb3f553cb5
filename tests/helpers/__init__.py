"""Test helpers for the funnel test suite"""

from tests.helpers.funnel_stubs import (
    FakeAccountProvider,
    ai_response,
    make_candidate,
    make_facts,
    make_instrument,
    make_provider,
    make_universe,
    make_weak_facts,
    mock_client,
    numbered_symbols,
    prompt_symbol,
    symbol_responder,
)

__all__ = [
    "FakeAccountProvider",
    "ai_response",
    "make_candidate",
    "make_facts",
    "make_instrument",
    "make_provider",
    "make_universe",
    "make_weak_facts",
    "mock_client",
    "numbered_symbols",
    "prompt_symbol",
    "symbol_responder",
]
