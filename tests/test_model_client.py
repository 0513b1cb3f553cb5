"""
Tests for model clients, the provider chain and the client factories.
"""

from unittest.mock import MagicMock, Mock, patch

import pytest
import requests

from ai.model_client import (
    MockClient,
    OllamaClient,
    ProviderChain,
    create_model_client,
    create_provider_chain,
)
from ai.schemas import AIRequest, ModelResponse
from core.exceptions import ProviderError, ProviderRateLimited, ProviderTimeout


@pytest.fixture
def request_():
    return AIRequest(system_prompt="sys", user_prompt="user", temperature=0.2, max_tokens=300)


def ollama_response(status=200, body=None):
    response = Mock()
    response.status_code = status
    response.text = "error body"
    response.json.return_value = body or {}
    return response


class TestMockClient:

    def test_fixed_response(self, request_):
        client = MockClient(fixed_response="{}", input_tokens=10, output_tokens=5)
        response = client.complete(request_, timeout=1.0)

        assert response.content == "{}"
        assert response.provider == "mock"
        assert response.input_tokens == 10
        assert client.requests == [request_]

    def test_responder_can_return_model_response(self, request_):
        custom = ModelResponse(content="x", model="m", provider="p")
        client = MockClient(responder=lambda r: custom)
        assert client.complete(request_, timeout=1.0) is custom

    def test_responder_errors_propagate(self, request_):
        def boom(r):
            raise ProviderTimeout("mock", "slow")

        with pytest.raises(ProviderTimeout):
            MockClient(responder=boom).complete(request_, timeout=1.0)


class TestOllamaClient:

    def test_success(self, request_):
        session = Mock()
        session.post.return_value = ollama_response(body={
            "message": {"content": "{\"ok\": true}"},
            "prompt_eval_count": 120,
            "eval_count": 40,
        })
        client = OllamaClient(model="llama3.1", base_url="http://ollama:11434/", session=session)

        response = client.complete(request_, timeout=7.0)

        assert response.content == "{\"ok\": true}"
        assert response.input_tokens == 120
        assert response.output_tokens == 40
        url = session.post.call_args[0][0]
        kwargs = session.post.call_args[1]
        assert url == "http://ollama:11434/api/chat"
        assert kwargs["timeout"] == 7.0
        assert kwargs["json"]["options"]["temperature"] == 0.2
        assert kwargs["json"]["messages"][0] == {"role": "system", "content": "sys"}

    def test_timeout(self, request_):
        session = Mock()
        session.post.side_effect = requests.Timeout("read timed out")
        with pytest.raises(ProviderTimeout):
            OllamaClient(session=session).complete(request_, timeout=1.0)

    def test_connection_error(self, request_):
        session = Mock()
        session.post.side_effect = requests.ConnectionError("refused")
        with pytest.raises(ProviderError):
            OllamaClient(session=session).complete(request_, timeout=1.0)

    def test_rate_limited(self, request_):
        session = Mock()
        session.post.return_value = ollama_response(status=429)
        with pytest.raises(ProviderRateLimited):
            OllamaClient(session=session).complete(request_, timeout=1.0)

    def test_http_error(self, request_):
        session = Mock()
        session.post.return_value = ollama_response(status=500)
        with pytest.raises(ProviderError, match="HTTP 500"):
            OllamaClient(session=session).complete(request_, timeout=1.0)


class TestOpenAIClient:

    def test_maps_usage(self, request_):
        with patch("ai.model_client.openai.OpenAI") as openai_cls:
            completion = MagicMock()
            completion.choices[0].message.content = "{}"
            completion.usage.prompt_tokens = 900
            completion.usage.completion_tokens = 150
            openai_cls.return_value.chat.completions.create.return_value = completion

            client = create_model_client("openai", api_key="sk-test")
            response = client.complete(request_, timeout=5.0)

        assert response.content == "{}"
        assert response.provider == "openai"
        assert response.model == "gpt-4o-mini"
        assert response.input_tokens == 900
        assert response.output_tokens == 150


class TestProviderChain:

    def test_first_success_wins(self, request_):
        primary = MockClient(fixed_response="primary")
        backup = MockClient(fixed_response="backup")

        response = ProviderChain([primary, backup]).complete(request_, timeout=1.0)

        assert response.content == "primary"
        assert backup.requests == []

    def test_falls_back_on_error(self, request_):
        def fail(r):
            raise ProviderRateLimited("openai", "HTTP 429")

        backup = MockClient(fixed_response="backup")
        response = ProviderChain([MockClient(responder=fail), backup]).complete(request_, timeout=1.0)
        assert response.content == "backup"

    def test_raises_last_error(self, request_):
        def fail_first(r):
            raise ProviderError("openai", "down")

        def fail_last(r):
            raise ProviderTimeout("anthropic", "slow")

        chain = ProviderChain([MockClient(responder=fail_first), MockClient(responder=fail_last)])
        with pytest.raises(ProviderTimeout):
            chain.complete(request_, timeout=1.0)

    def test_single_client_error_propagates(self, request_):
        def fail(r):
            raise ProviderRateLimited("openai", "HTTP 429")

        with pytest.raises(ProviderRateLimited):
            ProviderChain([MockClient(responder=fail)]).complete(request_, timeout=1.0)

    def test_empty_chain_rejected(self):
        with pytest.raises(ValueError):
            ProviderChain([])


class TestFactories:

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            create_model_client("cohere")

    def test_openai_requires_key(self):
        with pytest.raises(ValueError):
            create_model_client("openai")

    def test_chain_skips_providers_without_keys(self, monkeypatch):
        monkeypatch.delenv("FUNNEL_TEST_OPENAI_KEY", raising=False)
        chain = create_provider_chain([
            {"provider": "openai", "api_key_env": "FUNNEL_TEST_OPENAI_KEY"},
            {"provider": "mock", "model": "gpt-4o-mini", "fixed_response": "{}"},
        ])

        assert len(chain.clients) == 1
        assert chain.clients[0].provider == "mock"
        assert chain.model == "gpt-4o-mini"

    def test_chain_none_when_nothing_usable(self, monkeypatch):
        monkeypatch.delenv("FUNNEL_TEST_OPENAI_KEY", raising=False)
        assert create_provider_chain([{"provider": "openai", "api_key_env": "FUNNEL_TEST_OPENAI_KEY"}]) is None

    def test_chain_reads_key_from_env(self, monkeypatch):
        monkeypatch.setenv("FUNNEL_TEST_ANTHROPIC_KEY", "sk-ant-test")
        with patch("ai.model_client.anthropic.Anthropic") as anthropic_cls:
            chain = create_provider_chain([
                {"provider": "anthropic", "api_key_env": "FUNNEL_TEST_ANTHROPIC_KEY"},
            ])

        anthropic_cls.assert_called_once_with(api_key="sk-ant-test", timeout=30.0)
        assert chain.clients[0].provider == "anthropic"
