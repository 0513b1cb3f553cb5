"""
Model client abstraction for AI providers (OpenAI, Anthropic, Ollama).

Each client turns an AIRequest into a ModelResponse with token usage and
maps provider failures onto ProviderTimeout / ProviderRateLimited /
ProviderError. ProviderChain tries clients in priority order.
"""

import logging
import os
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Union

import anthropic
import openai
import requests

from ai.schemas import AIRequest, ModelResponse
from core.exceptions import ProviderError, ProviderRateLimited, ProviderTimeout

log = logging.getLogger(__name__)


class ModelClient(ABC):
    """Abstract base class for AI model clients."""

    provider: str = "unknown"
    model: str = "unknown"

    @abstractmethod
    def complete(self, request: AIRequest, timeout: float) -> ModelResponse:
        """
        Send one prompt to the model.

        Args:
            request: System/user prompt and sampling settings
            timeout: Max time in seconds

        Returns:
            ModelResponse with raw text content and token usage

        Raises:
            ProviderTimeout: If call exceeds timeout
            ProviderRateLimited: On HTTP 429 from the provider
            ProviderError: On any other API failure
        """
        pass


class OpenAIClient(ModelClient):
    """OpenAI chat completions client."""

    provider = "openai"

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", base_url: Optional[str] = None):
        self.model = model
        self.base_url = base_url or "https://api.openai.com/v1"
        self.client = openai.OpenAI(api_key=api_key, base_url=self.base_url, timeout=30.0)

    def complete(self, request: AIRequest, timeout: float) -> ModelResponse:
        start = time.perf_counter()
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": request.system_prompt},
                    {"role": "user", "content": request.user_prompt},
                ],
                response_format={"type": "json_object"},
                temperature=request.temperature,
                max_tokens=request.max_tokens,
                timeout=timeout,
            )
        except openai.APITimeoutError as e:
            raise ProviderTimeout(self.provider, f"timed out after {timeout}s", e) from e
        except openai.RateLimitError as e:
            raise ProviderRateLimited(self.provider, str(e), e) from e
        except openai.OpenAIError as e:
            raise ProviderError(self.provider, str(e), e) from e

        elapsed = time.perf_counter() - start
        log.info(f"OpenAI call completed in {elapsed*1000:.1f}ms")

        usage = getattr(response, "usage", None)
        return ModelResponse(
            content=response.choices[0].message.content or "",
            model=self.model,
            provider=self.provider,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )


class AnthropicClient(ModelClient):
    """Anthropic messages client."""

    provider = "anthropic"

    def __init__(self, api_key: str, model: str = "claude-3-5-haiku-latest"):
        self.model = model
        self.client = anthropic.Anthropic(api_key=api_key, timeout=30.0)

    def complete(self, request: AIRequest, timeout: float) -> ModelResponse:
        start = time.perf_counter()
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
                system=request.system_prompt,
                messages=[{"role": "user", "content": request.user_prompt}],
                timeout=timeout,
            )
        except anthropic.APITimeoutError as e:
            raise ProviderTimeout(self.provider, f"timed out after {timeout}s", e) from e
        except anthropic.RateLimitError as e:
            raise ProviderRateLimited(self.provider, str(e), e) from e
        except anthropic.AnthropicError as e:
            raise ProviderError(self.provider, str(e), e) from e

        elapsed = time.perf_counter() - start
        log.info(f"Anthropic call completed in {elapsed*1000:.1f}ms")

        usage = getattr(response, "usage", None)
        return ModelResponse(
            content=response.content[0].text if response.content else "",
            model=self.model,
            provider=self.provider,
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
        )


class OllamaClient(ModelClient):
    """Local Ollama server over its HTTP chat API."""

    provider = "ollama"

    def __init__(self, model: str = "llama3.1", base_url: str = "http://localhost:11434",
                 session: Optional[requests.Session] = None):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    def complete(self, request: AIRequest, timeout: float) -> ModelResponse:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            "format": "json",
            "stream": False,
            "options": {"temperature": request.temperature},
        }
        start = time.perf_counter()
        try:
            response = self.session.post(f"{self.base_url}/api/chat", json=payload, timeout=timeout)
        except requests.Timeout as e:
            raise ProviderTimeout(self.provider, f"timed out after {timeout}s", e) from e
        except requests.RequestException as e:
            raise ProviderError(self.provider, str(e), e) from e

        if response.status_code == 429:
            raise ProviderRateLimited(self.provider, "HTTP 429")
        if response.status_code >= 400:
            raise ProviderError(self.provider, f"HTTP {response.status_code}: {response.text[:200]}")

        elapsed = time.perf_counter() - start
        log.info(f"Ollama call completed in {elapsed*1000:.1f}ms")

        body = response.json()
        return ModelResponse(
            content=(body.get("message") or {}).get("content", ""),
            model=self.model,
            provider=self.provider,
            input_tokens=int(body.get("prompt_eval_count", 0) or 0),
            output_tokens=int(body.get("eval_count", 0) or 0),
        )


Responder = Callable[[AIRequest], Union[str, ModelResponse]]


class MockClient(ModelClient):
    """Mock client for testing."""

    provider = "mock"

    def __init__(
        self,
        fixed_response: Optional[str] = None,
        responder: Optional[Responder] = None,
        model: str = "gpt-4o-mini",
        input_tokens: int = 1000,
        output_tokens: int = 200,
    ):
        """
        Args:
            fixed_response: Content returned for every request
            responder: Callable computing content per request; may raise
            model: Model name reported in responses
        """
        self.fixed_response = fixed_response
        self.responder = responder
        self.model = model
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.requests: List[AIRequest] = []

    def complete(self, request: AIRequest, timeout: float) -> ModelResponse:
        self.requests.append(request)
        if self.responder is not None:
            result = self.responder(request)
            if isinstance(result, ModelResponse):
                return result
            content = result
        else:
            content = self.fixed_response or ""
        return ModelResponse(
            content=content,
            model=self.model,
            provider=self.provider,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
        )


class ProviderChain(ModelClient):
    """
    Tries clients in priority order; the first success wins.

    When every client fails, the last client's error is raised.
    """

    provider = "chain"

    def __init__(self, clients: List[ModelClient]):
        if not clients:
            raise ValueError("ProviderChain requires at least one client")
        self.clients = clients
        self.model = clients[0].model

    def complete(self, request: AIRequest, timeout: float) -> ModelResponse:
        for client in self.clients[:-1]:
            try:
                return client.complete(request, timeout)
            except ProviderError as e:
                log.warning(f"Provider {client.provider} failed ({e}); trying next provider")
        return self.clients[-1].complete(request, timeout)


def create_model_client(
    provider: str,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    **kwargs
) -> ModelClient:
    """
    Factory function to create appropriate model client.

    Args:
        provider: "openai", "anthropic", "ollama", or "mock"
        api_key: API key for the provider
        model: Model name (provider-specific)
        **kwargs: Additional provider-specific args

    Raises:
        ValueError: If provider is unknown or a required key is missing
    """
    provider = provider.lower()

    if provider == "openai":
        if not api_key:
            raise ValueError("OpenAI requires api_key")
        return OpenAIClient(api_key=api_key, model=model or "gpt-4o-mini", base_url=kwargs.get("base_url"))

    elif provider == "anthropic":
        if not api_key:
            raise ValueError("Anthropic requires api_key")
        return AnthropicClient(api_key=api_key, model=model or "claude-3-5-haiku-latest")

    elif provider == "ollama":
        return OllamaClient(model=model or "llama3.1", base_url=kwargs.get("base_url") or "http://localhost:11434")

    elif provider == "mock":
        return MockClient(fixed_response=kwargs.get("fixed_response"), model=model or "gpt-4o-mini")

    else:
        raise ValueError(f"Unknown provider: {provider}. Use 'openai', 'anthropic', 'ollama', or 'mock'")


def create_provider_chain(providers: List[Dict[str, Any]]) -> Optional[ProviderChain]:
    """
    Build a ProviderChain from the ``ai.providers`` config list.

    Entries whose API key env var is unset are skipped with a warning;
    None is returned when no provider is usable.
    """
    clients: List[ModelClient] = []
    for entry in providers:
        name = entry.get("provider", "")
        api_key = entry.get("api_key")
        env_key = entry.get("api_key_env")
        if not api_key and env_key:
            api_key = os.getenv(env_key)
        if name in ("openai", "anthropic") and not api_key:
            log.warning(f"Skipping provider {name}: {env_key or 'api_key'} not set")
            continue
        clients.append(
            create_model_client(
                name,
                api_key=api_key,
                model=entry.get("model"),
                base_url=entry.get("base_url"),
                fixed_response=entry.get("fixed_response"),
            )
        )
    if not clients:
        log.warning("No usable AI provider configured; AI scoring will pass candidates through")
        return None
    return ProviderChain(clients)
