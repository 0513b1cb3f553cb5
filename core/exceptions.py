"""Shared exception types for the candidate funnel and its collaborators."""
from typing import Optional


class FunnelError(Exception):
    """Base class for funnel errors."""


class CriticalDataUnavailable(FunnelError):
    """Raised when required account or market data cannot be fetched safely."""

    def __init__(self, source: str, original: Optional[Exception] = None):
        super().__init__(source)
        self.source = source
        self.original = original


class InsufficientIndicatorData(FunnelError):
    """Indicator facts for an instrument are missing or too short to score."""

    def __init__(self, symbol: str, reason: str = "insufficient data"):
        super().__init__(f"{symbol}: {reason}")
        self.symbol = symbol
        self.reason = reason


class ProviderError(FunnelError):
    """An AI provider call failed."""

    def __init__(self, provider: str, message: str, original: Optional[Exception] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.original = original


class ProviderTimeout(ProviderError):
    """AI provider did not answer within the configured timeout."""


class ProviderRateLimited(ProviderError):
    """AI provider answered with a rate-limit (HTTP 429) error."""


class AIResponseError(FunnelError):
    """AI response could not be parsed into the fixed evaluation schema."""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


class InvalidRunTransition(FunnelError):
    """A Run was asked to finalize more than once."""


class RunFailure(FunnelError):
    """A funnel run aborted; the original error is chained as __cause__."""

    def __init__(self, run_id: str, stage: str, message: str):
        super().__init__(f"Run {run_id} failed during {stage}: {message}")
        self.run_id = run_id
        self.stage = stage
