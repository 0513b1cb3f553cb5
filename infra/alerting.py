"""Webhook alerts for funnel failures and unhealthy runs."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import socket
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class AlertSeverity(Enum):
    INFO = 10
    WARNING = 20
    CRITICAL = 30

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.name.lower()

    @classmethod
    def from_string(cls, value: Optional[str], default: Optional["AlertSeverity"] = None) -> "AlertSeverity":
        if not value:
            return default or cls.WARNING
        try:
            return cls[value.strip().upper()]
        except KeyError:
            return default or cls.WARNING


@dataclass
class AlertConfig:
    enabled: bool
    webhook_url: Optional[str]
    min_severity: AlertSeverity = AlertSeverity.WARNING
    dry_run: bool = False
    timeout: float = 5.0
    dedupe_seconds: float = 300.0


class AlertService:
    """
    Post alerts to a JSON webhook (Slack/Telegram bridge style ``{"text": ...}``).

    Identical alerts inside ``dedupe_seconds`` are sent once. Delivery
    failures are logged, never raised: an alert must not break a run.
    """

    def __init__(self, config: AlertConfig) -> None:
        self._config = config
        self._enabled = bool(config.enabled and (config.webhook_url or config.dry_run))
        if config.enabled and not self._enabled:
            logger.warning("Alerting enabled but no webhook URL set; disabling alerts")
        self._last_sent: Dict[str, float] = {}
        self.sent: list = []

    @classmethod
    def from_config(cls, raw_config: Optional[Dict[str, Any]]) -> "AlertService":
        raw_config = raw_config or {}

        webhook_url = raw_config.get("webhook_url")
        if webhook_url and "${" in webhook_url:
            webhook_url = os.path.expandvars(webhook_url)
        if not webhook_url:
            webhook_url = os.getenv(raw_config.get("webhook_env", "FUNNEL_ALERT_WEBHOOK_URL"), "")

        return cls(
            AlertConfig(
                enabled=bool(raw_config.get("enabled", False)),
                webhook_url=webhook_url or None,
                min_severity=AlertSeverity.from_string(raw_config.get("min_severity"), AlertSeverity.WARNING),
                dry_run=bool(raw_config.get("dry_run", False)),
                timeout=float(raw_config.get("timeout_seconds", 5.0)),
                dedupe_seconds=float(raw_config.get("dedupe_seconds", 300.0)),
            )
        )

    def is_enabled(self) -> bool:
        return self._enabled

    def notify(
        self,
        severity: AlertSeverity,
        title: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Send an alert.

        Returns:
            True if the alert was delivered (or logged in dry-run mode)
        """
        if not self._enabled or severity.value < self._config.min_severity.value:
            return False

        fingerprint = hashlib.sha256(f"{severity.name}|{title}|{message}".encode("utf-8")).hexdigest()
        now = time.monotonic()
        last = self._last_sent.get(fingerprint)
        if last is not None and now - last < self._config.dedupe_seconds:
            logger.debug(f"Alert deduped: {title}")
            return False
        self._last_sent[fingerprint] = now

        payload = self._build_payload(severity, title, message, context)
        if self._config.dry_run:
            logger.info("[ALERT:%s] %s - %s | %s", severity.name, title, message, context or {})
            self.sent.append(payload)
            return True

        request = urllib.request.Request(
            self._config.webhook_url,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
        )
        try:
            with urllib.request.urlopen(request, timeout=self._config.timeout) as response:
                if response.status >= 400:
                    logger.error("Alert webhook returned HTTP %s for '%s'", response.status, title)
                    return False
        except (urllib.error.URLError, socket.timeout) as exc:
            logger.error("Failed to deliver alert '%s': %s", title, exc)
            return False

        self.sent.append(payload)
        return True

    @staticmethod
    def _build_payload(
        severity: AlertSeverity,
        title: str,
        message: str,
        context: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        parts = [f"[{severity.name}] {title}", message]
        if context:
            parts.append(f"context={json.dumps(context, sort_keys=True, default=str)}")
        return {"text": " | ".join(filter(None, parts))}


__all__ = ["AlertService", "AlertSeverity", "AlertConfig"]
