"""
Environment-driven configuration for the card timer server.

Every value has a default so the server starts without a .env file; missing
tracking credentials simply turn the timer checks off.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_ENVIRONMENT = "staging"
DEFAULT_WEBHOOK_BASE_URL = "https://c360-staging-flows.app.n8n.cloud/webhook"
DEFAULT_HARVEST_API_BASE_URL = "https://api.harvestapp.com/v2"
DEFAULT_HARVEST_USER_AGENT = "C360-Trello-Timer (trello@c360.com)"
DEFAULT_CATEGORIES = (
    "Copywriting",
    "Project Management",
    "Account Management",
    "PR",
    "Design",
)

DEFAULT_WEBHOOK_TIMEOUT_SECONDS = 10.0
DEFAULT_WEBHOOK_RETRY_ATTEMPTS = 2
DEFAULT_WEBHOOK_RETRY_DELAY_SECONDS = 1.0


def _parse_json_mapping_env(var_name: str) -> dict[str, str]:
    raw = os.getenv(var_name)
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
        if isinstance(parsed, dict):
            mapping: dict[str, str] = {}
            for key, value in parsed.items():
                text = "" if value is None else str(value).strip()
                if not text:
                    logger.warning("Ignoring invalid %s value for %r", var_name, key)
                    continue
                mapping[str(key)] = text
            return mapping
    except Exception:
        pass
    logger.warning("Ignoring invalid %s value", var_name)
    return {}


def _parse_categories_env(var_name: str) -> tuple[str, ...]:
    raw = os.getenv(var_name)
    if not raw:
        return DEFAULT_CATEGORIES

    # Prefer a JSON array so categories may contain commas.
    try:
        parsed = json.loads(raw)
        if isinstance(parsed, list):
            values = tuple(str(item).strip() for item in parsed if str(item).strip())
            if values:
                return values
    except Exception:
        pass

    values = tuple(item.strip() for item in raw.split(",") if item.strip())
    if not values:
        logger.warning("Ignoring empty %s value; using default categories", var_name)
        return DEFAULT_CATEGORIES
    return values


def _float_env(var_name: str, default: float) -> float:
    raw = os.getenv(var_name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{var_name} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{var_name} must not be negative")
    return value


def _int_env(var_name: str, default: int) -> int:
    raw = os.getenv(var_name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{var_name} must be an integer, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{var_name} must not be negative")
    return value


@dataclass(frozen=True)
class HarvestConfig:
    """Credentials and endpoint for the time-tracking API."""

    access_token: str = ""
    account_id: str = ""
    api_base_url: str = DEFAULT_HARVEST_API_BASE_URL
    user_agent: str = DEFAULT_HARVEST_USER_AGENT

    @property
    def has_credentials(self) -> bool:
        return bool(self.access_token and self.account_id)

    @classmethod
    def from_env(cls) -> HarvestConfig:
        return cls(
            access_token=os.getenv("HARVEST_ACCESS_TOKEN", ""),
            account_id=os.getenv("HARVEST_ACCOUNT_ID", ""),
            api_base_url=os.getenv("HARVEST_API_BASE_URL", DEFAULT_HARVEST_API_BASE_URL).rstrip("/"),
            user_agent=os.getenv("HARVEST_USER_AGENT", DEFAULT_HARVEST_USER_AGENT),
        )


@dataclass(frozen=True)
class WebhookConfig:
    """Workflow gateway endpoints plus the request/retry policy."""

    base_url: str = DEFAULT_WEBHOOK_BASE_URL
    environment: str = DEFAULT_ENVIRONMENT
    api_key: str = ""
    timeout_seconds: float = DEFAULT_WEBHOOK_TIMEOUT_SECONDS
    retry_attempts: int = DEFAULT_WEBHOOK_RETRY_ATTEMPTS
    retry_delay_seconds: float = DEFAULT_WEBHOOK_RETRY_DELAY_SECONDS

    def _url(self, action: str) -> str:
        return f"{self.base_url.rstrip('/')}/{self.environment}/{action}"

    @property
    def start_timer_url(self) -> str:
        return self._url("start-timer")

    @property
    def stop_timer_url(self) -> str:
        return self._url("stop-timer")

    @property
    def create_child_cards_url(self) -> str:
        return self._url("create-child-cards")

    @classmethod
    def from_env(cls) -> WebhookConfig:
        return cls(
            base_url=os.getenv("N8N_BASE_URL", DEFAULT_WEBHOOK_BASE_URL),
            environment=os.getenv("ENVIRONMENT", DEFAULT_ENVIRONMENT),
            api_key=os.getenv("N8N_API_KEY", ""),
            timeout_seconds=_float_env("WEBHOOK_TIMEOUT_SECONDS", DEFAULT_WEBHOOK_TIMEOUT_SECONDS),
            retry_attempts=_int_env("WEBHOOK_RETRY_ATTEMPTS", DEFAULT_WEBHOOK_RETRY_ATTEMPTS),
            retry_delay_seconds=_float_env(
                "WEBHOOK_RETRY_DELAY_SECONDS", DEFAULT_WEBHOOK_RETRY_DELAY_SECONDS
            ),
        )


@dataclass(frozen=True)
class StaticUserMapping:
    """Manually curated board user -> tracking account id table."""

    by_username: dict[str, str] = field(default_factory=dict)
    by_user_id: dict[str, str] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.by_username or self.by_user_id)

    @classmethod
    def from_env(cls) -> StaticUserMapping:
        # The combined table predates the split ones; its keys may be either kind.
        combined = _parse_json_mapping_env("TRELLO_HARVEST_USER_MAPPINGS")
        by_username = {**combined, **_parse_json_mapping_env("TRELLO_HARVEST_USERNAME_MAPPINGS")}
        by_user_id = {**combined, **_parse_json_mapping_env("TRELLO_HARVEST_USER_ID_MAPPINGS")}
        return cls(by_username=by_username, by_user_id=by_user_id)


@dataclass(frozen=True)
class Settings:
    harvest: HarvestConfig = field(default_factory=HarvestConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    user_mapping: StaticUserMapping = field(default_factory=StaticUserMapping)
    categories: tuple[str, ...] = DEFAULT_CATEGORIES
    user_category_mapping: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            harvest=HarvestConfig.from_env(),
            webhook=WebhookConfig.from_env(),
            user_mapping=StaticUserMapping.from_env(),
            categories=_parse_categories_env("TIMER_CATEGORIES"),
            user_category_mapping=_parse_json_mapping_env("USER_CATEGORY_MAPPING"),
        )

    def describe(self) -> dict[str, Any]:
        """Non-secret view of the configuration for health output."""
        return {
            "harvestConfigured": self.harvest.has_credentials,
            "harvestApiBaseUrl": self.harvest.api_base_url,
            "environment": self.webhook.environment,
            "startTimerUrl": self.webhook.start_timer_url,
            "stopTimerUrl": self.webhook.stop_timer_url,
            "createChildCardsUrl": self.webhook.create_child_cards_url,
            "hasWebhookApiKey": bool(self.webhook.api_key),
            "webhookTimeoutSeconds": self.webhook.timeout_seconds,
            "webhookRetryAttempts": self.webhook.retry_attempts,
            "webhookRetryDelaySeconds": self.webhook.retry_delay_seconds,
            "categories": list(self.categories),
            "mappedUsernames": len(self.user_mapping.by_username),
            "mappedUserIds": len(self.user_mapping.by_user_id),
        }
