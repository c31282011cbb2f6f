"""
Outbound calls to the workflow-automation webhook gateway.

Each action POSTs a JSON envelope describing the card, the acting user, and
the board/list context. Any 2xx counts as delivered; anything else is retried
a fixed number of times with a fixed delay.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Union

import httpx

from .config import WebhookConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Delivered:
    status_code: int
    attempts: int


@dataclass(frozen=True)
class Exhausted:
    attempts: int
    last_error: str
    status_code: int | None = None


DeliveryResult = Union[Delivered, Exhausted]


def card_envelope(card: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": card.get("id"),
        "name": card.get("name"),
        "desc": card.get("desc"),
        "idBoard": card.get("idBoard"),
        "idList": card.get("idList"),
        "labels": card.get("labels") or [],
        "members": card.get("members") or [],
        "due": card.get("due"),
        "dueComplete": card.get("dueComplete") or False,
        "attachments": card.get("attachments") or [],
        "url": card.get("url"),
        "shortUrl": card.get("shortUrl"),
        "badges": card.get("badges"),
        "customFieldItems": card.get("customFieldItems") or [],
    }


def user_envelope(member: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": member.get("id"),
        "fullName": member.get("fullName"),
        "username": member.get("username"),
        "avatarUrl": member.get("avatarUrl"),
        "initials": member.get("initials"),
    }


def checklist_envelope(checklist: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": checklist.get("id"),
        "name": checklist.get("name"),
        "checkItems": checklist.get("checkItems") or [],
    }


def build_envelope(
    card: dict[str, Any],
    member: dict[str, Any],
    board: dict[str, Any],
    board_list: dict[str, Any],
    *,
    category: str | None = None,
    project: dict[str, Any] | None = None,
    checklists: list[dict[str, Any]] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "card": card_envelope(card),
        "user": user_envelope(member),
    }
    if category is not None:
        payload["category"] = category
    if project is not None:
        payload["project"] = project
    if checklists is not None:
        payload["checklists"] = [checklist_envelope(c) for c in checklists]

    stamp = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    payload["timestamp"] = stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    payload["boardName"] = board.get("name")
    payload["listName"] = board_list.get("name")
    return payload


class WebhookClient:
    def __init__(
        self,
        config: WebhookConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._config = config
        self._transport = transport
        self._sleep = sleep

    async def post(self, url: str, payload: dict[str, Any]) -> DeliveryResult:
        max_attempts = self._config.retry_attempts + 1
        headers = {"Content-Type": "application/json", "X-API-Key": self._config.api_key}
        last_error = ""
        last_status: int | None = None

        async with httpx.AsyncClient(
            timeout=self._config.timeout_seconds, transport=self._transport
        ) as client:
            for attempt in range(1, max_attempts + 1):
                try:
                    resp = await asyncio.wait_for(
                        client.post(url, json=payload, headers=headers), self._config.timeout_seconds
                    )
                except (asyncio.TimeoutError, httpx.TimeoutException):
                    last_status = None
                    last_error = f"timed out after {self._config.timeout_seconds}s"
                except httpx.HTTPError as exc:
                    last_status = None
                    last_error = f"{exc.__class__.__name__}: {exc}"
                else:
                    if resp.is_success:
                        logger.info("Webhook %s delivered on attempt %d (%d)", url, attempt, resp.status_code)
                        return Delivered(status_code=resp.status_code, attempts=attempt)
                    last_status = resp.status_code
                    last_error = f"webhook returned {resp.status_code}"

                logger.warning("Webhook %s attempt %d/%d failed: %s", url, attempt, max_attempts, last_error)
                if attempt < max_attempts:
                    await self._sleep(self._config.retry_delay_seconds)

        logger.error("Webhook %s failed after %d attempts: %s", url, max_attempts, last_error)
        return Exhausted(attempts=max_attempts, last_error=last_error, status_code=last_status)
