"""
Running-timer detection for a card.

A card shows a running timer when an active time entry's client equals the
card's first label and its project equals the card name, both compared
case-insensitively. With a resolvable user the query is scoped to that user;
otherwise (badge refreshes, unmapped users) it spans the whole team.

Checks are best-effort: every failure is logged and reported as NONE.
"""

from __future__ import annotations

import logging

from .card_identity import normalize
from .harvest_client import TIMER_CHECK_TIMEOUT_SECONDS, HarvestClient
from .models import ActiveTimerRecord, BoardUser, CardSnapshot, TimerStatus
from .resolver import Found, UserResolver

logger = logging.getLogger(__name__)


def timer_matches(record: ActiveTimerRecord, client_label: str, project_name: str) -> bool:
    client_match = bool(record.client_name) and record.client_name.lower() == client_label.lower()
    project_match = bool(record.project_name) and record.project_name.lower() == project_name.lower()
    if client_match or project_match:
        logger.debug(
            "Comparing timer project=%r client=%r with card project=%r client=%r: "
            "clientMatch=%s projectMatch=%s",
            record.project_name,
            record.client_name,
            project_name,
            client_label,
            client_match,
            project_match,
        )
    return client_match and project_match


class RunningTimerMatcher:
    def __init__(
        self,
        client: HarvestClient,
        resolver: UserResolver,
        timeout_seconds: float = TIMER_CHECK_TIMEOUT_SECONDS,
    ):
        self._client = client
        self._resolver = resolver
        self._timeout_seconds = timeout_seconds

    async def check(self, card: CardSnapshot, user: BoardUser | None = None) -> TimerStatus:
        try:
            return await self._check(card, user)
        except Exception as exc:
            logger.warning("Timer check failed for card %r: %s", card.name, exc)
            return TimerStatus.NONE

    async def _check(self, card: CardSnapshot, user: BoardUser | None) -> TimerStatus:
        if not self._client.configured:
            logger.warning("Harvest API credentials not configured; skipping timer check")
            return TimerStatus.NONE

        client_label = card.client_label
        if not client_label:
            logger.debug("No client label on card %r, skipping timer check", card.name)
            return TimerStatus.NONE

        identity = normalize(card)
        if identity.is_child:
            # The running state surfaces on the parent card only.
            logger.debug("Child card %r: no timer status on child cards", card.name)
            return TimerStatus.NONE

        account_id = None
        if user is not None:
            resolution = await self._resolver.resolve(user)
            if isinstance(resolution, Found):
                account_id = resolution.account_id
            else:
                logger.info("User %r not mapped to Harvest; checking team-wide timers", user.username)

        timers = await self._client.list_running_entries(
            user_id=account_id, timeout=self._timeout_seconds
        )
        scope = f"user {account_id}" if account_id else "team-wide"
        logger.debug("Harvest returned %d running timer(s) (%s)", len(timers), scope)

        for timer in timers:
            if timer_matches(timer, client_label, identity.effective_name):
                logger.info(
                    "Running timer found (%s) on card %r (%s), started by %s",
                    scope,
                    identity.effective_name,
                    client_label,
                    timer.user.name if timer.user else "unknown",
                )
                return TimerStatus.RUNNING_FOR_USER if account_id else TimerStatus.RUNNING_TEAMWIDE

        return TimerStatus.NONE

    async def find_user_running_timer(self, user: BoardUser) -> ActiveTimerRecord | None:
        """The user's first running timer on any project, or None."""
        if not self._client.configured:
            logger.warning("Harvest API credentials not configured")
            return None

        try:
            resolution = await self._resolver.resolve(user)
            if not isinstance(resolution, Found):
                logger.warning("User %r not mapped to Harvest", user.username)
                return None
            timers = await self._client.list_running_entries(
                user_id=resolution.account_id, timeout=self._timeout_seconds
            )
        except Exception as exc:
            logger.warning("Error checking for running timers of %r: %s", user.username, exc)
            return None

        return timers[0] if timers else None
