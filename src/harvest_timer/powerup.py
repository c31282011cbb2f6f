"""
Card-level actions of the timer power-up: badge and button state, the
start-timer form, and the three webhook actions.

Host snapshots (card, member, board, list) come in as the host's own dicts;
this layer never talks to the host directly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .card_identity import normalize
from .config import Settings
from .directory import Directories
from .models import BoardUser, CardSnapshot, TimerStatus, TrackingProject
from .resolver import Found, UserResolver
from .timer_check import RunningTimerMatcher
from .webhook import Delivered, WebhookClient, build_envelope

logger = logging.getLogger(__name__)

TIMER_ALREADY_RUNNING_MESSAGE = (
    "You already have a timer running for this project. Stop it before starting a new one."
)
START_SUCCESS_MESSAGE = "Timer started successfully!"
START_FAILURE_MESSAGE = "Failed to start timer. Please try again."
STOP_SUCCESS_MESSAGE = "Timer stopped successfully!"
STOP_FAILURE_MESSAGE = (
    "Unable to stop timer. Please check that your timer is running and your "
    "Harvest project is properly configured."
)
CHILD_CARDS_SUCCESS_MESSAGE = "Child cards created successfully!"
CHILD_CARDS_FAILURE_MESSAGE = "Failed to create cards. Please try again."


@dataclass(frozen=True)
class ActionOutcome:
    """Result of a user-initiated action, rendered by the host as a toast."""

    ok: bool
    message: str
    display: str
    attempts: int = 0

    @classmethod
    def success(cls, message: str, attempts: int = 0) -> ActionOutcome:
        return cls(ok=True, message=message, display="success", attempts=attempts)

    @classmethod
    def failure(cls, message: str, attempts: int = 0, display: str = "error") -> ActionOutcome:
        return cls(ok=False, message=message, display=display, attempts=attempts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "message": self.message,
            "display": self.display,
            "attempts": self.attempts,
        }


class PowerUp:
    def __init__(
        self,
        settings: Settings,
        directories: Directories,
        resolver: UserResolver,
        matcher: RunningTimerMatcher,
        webhook: WebhookClient,
    ):
        self._settings = settings
        self._directories = directories
        self._resolver = resolver
        self._matcher = matcher
        self._webhook = webhook

    # -- timer state ------------------------------------------------------

    async def timer_status(
        self, card: dict[str, Any], member: dict[str, Any] | None = None
    ) -> TimerStatus:
        user = BoardUser.from_payload(member) if member else None
        return await self._matcher.check(CardSnapshot.from_payload(card), user)

    async def card_badge(self, card: dict[str, Any]) -> dict[str, str] | None:
        # Badge refreshes cannot identify the viewer, so the check is team-wide.
        status = await self.timer_status(card)
        return status.badge()

    async def card_buttons(
        self, card: dict[str, Any], member: dict[str, Any] | None
    ) -> list[dict[str, Any]]:
        status = await self.timer_status(card, member)
        buttons: list[dict[str, Any]] = []

        if status.is_running:
            buttons.append(
                {
                    "icon": "./start-timer.svg",
                    "text": "⏱️ Timer Already Running",
                    "action": "alert",
                    "enabled": False,
                    "message": TIMER_ALREADY_RUNNING_MESSAGE,
                    "display": "warning",
                }
            )
        else:
            buttons.append(
                {
                    "icon": "./start-timer.svg",
                    "text": "Start Harvest Timer",
                    "action": "start_timer",
                    "enabled": True,
                }
            )

        buttons.append(
            {
                "icon": "./stop-timer.svg",
                "text": "Stop Harvest Timer",
                "action": "stop_timer",
                "enabled": True,
            }
        )
        buttons.append(
            {
                "icon": "./create-child-cards.svg",
                "text": "Convert Checklist Items to Cards",
                "action": "create_child_cards",
                "enabled": True,
            }
        )
        return buttons

    async def running_timer_for(self, member: dict[str, Any]) -> dict[str, str] | None:
        record = await self._matcher.find_user_running_timer(BoardUser.from_payload(member))
        return record.summary() if record else None

    async def resolve_account(self, member: dict[str, Any]) -> dict[str, Any]:
        resolution = await self._resolver.resolve(BoardUser.from_payload(member))
        if isinstance(resolution, Found):
            return {
                "found": True,
                "accountId": resolution.account_id,
                "strategy": resolution.strategy,
            }
        return {"found": False, "message": resolution.message}

    # -- start-timer form -------------------------------------------------

    def default_category(self, member: dict[str, Any]) -> str | None:
        mapping = self._settings.user_category_mapping
        user = BoardUser.from_payload(member)
        category = mapping.get(user.id) or mapping.get(user.username)
        if category and category in self._settings.categories:
            return category
        return None

    async def projects_for_client(self, client_label: str | None) -> list[TrackingProject]:
        """Active projects, narrowed to one client when a label is given."""
        try:
            projects = await self._directories.projects.get()
        except Exception as exc:
            logger.warning("Harvest projects unavailable: %s", exc)
            return []
        if not client_label:
            return list(projects)
        wanted = client_label.lower()
        return [p for p in projects if p.client.name.lower() == wanted]

    async def start_timer_form(
        self, card: dict[str, Any], member: dict[str, Any] | None
    ) -> dict[str, Any]:
        snapshot = CardSnapshot.from_payload(card)
        identity = normalize(snapshot)
        projects = await self.projects_for_client(snapshot.client_label)

        selected = None
        for project in projects:
            if project.name.lower() == identity.effective_name.lower():
                selected = project.id
                break

        return {
            "categories": list(self._settings.categories),
            "defaultCategory": self.default_category(member) if member else None,
            "clientLabel": snapshot.client_label,
            "effectiveName": identity.effective_name,
            "isChild": identity.is_child,
            "projects": [p.to_dict() for p in projects],
            "selectedProjectId": selected,
        }

    async def _project_payload(self, project_id: str) -> dict[str, Any]:
        try:
            projects = await self._directories.projects.get()
        except Exception as exc:
            logger.warning("Harvest projects unavailable, sending bare project id: %s", exc)
            return {"id": project_id}
        for project in projects:
            if project.id == project_id:
                return project.to_dict()
        logger.warning("Project %s not in Harvest directory, sending bare id", project_id)
        return {"id": project_id}

    # -- webhook actions --------------------------------------------------

    async def start_timer(
        self,
        card: dict[str, Any],
        member: dict[str, Any],
        board: dict[str, Any],
        board_list: dict[str, Any],
        category: str,
        project_id: str | None = None,
    ) -> ActionOutcome:
        category = (category or "").strip()
        if not category:
            return ActionOutcome.failure("Please select a category.", display="warning")

        project = await self._project_payload(project_id) if project_id else None
        payload = build_envelope(
            card, member, board, board_list, category=category, project=project
        )
        logger.info("Starting timer for card %r (%s)", card.get("name"), category)
        result = await self._webhook.post(self._settings.webhook.start_timer_url, payload)
        if isinstance(result, Delivered):
            return ActionOutcome.success(START_SUCCESS_MESSAGE, result.attempts)
        return ActionOutcome.failure(START_FAILURE_MESSAGE, result.attempts)

    async def stop_timer(
        self,
        card: dict[str, Any],
        member: dict[str, Any],
        board: dict[str, Any],
        board_list: dict[str, Any],
    ) -> ActionOutcome:
        payload = build_envelope(card, member, board, board_list)
        logger.info("Stopping timer for card %r", card.get("name"))
        result = await self._webhook.post(self._settings.webhook.stop_timer_url, payload)
        if isinstance(result, Delivered):
            return ActionOutcome.success(STOP_SUCCESS_MESSAGE, result.attempts)
        return ActionOutcome.failure(STOP_FAILURE_MESSAGE, result.attempts)

    async def create_child_cards(
        self,
        card: dict[str, Any],
        member: dict[str, Any],
        board: dict[str, Any],
        board_list: dict[str, Any],
        checklist_ids: list[str],
    ) -> ActionOutcome:
        wanted = set(checklist_ids or [])
        if not wanted:
            return ActionOutcome.failure("Select at least one checklist.", display="warning")

        selected = [c for c in card.get("checklists") or [] if c.get("id") in wanted]
        if not selected:
            return ActionOutcome.failure(
                "None of the selected checklists exist on this card.", display="warning"
            )

        payload = build_envelope(card, member, board, board_list, checklists=selected)
        logger.info("Converting %d checklist(s) on card %r", len(selected), card.get("name"))
        result = await self._webhook.post(self._settings.webhook.create_child_cards_url, payload)
        if isinstance(result, Delivered):
            return ActionOutcome.success(CHILD_CARDS_SUCCESS_MESSAGE, result.attempts)
        return ActionOutcome.failure(CHILD_CARDS_FAILURE_MESSAGE, result.attempts)
