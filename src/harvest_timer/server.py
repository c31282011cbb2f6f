"""
MCP server exposing the Harvest card-timer power-up to a board host.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP

from .config import Settings
from .directory import Directories
from .harvest_client import HarvestClient
from .powerup import PowerUp
from .resolver import UserResolver
from .timer_check import RunningTimerMatcher
from .webhook import WebhookClient

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Prefetch the Harvest directories so the first popup opens warm."""
    try:
        await get_directories().warm()
    except Exception as exc:
        logger.warning("Directory warm-up failed, continuing: %s", exc)
    yield


mcp = FastMCP(
    "Harvest Card Timer",
    instructions=(
        "Harvest timer power-up for board cards. "
        "Pass the host's card/member/board/list snapshots to each tool. "
        "Timer status tools are best-effort and return no badge on failure; "
        "start/stop/convert actions return an outcome with a toast message."
    ),
    lifespan=_lifespan,
)

_settings: Settings | None = None
_directories: Directories | None = None
_powerup: PowerUp | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def get_directories() -> Directories:
    global _directories
    if _directories is None:
        _directories = Directories(HarvestClient(get_settings().harvest))
    return _directories


def get_powerup() -> PowerUp:
    global _powerup
    if _powerup is None:
        settings = get_settings()
        directories = get_directories()
        resolver = UserResolver.default(directories.accounts, settings.user_mapping)
        _powerup = PowerUp(
            settings=settings,
            directories=directories,
            resolver=resolver,
            matcher=RunningTimerMatcher(directories.client, resolver),
            webhook=WebhookClient(settings.webhook),
        )
    return _powerup


@mcp.tool()
async def card_badge(card: dict[str, Any]) -> dict[str, str] | None:
    """Badge for a card: shown while anyone on the team has a matching timer running.

    Args:
        card: Host card snapshot with at least {name, labels, attachments}.

    Returns:
        {text, color} while a matching timer runs, otherwise None.
    """
    return await get_powerup().card_badge(card)


@mcp.tool()
async def card_buttons(
    card: dict[str, Any], member: dict[str, Any] | None = None
) -> list[dict[str, Any]]:
    """Card buttons for the acting member.

    The start button is disabled while the member's own timer runs on this card.

    Args:
        card: Host card snapshot.
        member: Acting member {id, username, fullName, email?}.

    Returns:
        List of {icon, text, action, enabled, message?} dicts.
    """
    return await get_powerup().card_buttons(card, member)


@mcp.tool()
async def check_running_timer(
    card: dict[str, Any], member: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Timer status of a card, scoped to the member when one is given.

    Returns:
        dict with status ("none", "running_for_user", "running_teamwide") and badge.
    """
    status = await get_powerup().timer_status(card, member)
    return {"status": status.value, "badge": status.badge()}


@mcp.tool()
async def find_user_running_timer(member: dict[str, Any]) -> dict[str, str] | None:
    """The member's first running Harvest timer on any project.

    Returns:
        {project, client, task, notes} or None.
    """
    return await get_powerup().running_timer_for(member)


@mcp.tool()
async def resolve_tracking_user(member: dict[str, Any]) -> dict[str, Any]:
    """Resolve a board member to a Harvest user id (email first, then config mapping).

    Returns:
        {found: True, accountId, strategy} or {found: False, message}.
    """
    return await get_powerup().resolve_account(member)


@mcp.tool()
async def start_timer_form(
    card: dict[str, Any], member: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Data for the start-timer popup.

    Returns:
        dict with categories, defaultCategory, clientLabel, effectiveName, isChild,
        projects (filtered by the card's client label), and selectedProjectId.
    """
    return await get_powerup().start_timer_form(card, member)


@mcp.tool()
async def list_tracking_projects(client: str | None = None) -> list[dict[str, Any]]:
    """Active Harvest projects, optionally filtered by client name (case-insensitive)."""
    projects = await get_powerup().projects_for_client(client)
    return [p.to_dict() for p in projects]


@mcp.tool()
async def start_timer(
    card: dict[str, Any],
    member: dict[str, Any],
    board: dict[str, Any],
    boardList: dict[str, Any],
    category: str,
    projectId: str | None = None,
) -> dict[str, Any]:
    """Start a Harvest timer for the card through the workflow webhook.

    Args:
        card: Full host card snapshot.
        member: Acting member.
        board: {id, name}.
        boardList: {id, name} of the card's list.
        category: Work category; required.
        projectId: Harvest project chosen in the form, if any.

    Returns:
        {ok, message, display, attempts}.
    """
    outcome = await get_powerup().start_timer(card, member, board, boardList, category, projectId)
    return outcome.to_dict()


@mcp.tool()
async def stop_timer(
    card: dict[str, Any],
    member: dict[str, Any],
    board: dict[str, Any],
    boardList: dict[str, Any],
) -> dict[str, Any]:
    """Stop the member's Harvest timer for the card through the workflow webhook."""
    outcome = await get_powerup().stop_timer(card, member, board, boardList)
    return outcome.to_dict()


@mcp.tool()
async def create_child_cards(
    card: dict[str, Any],
    member: dict[str, Any],
    board: dict[str, Any],
    boardList: dict[str, Any],
    checklistIds: list[str],
) -> dict[str, Any]:
    """Convert the selected checklists of a card into child cards.

    Args:
        checklistIds: Ids of checklists on the card (card.checklists) to convert.
    """
    outcome = await get_powerup().create_child_cards(card, member, board, boardList, checklistIds)
    return outcome.to_dict()


@mcp.tool()
async def refresh_directories() -> dict[str, Any]:
    """Drop and refetch the cached Harvest users, projects, and tasks."""
    directories = get_directories()
    directories.invalidate_all()
    await directories.warm()
    return directories.get_health()


@mcp.tool()
def get_health() -> dict[str, Any]:
    """Return configuration summary and directory cache health."""
    return {
        "config": get_settings().describe(),
        "directories": get_directories().get_health(),
    }


def main() -> None:
    # stdout carries the stdio transport; logs go to stderr.
    logging.basicConfig(
        level=os.getenv("HARVEST_TIMER_LOG_LEVEL", "INFO").upper(),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    mcp.run()
