"""
Board and time-tracking records used by the timer logic.

Board payloads arrive as the host platform's camelCase dicts; tracking records
arrive as the tracking API's snake_case dicts. Both are parsed leniently:
missing keys become empty values rather than errors.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

RUNNING_BADGE_TEXT = "⏱️ Timer Running"
RUNNING_BADGE_COLOR = "green"


def _str(val: Any) -> str:
    if val is None:
        return ""
    return str(val)


def _named(val: Any) -> str | None:
    """Return ``val["name"]`` for ``{"name": ...}`` sub-records, else None."""
    if isinstance(val, dict) and val.get("name") is not None:
        return _str(val.get("name"))
    return None


@dataclass(frozen=True)
class BoardUser:
    """The acting board member. Email depends on the host's permission scope."""

    id: str
    username: str
    full_name: str = ""
    email: str | None = None
    avatar_url: str | None = None
    initials: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> BoardUser:
        email = payload.get("email")
        return cls(
            id=_str(payload.get("id")),
            username=_str(payload.get("username")),
            full_name=_str(payload.get("fullName")),
            email=_str(email) if email else None,
            avatar_url=payload.get("avatarUrl"),
            initials=payload.get("initials"),
        )


@dataclass(frozen=True)
class TrackingAccount:
    id: str
    first_name: str
    last_name: str
    email: str

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_api(cls, record: dict[str, Any]) -> TrackingAccount:
        return cls(
            id=_str(record.get("id")),
            first_name=_str(record.get("first_name")),
            last_name=_str(record.get("last_name")),
            email=_str(record.get("email")),
        )


@dataclass(frozen=True)
class TrackingClient:
    id: str
    name: str


@dataclass(frozen=True)
class TrackingProject:
    id: str
    name: str
    client: TrackingClient
    code: str | None = None

    @classmethod
    def from_api(cls, record: dict[str, Any]) -> TrackingProject:
        client = record.get("client") or {}
        return cls(
            id=_str(record.get("id")),
            name=_str(record.get("name")),
            code=record.get("code") or None,
            client=TrackingClient(id=_str(client.get("id")), name=_str(client.get("name"))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "client": {"id": self.client.id, "name": self.client.name},
        }


@dataclass(frozen=True)
class TrackingTask:
    id: str
    name: str

    @classmethod
    def from_api(cls, record: dict[str, Any]) -> TrackingTask:
        return cls(id=_str(record.get("id")), name=_str(record.get("name")))


@dataclass(frozen=True)
class TimerUser:
    id: str
    name: str


@dataclass(frozen=True)
class ActiveTimerRecord:
    """One running time entry. Fetched per check, never cached."""

    project_name: str | None = None
    client_name: str | None = None
    task_name: str | None = None
    user: TimerUser | None = None
    notes: str = ""

    @classmethod
    def from_api(cls, record: dict[str, Any]) -> ActiveTimerRecord:
        user = record.get("user")
        timer_user = None
        if isinstance(user, dict):
            timer_user = TimerUser(id=_str(user.get("id")), name=_str(user.get("name")))
        return cls(
            project_name=_named(record.get("project")),
            client_name=_named(record.get("client")),
            task_name=_named(record.get("task")),
            user=timer_user,
            notes=_str(record.get("notes")),
        )

    def summary(self) -> dict[str, str]:
        return {
            "project": self.project_name or "Unknown Project",
            "client": self.client_name or "Unknown Client",
            "task": self.task_name or "Unknown Task",
            "notes": self.notes,
        }


@dataclass(frozen=True)
class CardSnapshot:
    """Read-only projection of the acting card: name, labels, attachments."""

    name: str
    labels: list[dict[str, Any]] = field(default_factory=list)
    attachments: list[dict[str, Any]] = field(default_factory=list)

    @property
    def client_label(self) -> str | None:
        """Name of the first label; the card's client by board convention."""
        if not self.labels:
            return None
        name = self.labels[0].get("name")
        return _str(name) if name else None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> CardSnapshot:
        return cls(
            name=_str(payload.get("name")),
            labels=list(payload.get("labels") or []),
            attachments=list(payload.get("attachments") or []),
        )


@dataclass(frozen=True)
class ParentLinkage:
    parent_attachment_url: str
    derived_parent_name: str


@dataclass(frozen=True)
class CardIdentity:
    effective_name: str
    is_child: bool
    linkage: ParentLinkage | None = None


class TimerStatus(str, enum.Enum):
    NONE = "none"
    RUNNING_FOR_USER = "running_for_user"
    RUNNING_TEAMWIDE = "running_teamwide"

    @property
    def is_running(self) -> bool:
        return self is not TimerStatus.NONE

    def badge(self) -> dict[str, str] | None:
        if not self.is_running:
            return None
        return {"text": RUNNING_BADGE_TEXT, "color": RUNNING_BADGE_COLOR}
