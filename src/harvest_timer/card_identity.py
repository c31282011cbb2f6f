"""
Child/parent card detection.

A child card carries an attachment linking to its parent card. The parent's
display name is recovered from the link slug, e.g.
``https://trello.com/c/abc123/659-esa-campaign`` -> ``Esa Campaign``.
"""

from __future__ import annotations

import re
from typing import Any

from .models import CardIdentity, CardSnapshot, ParentLinkage

CARD_LINK_PATTERN = "trello.com/c/"

_POSITION_PREFIX = re.compile(r"^\d+-")


def find_parent_attachment(card: CardSnapshot) -> dict[str, Any] | None:
    """First attachment that links to another board card, if any."""
    for attachment in card.attachments:
        url = attachment.get("url") if isinstance(attachment, dict) else None
        if url and CARD_LINK_PATTERN in url:
            return attachment
    return None


def parent_name_from_url(url: str | None) -> str | None:
    if not url:
        return None

    slug = url.split("/")[-1]
    if not slug:
        return None

    words = _POSITION_PREFIX.sub("", slug).split("-")
    return " ".join(word[:1].upper() + word[1:].lower() for word in words)


def normalize(card: CardSnapshot) -> CardIdentity:
    attachment = find_parent_attachment(card)
    if attachment is None:
        return CardIdentity(effective_name=card.name, is_child=False)

    url = attachment["url"]
    parent_name = parent_name_from_url(url)
    if not parent_name:
        # Unparsable parent link: treat the card as standalone.
        return CardIdentity(effective_name=card.name, is_child=False)

    return CardIdentity(
        effective_name=parent_name,
        is_child=True,
        linkage=ParentLinkage(parent_attachment_url=url, derived_parent_name=parent_name),
    )
