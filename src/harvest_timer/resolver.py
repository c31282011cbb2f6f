"""
Board user -> tracking account resolution.

Strategies run in order and the first one that finds an account wins. Email
comes first because both systems usually share a corporate address; the
static table covers members whose email the host withholds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Union

from .config import StaticUserMapping
from .directory import DirectoryCache
from .models import BoardUser, TrackingAccount

logger = logging.getLogger(__name__)

UNMAPPED_USER_MESSAGE = (
    "Timer tracking is not configured for your account. Please contact your admin."
)


@dataclass(frozen=True)
class Found:
    account_id: str
    strategy: str


@dataclass(frozen=True)
class NotFound:
    message: str = UNMAPPED_USER_MESSAGE


Resolution = Union[Found, NotFound]


class ResolutionStrategy(Protocol):
    name: str

    async def find(self, user: BoardUser) -> Resolution: ...


class EmailStrategy:
    name = "email"

    def __init__(self, accounts: DirectoryCache[TrackingAccount]):
        self._accounts = accounts

    async def find(self, user: BoardUser) -> Resolution:
        if not user.email:
            logger.debug("User %s has no email, skipping email matching", user.username)
            return NotFound()

        try:
            accounts = await self._accounts.get()
        except Exception as exc:
            logger.warning("Harvest users unavailable for email matching: %s", exc)
            return NotFound()

        wanted = user.email.lower()
        for account in accounts:
            if account.email and account.email.lower() == wanted:
                logger.info(
                    "Email match: board user %r -> Harvest user %r (ID: %s)",
                    user.username,
                    account.display_name,
                    account.id,
                )
                return Found(account_id=account.id, strategy=self.name)

        logger.info("No Harvest email match for board user %r", user.username)
        return NotFound()


class StaticMappingStrategy:
    name = "static_mapping"

    def __init__(self, mapping: StaticUserMapping):
        self._mapping = mapping

    async def find(self, user: BoardUser) -> Resolution:
        if user.username and user.username in self._mapping.by_username:
            account_id = self._mapping.by_username[user.username]
            logger.info("Config match (username): %r -> Harvest ID %s", user.username, account_id)
            return Found(account_id=account_id, strategy=self.name)

        if user.id and user.id in self._mapping.by_user_id:
            account_id = self._mapping.by_user_id[user.id]
            logger.info("Config match (user ID): %r -> Harvest ID %s", user.id, account_id)
            return Found(account_id=account_id, strategy=self.name)

        return NotFound()


class UserResolver:
    def __init__(self, strategies: list[ResolutionStrategy]):
        self._strategies = strategies

    @classmethod
    def default(
        cls,
        accounts: DirectoryCache[TrackingAccount],
        mapping: StaticUserMapping,
    ) -> UserResolver:
        return cls([EmailStrategy(accounts), StaticMappingStrategy(mapping)])

    async def resolve(self, user: BoardUser) -> Resolution:
        for strategy in self._strategies:
            try:
                result = await strategy.find(user)
            except Exception:
                logger.exception("User resolution strategy %s failed", strategy.name)
                continue
            if isinstance(result, Found):
                return result

        logger.warning(
            "Could not resolve Harvest user for board user %r (%s); "
            "add a TRELLO_HARVEST_USER_MAPPINGS entry or align email addresses",
            user.username,
            user.full_name,
        )
        return NotFound()
