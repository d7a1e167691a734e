"""Async facade over one configured mailbox."""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from datetime import datetime, timedelta

from .config import MailboxAccount
from .models import (
    CalendarEvent,
    CalendarItem,
    DeleteType,
    EventUpdatePatch,
    ItemIdentity,
    TimeSlot,
)
from .repository import CalendarRepository
from .session import ImpersonationSession, WorkMailIdentityService
from .timecodec import TimeCodec
from .transport import BasicCredentials, EWSTransport

logger = logging.getLogger("ews-calendar")


class MailboxCalendar:
    """Calendar of one mailbox, in direct or impersonated mode.

    The blocking repository calls run in the default executor so the MCP
    server's event loop is never held up by a network round trip.
    """

    def __init__(self, account: MailboxAccount):
        self._account = account
        self._repository: CalendarRepository | None = None  # Lazy init
        self._init_lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._account.name

    @property
    def target(self) -> str | None:
        return self._account.email or None

    def _get_repository(self) -> CalendarRepository:
        """Lazy-initialize transport, session and repository.

        Executor threads share one repository, and with it one token session.
        """
        if self._repository is not None:
            return self._repository
        with self._init_lock:
            if self._repository is None:
                self._repository = self._build_repository()
        return self._repository

    def _build_repository(self) -> CalendarRepository:
        account = self._account
        if account.impersonated:
            session = ImpersonationSession(
                WorkMailIdentityService(account.config["aws_region"]),
                organization_id=account.config["organization_id"],
                role_id=account.config["role_id"],
            )
            transport = EWSTransport(
                account.ews_url, session=session, server_version=account.server_version
            )
        else:
            username = os.environ.get(account.config["username_env"], "")
            password = os.environ.get(account.config["password_env"], "")
            if not username or not password:
                raise ValueError(
                    f"Mailbox '{account.name}': EWS credentials not set "
                    f"({account.config['username_env']}, {account.config['password_env']})"
                )
            transport = EWSTransport(
                account.ews_url,
                credentials=BasicCredentials(username, password),
                server_version=account.server_version,
            )

        repository = CalendarRepository(transport, TimeCodec(account.timezone))
        logger.info("EWS connected: %s → %s (%s)", account.name, account.ews_url, account.mode)
        return repository

    def parse_time(self, value: str) -> datetime:
        return self._get_repository().codec.parse(value)

    def _list_items_sync(self, start: datetime, end: datetime) -> list[CalendarItem]:
        return self._get_repository().find_items(start, end, self.target)

    def _create_event_sync(self, event: CalendarEvent) -> ItemIdentity:
        return self._get_repository().create_item(event, target_mailbox=self.target)

    def _update_event_sync(self, identity: ItemIdentity, patch: EventUpdatePatch) -> None:
        self._get_repository().update_item(identity, patch, target_mailbox=self.target)

    def _delete_event_sync(self, identity: ItemIdentity, delete_type: DeleteType) -> None:
        self._get_repository().delete_item(identity, delete_type, target_mailbox=self.target)

    def _check_slot_sync(self, slot: TimeSlot) -> tuple[bool, list[CalendarItem]]:
        return self._get_repository().check_slot_availability(slot, self.target)

    def _free_slots_sync(
        self, start: datetime, end: datetime, min_duration: timedelta
    ) -> list[TimeSlot]:
        return self._get_repository().find_available_slots(start, end, min_duration, self.target)

    async def list_items(self, start: datetime, end: datetime) -> list[CalendarItem]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._list_items_sync, start, end)

    async def create_event(self, event: CalendarEvent) -> ItemIdentity:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._create_event_sync, event)

    async def update_event(self, identity: ItemIdentity, patch: EventUpdatePatch) -> None:
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self._update_event_sync, identity, patch)

    async def delete_event(
        self, identity: ItemIdentity, delete_type: DeleteType = DeleteType.MOVE_TO_DELETED_ITEMS
    ) -> None:
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self._delete_event_sync, identity, delete_type)

    async def check_slot(self, slot: TimeSlot) -> tuple[bool, list[CalendarItem]]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._check_slot_sync, slot)

    async def find_free_slots(
        self, start: datetime, end: datetime, min_duration: timedelta
    ) -> list[TimeSlot]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._free_slots_sync, start, end, min_duration)
