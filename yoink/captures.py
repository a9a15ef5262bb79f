"""
Capture lifecycle.

Status moves inbox -> trashed -> (deleted) and trashed -> inbox, or
inbox -> processed when a capture becomes a task. Pins and snoozes are flags
on top of the status. Every transition is idempotent and keeps the timestamp of
the first transition.
"""

import logging
from datetime import datetime

from yoink.config import CAPTURE_LIST_LIMIT
from yoink.db import DatabaseInterface
from yoink.db.structs import Capture, CaptureStatus
from yoink.errors import CaptureError, ErrorCode
from yoink.util.clock import Clock, SystemClock
from yoink.util.ids import IdGenerator, Uuid7Generator

logger = logging.getLogger(__name__)

_UNSET = object()


class CaptureService:
    def __init__(
        self,
        db: DatabaseInterface,
        clock: Clock | None = None,
        ids: IdGenerator | None = None,
    ):
        self.db = db
        self.clock = clock or SystemClock()
        self.ids = ids or Uuid7Generator(self.clock)

    async def create(
        self,
        organization_id: str,
        created_by_id: str,
        content: str,
        *,
        title: str | None = None,
        source_url: str | None = None,
        source_app: str | None = None,
    ) -> Capture:
        capture = Capture(
            id=self.ids.generate(),
            organization_id=organization_id,
            created_by_id=created_by_id,
            content=content,
            title=title,
            source_url=source_url,
            source_app=source_app,
            captured_at=self.clock.now(),
        )
        await self.db.create_capture(capture)
        return capture

    async def list_captures(
        self,
        organization_id: str,
        *,
        status: CaptureStatus | None = None,
        snoozed: bool | None = None,
        limit: int = CAPTURE_LIST_LIMIT,
    ) -> list[Capture]:
        return await self.db.list_captures(
            organization_id,
            status=status,
            snoozed=snoozed,
            now=self.clock.now(),
            limit=limit,
        )

    async def find(self, capture_id: str, organization_id: str) -> Capture:
        capture = await self.db.get_capture(capture_id)
        if not capture or capture.organization_id != organization_id:
            raise CaptureError(ErrorCode.CAPTURE_NOT_FOUND)
        return capture

    async def _save(self, capture: Capture) -> Capture:
        capture.updated_at = self.clock.now()
        await self.db.update_capture(capture)
        return capture

    async def update(
        self,
        capture_id: str,
        organization_id: str,
        *,
        title=_UNSET,
        content: str | None = None,
    ) -> Capture:
        """Edit the text of a capture. Pass title=None to clear the title."""
        capture = await self.find(capture_id, organization_id)
        if title is not _UNSET:
            capture.title = title
        if content is not None:
            capture.content = content
        return await self._save(capture)

    async def trash(self, capture_id: str, organization_id: str) -> Capture:
        capture = await self.find(capture_id, organization_id)
        if capture.status == "trashed":
            return capture
        if capture.status != "inbox":
            raise CaptureError(ErrorCode.CAPTURE_NOT_IN_INBOX)
        capture.status = "trashed"
        capture.trashed_at = self.clock.now()
        capture.pinned_at = None
        capture.snoozed_until = None
        return await self._save(capture)

    async def restore(self, capture_id: str, organization_id: str) -> Capture:
        capture = await self.find(capture_id, organization_id)
        if capture.status == "inbox":
            return capture
        if capture.status != "trashed":
            raise CaptureError(ErrorCode.CAPTURE_NOT_IN_TRASH)
        capture.status = "inbox"
        capture.trashed_at = None
        return await self._save(capture)

    async def pin(self, capture_id: str, organization_id: str) -> Capture:
        capture = await self.find(capture_id, organization_id)
        if capture.status == "trashed":
            raise CaptureError(ErrorCode.CAPTURE_ALREADY_TRASHED)
        if capture.pinned_at:
            return capture
        capture.pinned_at = self.clock.now()
        return await self._save(capture)

    async def unpin(self, capture_id: str, organization_id: str) -> Capture:
        capture = await self.find(capture_id, organization_id)
        if not capture.pinned_at:
            return capture
        capture.pinned_at = None
        return await self._save(capture)

    async def snooze(
        self, capture_id: str, organization_id: str, until: datetime
    ) -> Capture:
        """Hide a capture from the inbox until the given time. Pins are kept."""
        capture = await self.find(capture_id, organization_id)
        if capture.status == "trashed":
            raise CaptureError(ErrorCode.CAPTURE_ALREADY_TRASHED)
        if until <= self.clock.now():
            raise CaptureError(
                ErrorCode.INVALID_SNOOZE_TIME, "Snooze time must be in the future"
            )
        capture.snoozed_until = until
        return await self._save(capture)

    async def unsnooze(self, capture_id: str, organization_id: str) -> Capture:
        capture = await self.find(capture_id, organization_id)
        if not capture.snoozed_until:
            return capture
        capture.snoozed_until = None
        return await self._save(capture)

    async def delete(self, capture_id: str, organization_id: str) -> None:
        """Permanently remove a trashed capture."""
        capture = await self.find(capture_id, organization_id)
        if capture.status != "trashed":
            raise CaptureError(ErrorCode.CAPTURE_NOT_IN_TRASH)
        await self.db.soft_delete_capture(capture_id, self.clock.now())

    async def empty_trash(self, organization_id: str) -> int:
        count = await self.db.soft_delete_trashed_captures(
            organization_id, self.clock.now()
        )
        logger.info("Emptied %d captures from trash of %s", count, organization_id)
        return count
