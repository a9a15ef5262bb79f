"""
Turning captures into tasks, and deleting tasks along with their captures.

Both operations write two rows that must change together, so each runs in a
single database transaction.
"""

import logging
from datetime import date

import msgspec

from yoink.config import TASK_TITLE_MAX
from yoink.db import DatabaseInterface
from yoink.db.structs import Capture, Task
from yoink.errors import CaptureError, ErrorCode, TaskError
from yoink.util.clock import Clock, SystemClock
from yoink.util.ids import IdGenerator, Uuid7Generator

logger = logging.getLogger(__name__)


class ProcessedCapture(msgspec.Struct):
    task: Task
    capture: Capture


class ProcessingService:
    def __init__(
        self,
        db: DatabaseInterface,
        clock: Clock | None = None,
        ids: IdGenerator | None = None,
    ):
        self.db = db
        self.clock = clock or SystemClock()
        self.ids = ids or Uuid7Generator(self.clock)

    async def process_capture_to_task(
        self,
        capture_id: str,
        organization_id: str,
        created_by_id: str,
        *,
        title: str | None = None,
        due_date: date | None = None,
    ) -> ProcessedCapture:
        """Create a task from an inbox capture and mark the capture processed.

        The capture is checked up front and again by the write that marks it
        processed, so of several concurrent calls exactly one succeeds; the rest
        raise CaptureError(CAPTURE_NOT_IN_INBOX) and leave no task behind.
        """
        capture = await self.db.get_capture(capture_id)
        if not capture or capture.organization_id != organization_id:
            raise CaptureError(ErrorCode.CAPTURE_NOT_FOUND)
        if capture.status != "inbox":
            raise CaptureError(
                ErrorCode.CAPTURE_NOT_IN_INBOX,
                f"Capture is {capture.status}, not inbox",
                status=capture.status,
            )
        now = self.clock.now()
        task = Task(
            id=self.ids.generate(),
            organization_id=organization_id,
            created_by_id=created_by_id,
            title=title if title is not None else capture.content[:TASK_TITLE_MAX],
            capture_id=capture.id,
            due_date=due_date,
            created_at=now,
        )
        async with self.db.transaction("process capture"):
            await self.db.create_task(task)
            capture = await self.db.mark_capture_processed(capture.id, task.id, now)
        logger.info("Processed capture %s into task %s", capture.id, task.id)
        return ProcessedCapture(task, capture)

    async def delete_task_with_cascade(self, task_id: str, organization_id: str) -> None:
        """Delete a task and the capture it was made from, if any."""
        task = await self.db.get_task(task_id)
        if not task or task.organization_id != organization_id:
            raise TaskError(ErrorCode.TASK_NOT_FOUND)
        now = self.clock.now()
        async with self.db.transaction("delete task"):
            await self.db.soft_delete_task(task.id, now)
            if task.capture_id:
                await self.db.soft_delete_capture(task.capture_id, now)
