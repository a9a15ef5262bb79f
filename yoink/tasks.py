from datetime import date

from yoink.db import DatabaseInterface, TaskFilter
from yoink.db.structs import Task
from yoink.errors import ErrorCode, TaskError
from yoink.util.clock import Clock, SystemClock
from yoink.util.ids import IdGenerator, Uuid7Generator

_UNSET = object()


class TaskService:
    """Task CRUD and flags. Deletion lives in ProcessingService (it cascades)."""

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
        title: str,
        *,
        due_date: date | None = None,
    ) -> Task:
        task = Task(
            id=self.ids.generate(),
            organization_id=organization_id,
            created_by_id=created_by_id,
            title=title,
            due_date=due_date,
            created_at=self.clock.now(),
        )
        await self.db.create_task(task)
        return task

    async def list_tasks(
        self, organization_id: str, filter: TaskFilter = "all", limit: int = 50
    ) -> list[Task]:
        return await self.db.list_tasks(
            organization_id,
            filter=filter,
            today=self.clock.now().date(),
            limit=limit,
        )

    async def find(self, task_id: str, organization_id: str) -> Task:
        task = await self.db.get_task(task_id)
        if not task or task.organization_id != organization_id:
            raise TaskError(ErrorCode.TASK_NOT_FOUND)
        return task

    async def _save(self, task: Task) -> Task:
        task.updated_at = self.clock.now()
        await self.db.update_task(task)
        return task

    async def update(
        self,
        task_id: str,
        organization_id: str,
        *,
        title: str | None = None,
        due_date=_UNSET,
    ) -> Task:
        """Change the title and/or due date. due_date=None clears it."""
        task = await self.find(task_id, organization_id)
        if title is not None:
            task.title = title
        if due_date is not _UNSET:
            task.due_date = due_date
        return await self._save(task)

    async def complete(self, task_id: str, organization_id: str) -> Task:
        task = await self.find(task_id, organization_id)
        if task.completed_at:
            return task
        task.completed_at = self.clock.now()
        return await self._save(task)

    async def uncomplete(self, task_id: str, organization_id: str) -> Task:
        task = await self.find(task_id, organization_id)
        if not task.completed_at:
            return task
        task.completed_at = None
        return await self._save(task)

    async def pin(self, task_id: str, organization_id: str) -> Task:
        task = await self.find(task_id, organization_id)
        if task.pinned_at:
            return task
        task.pinned_at = self.clock.now()
        return await self._save(task)

    async def unpin(self, task_id: str, organization_id: str) -> Task:
        task = await self.find(task_id, organization_id)
        if not task.pinned_at:
            return task
        task.pinned_at = None
        return await self._save(task)
