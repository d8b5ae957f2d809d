"""
Background processing queue for completed memories

on_memory_ready() records one event-formation task and one context-inference
task per memory. process_pending_tasks() claims due tasks, runs each in its
own session and retries failures with exponential backoff. Delivery is
at-least-once; both handlers are idempotent.
"""

import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select, or_, and_, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.db.database import async_session_maker
from app.db.models import Memory, ProcessingTask, TaskKind, TaskStatus
from app.services.context_inference_service import ContextInferenceService
from app.services.event_formation_service import EventFormationService

logger = logging.getLogger(__name__)

TaskHandler = Callable[[AsyncSession, ProcessingTask], Awaitable[None]]


class MemoryNotFoundError(LookupError):
    pass


async def run_event_formation(db: AsyncSession, task: ProcessingTask) -> None:
    await EventFormationService(db).process_memory(task.memory_id)


async def run_context_inference(db: AsyncSession, task: ProcessingTask) -> None:
    await ContextInferenceService(db).infer_and_store_context(task.memory_id, task.user_id)


DEFAULT_HANDLERS: Dict[str, TaskHandler] = {
    TaskKind.EVENT_FORMATION.value: run_event_formation,
    TaskKind.CONTEXT_INFERENCE.value: run_context_inference,
}


async def on_memory_ready(db: AsyncSession, memory_id: str) -> List[ProcessingTask]:
    """
    Queue event formation and context inference for a completed memory.

    Called after the ingestion transaction commits. Re-triggering a memory
    resets its finished or failed tasks to pending;
    a task a worker is currently running is left alone.
    """
    result = await db.execute(select(Memory.id, Memory.user_id).where(Memory.id == memory_id))
    row = result.first()
    if row is None:
        raise MemoryNotFoundError(memory_id)
    user_id = row[1]

    now = datetime.utcnow()
    tasks = []
    for kind in (TaskKind.EVENT_FORMATION, TaskKind.CONTEXT_INFERENCE):
        existing = await db.execute(
            select(ProcessingTask).where(
                ProcessingTask.memory_id == memory_id,
                ProcessingTask.kind == kind.value,
            )
        )
        task = existing.scalar_one_or_none()
        if task is None:
            task = ProcessingTask(user_id=user_id, memory_id=memory_id, kind=kind.value)
            db.add(task)
        elif task.status == TaskStatus.RUNNING.value:
            # A worker holds it; an expired lease is reclaimed by claim()
            tasks.append(task)
            continue
        task.status = TaskStatus.PENDING.value
        task.attempts = 0
        task.last_error = None
        task.available_at = now
        task.claimed_at = None
        tasks.append(task)

    await db.commit()
    logger.info(f"Queued processing for memory {memory_id}")
    return tasks


class TaskWorker:
    """Claims and runs due processing tasks"""

    def __init__(
        self,
        session_maker: async_sessionmaker = async_session_maker,
        handlers: Optional[Dict[str, TaskHandler]] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        lease_seconds: Optional[int] = None,
    ):
        self.session_maker = session_maker
        self.handlers = handlers or DEFAULT_HANDLERS
        self.max_attempts = max_attempts or settings.task_max_attempts
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.retry_backoff_seconds
        self.lease = timedelta(seconds=lease_seconds or settings.task_lease_seconds)

    async def claim(self, limit: int, now: datetime) -> List[str]:
        """Mark up to `limit` due tasks as running and return their ids"""
        async with self.session_maker() as db:
            result = await db.execute(
                select(ProcessingTask.id)
                .where(
                    or_(
                        and_(
                            ProcessingTask.status == TaskStatus.PENDING.value,
                            ProcessingTask.available_at <= now,
                        ),
                        and_(
                            ProcessingTask.status == TaskStatus.RUNNING.value,
                            ProcessingTask.claimed_at < now - self.lease,
                        ),
                    )
                )
                .order_by(ProcessingTask.available_at)
                .limit(limit)
            )
            candidate_ids = [row[0] for row in result.all()]

            claimed = []
            for task_id in candidate_ids:
                # Conditional update so two workers never claim the same row
                updated = await db.execute(
                    update(ProcessingTask)
                    .where(
                        ProcessingTask.id == task_id,
                        or_(
                            ProcessingTask.status == TaskStatus.PENDING.value,
                            and_(
                                ProcessingTask.status == TaskStatus.RUNNING.value,
                                ProcessingTask.claimed_at < now - self.lease,
                            ),
                        ),
                    )
                    .values(status=TaskStatus.RUNNING.value, claimed_at=now, updated_at=now)
                )
                if updated.rowcount:
                    claimed.append(task_id)
            await db.commit()
            return claimed

    async def run_task(self, task_id: str) -> str:
        """Run one claimed task; returns its final status"""
        async with self.session_maker() as db:
            task = await db.get(ProcessingTask, task_id, populate_existing=True)
            if task is None:
                return TaskStatus.FAILED.value

            handler = self.handlers.get(task.kind)
            if handler is None:
                logger.error(f"No handler for task {task.id} of kind {task.kind}")
                task.status = TaskStatus.FAILED.value
                task.last_error = f"Unknown task kind: {task.kind}"
                await db.commit()
                return task.status

            # A handler rollback expires `task`
            kind, memory_id = task.kind, task.memory_id
            try:
                await handler(db, task)
            except Exception as e:
                logger.error(f"Task {task_id} ({kind}) for memory {memory_id} failed: {e}")
                await db.rollback()
                task = await db.get(ProcessingTask, task_id, populate_existing=True)
                task.attempts += 1
                task.last_error = str(e)[:2000]
                task.claimed_at = None
                if task.attempts >= self.max_attempts:
                    task.status = TaskStatus.FAILED.value
                    logger.error(f"Task {task_id} gave up after {task.attempts} attempts")
                else:
                    task.status = TaskStatus.PENDING.value
                    task.available_at = datetime.utcnow() + timedelta(
                        seconds=self.backoff_seconds * (2 ** (task.attempts - 1))
                    )
                await db.commit()
                return task.status

            task = await db.get(ProcessingTask, task_id, populate_existing=True)
            task.status = TaskStatus.DONE.value
            task.attempts += 1
            task.last_error = None
            await db.commit()
            return task.status

    async def process_pending_tasks(self, limit: Optional[int] = None, now: Optional[datetime] = None) -> Dict[str, int]:
        """Claim and run due tasks. Returns counts by final status."""
        now = now or datetime.utcnow()
        task_ids = await self.claim(limit or settings.task_batch_size, now)
        counts: Dict[str, int] = {}
        for task_id in task_ids:
            status = await self.run_task(task_id)
            counts[status] = counts.get(status, 0) + 1
        if task_ids:
            logger.info(f"Processed {len(task_ids)} tasks: {counts}")
        return counts


_worker: Optional[TaskWorker] = None


def get_task_worker() -> TaskWorker:
    global _worker
    if _worker is None:
        _worker = TaskWorker()
    return _worker
