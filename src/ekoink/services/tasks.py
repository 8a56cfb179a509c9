"""
Outbox-backed background work.

Handlers enqueue a ``background_tasks`` row inside their own transaction and
ask FastAPI to run it once the response has been sent. The runner records
every outcome on the row, so a failed note generation, style analysis or
auto-send stays visible and can be retried.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from ..database import Database
from ..models import BackgroundTask
from ..utils.logging import get_logger

logger = get_logger(__name__)

TaskHandler = Callable[[Session, Dict[str, Any]], Awaitable[Any]]

GENERATE_NOTE = "generate_note"
ANALYZE_STYLE = "analyze_style"
SEND_NOTE = "send_note"


class TaskRunner:
    def __init__(self, database: Database, handlers: Optional[Dict[str, TaskHandler]] = None):
        self.database = database
        self.handlers: Dict[str, TaskHandler] = dict(handlers or {})

    def register(self, kind: str, handler: TaskHandler):
        self.handlers[kind] = handler

    def enqueue(self, db: Session, kind: str, payload: Dict[str, Any]) -> BackgroundTask:
        """Persist a queued task. Commits the caller's session."""
        task = BackgroundTask(kind=kind, payload=payload, status="queued", attempts=0)
        db.add(task)
        db.commit()
        db.refresh(task)
        logger.info("task_enqueued", task_id=task.id, kind=kind)
        return task

    def has_open(self, db: Session, kind: str, user_id: str) -> bool:
        """Whether a queued or running ``kind`` task exists for ``user_id``."""
        open_tasks = db.query(BackgroundTask.payload).filter(
            BackgroundTask.kind == kind,
            BackgroundTask.status.in_(["queued", "running"]),
        )
        return any((row.payload or {}).get("user_id") == user_id for row in open_tasks)

    def schedule(self, background_tasks: BackgroundTasks, task_id: str):
        """Run the task after the response is sent; the request never awaits it."""
        background_tasks.add_task(self.run, task_id)

    async def run(self, task_id: str) -> Optional[str]:
        """Execute one task in its own session. Returns the final status."""
        db = self.database.session()
        try:
            task = db.get(BackgroundTask, task_id)
            if task is None:
                logger.warning("task_missing", task_id=task_id)
                return None
            if task.status in ("running", "succeeded"):
                return task.status

            kind = task.kind
            payload = dict(task.payload or {})
            task.status = "running"
            task.attempts += 1
            db.commit()

            handler = self.handlers.get(kind)
            try:
                if handler is None:
                    raise LookupError(f"No handler registered for task kind '{kind}'")
                await handler(db, payload)
            except Exception as e:
                db.rollback()
                task = db.get(BackgroundTask, task_id)
                task.status = "failed"
                task.last_error = f"{type(e).__name__}: {e}"
                db.commit()
                logger.error(
                    "task_failed",
                    task_id=task_id,
                    kind=kind,
                    attempts=task.attempts,
                    error=task.last_error,
                    exc_info=True,
                )
                return task.status

            task = db.get(BackgroundTask, task_id)
            task.status = "succeeded"
            task.last_error = None
            db.commit()
            logger.info("task_succeeded", task_id=task_id, kind=kind)
            return task.status
        finally:
            db.close()

    async def retry_failed(self, max_attempts: int = 3) -> List[str]:
        """Re-run failed tasks that still have attempts left. Returns their ids."""
        db = self.database.session()
        try:
            task_ids = [
                row.id
                for row in db.query(BackgroundTask.id)
                .filter(
                    BackgroundTask.status == "failed",
                    BackgroundTask.attempts < max_attempts,
                )
                .order_by(BackgroundTask.created_at)
                .all()
            ]
        finally:
            db.close()

        for task_id in task_ids:
            await self.run(task_id)
        return task_ids
