# backend/leadagent/services/task_engine.py
"""
Task Engine - processes a bounded batch of pending tasks

Per invocation:
1. Fetch up to TASK_BATCH_SIZE pending tasks (no ordering guarantee)
2. For each task, sequentially:
   - mark processing (committed before any work)
   - dispatch to the typed handler
   - success → completed + result + mission log (one commit with handler writes)
   - failure → rollback handler writes, mark failed + error log
3. Return the ids that were attempted

A failure inside one task never aborts the batch. Only a failure to fetch
the batch does. Invocations are serialized inside the process so two
overlapping runs cannot both read the same quota counter.
"""

from typing import Optional, Dict, Any, List, Callable, Awaitable
import asyncio
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leadagent.config import settings
from leadagent.models import Task, Mission, TaskStatus, utcnow
from leadagent.schemas.task import TaskType, resolve_task_type, parse_payload
from leadagent.exceptions import TaskFetchError
from leadagent.services.quota_ledger import QuotaLedger
from leadagent.services.mission_logger import MissionLogger
from leadagent.services.task_handlers import TaskHandlers
from leadagent.services.lead_search_service import LeadSearchService, create_lead_search_service
from leadagent.services.enrichment_service import EnrichmentService, create_enrichment_service

logger = logging.getLogger(__name__)


_batch_lock = asyncio.Lock()


class TaskEngine:
    """
    Runs pending tasks through their handlers.

    Usage:
        engine = TaskEngine(db)
        summary = await engine.run_batch()
    """

    def __init__(
        self,
        db: AsyncSession,
        search_service: Optional[LeadSearchService] = None,
        enrichment_service: Optional[EnrichmentService] = None,
        batch_size: Optional[int] = None
    ):
        self.db = db
        self.batch_size = batch_size or settings.TASK_BATCH_SIZE
        self.ledger = QuotaLedger(db)
        self.mission_logger = MissionLogger(db)
        self.handlers = TaskHandlers(
            db,
            search_service or create_lead_search_service(),
            enrichment_service or create_enrichment_service(),
            self.ledger,
            self.mission_logger
        )

        self._dispatch: Dict[TaskType, Callable[..., Awaitable[Dict[str, Any]]]] = {
            TaskType.GENERATE_CAMPAIGN: self.handlers.generate_campaign,
            TaskType.SEARCH: self.handlers.search,
            TaskType.ENRICH: self.handlers.enrich,
            TaskType.CONTACT: self.handlers.contact,
            TaskType.CONTACT_INITIAL: self.handlers.contact,
        }

    async def fetch_pending_ids(self) -> List[uuid.UUID]:
        try:
            result = await self.db.execute(
                select(Task.id)
                .where(Task.status == TaskStatus.PENDING)
                .limit(self.batch_size)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"❌ Failed to fetch pending tasks: {e}")
            raise TaskFetchError(f"Failed to fetch pending tasks: {e}") from e

    async def run_batch(self) -> Dict[str, Any]:
        """
        Process one batch of pending tasks.

        Returns:
            {"processed": int, "tasks": [task_id, ...]}

        Raises:
            TaskFetchError if the batch could not be read
        """
        async with _batch_lock:
            task_ids = await self.fetch_pending_ids()

            if not task_ids:
                logger.info("No pending tasks")
                return {"processed": 0, "tasks": []}

            logger.info(f"⚙️ Processing {len(task_ids)} pending tasks")

            processed = []
            for task_id in task_ids:
                status = await self.process_task(task_id)
                if status is not None:
                    processed.append(str(task_id))

            logger.info(f"✅ Batch done: {len(processed)} tasks processed")
            return {"processed": len(processed), "tasks": processed}

    async def _load_task(self, task_id: uuid.UUID) -> Optional[Task]:
        return await self.db.get(Task, task_id, populate_existing=True)

    async def _load_mission(self, mission_id) -> Optional[Mission]:
        """Best-effort: handlers fall back to default limits without a mission"""
        try:
            return await self.db.get(Mission, mission_id)
        except SQLAlchemyError as e:
            logger.warning(f"Could not load mission {mission_id}: {e}")
            return None

    async def process_task(self, task_id: uuid.UUID) -> Optional[str]:
        """
        Run a single task to a terminal status.

        Returns:
            Final status, or None if the task was no longer pending
        """
        task = await self._load_task(task_id)
        if task is None or task.status != TaskStatus.PENDING:
            return None

        task_type_name = task.type
        task.status = TaskStatus.PROCESSING
        task.processing_started_at = utcnow()
        await self.db.commit()

        try:
            mission = await self._load_mission(task.mission_id)
            task_type = resolve_task_type(task.type)
            payload = parse_payload(task_type, task.payload)

            logger.info(f"▶️ Task {task_id} ({task_type.value})")
            result = await self._dispatch[task_type](task, mission, payload)

            task.status = TaskStatus.COMPLETED
            task.result = result
            self.mission_logger.log_task_completed(task, result)
            await self.db.commit()

            if result.get("skipped"):
                logger.info(f"⏭️ Task {task_id} skipped: {result.get('reason')}")
            return TaskStatus.COMPLETED

        except Exception as e:
            error_message = str(e)
            logger.error(f"❌ Task {task_id} ({task_type_name}) failed: {error_message}")
            await self.db.rollback()
            await self._mark_failed(task_id, error_message)
            return TaskStatus.FAILED

    async def _mark_failed(self, task_id: uuid.UUID, error_message: str):
        try:
            task = await self._load_task(task_id)
            if task is None:
                return
            task.status = TaskStatus.FAILED
            task.error_message = error_message
            self.mission_logger.log_task_failed(task, error_message)
            await self.db.commit()
        except SQLAlchemyError as e:
            # Task stays in processing; it is visible to operators and never re-picked
            logger.error(f"❌ Could not record failure for task {task_id}: {e}")
            await self.db.rollback()


async def run_agent_batch(db: AsyncSession) -> Dict[str, Any]:
    """Entry point used by the API route and the scheduler"""
    engine = TaskEngine(db)
    return await engine.run_batch()
