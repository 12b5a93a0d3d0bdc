"""
Bulk-import state machine: pending → importing → completed | failed.

Many write-row jobs finish concurrently, so progress is only ever changed
with single conditional UPDATE statements; completion is decided by
re-reading the counters afterwards.
"""

from typing import Optional, Tuple
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, or_
from core.exceptions import AutomationNotFoundError, ImportInProgressError
from models.automation import Automation
from models.base import ImportStatus
import logging

logger = logging.getLogger(__name__)


class ImportStateTracker:
    """
    Import progress of automations.

    Counters:
        import_fetched_rows: running total while the import paginates
        import_total_rows: set once pagination stops (None until then)
        import_processed_rows: created rows written so far
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    def _update(self, automation_id: int):
        return (
            update(Automation)
            .where(Automation.id == automation_id)
            .execution_options(synchronize_session=False)
        )

    async def get_counters(self, automation_id: int) -> Optional[Tuple[ImportStatus, int, Optional[int]]]:
        """(status, processed, total) straight from the database"""
        result = await self.db.execute(
            select(
                Automation.import_status,
                Automation.import_processed_rows,
                Automation.import_total_rows,
            ).where(Automation.id == automation_id)
        )
        row = result.one_or_none()
        if row is None:
            return None
        return row[0], row[1] or 0, row[2]

    async def begin(self, automation_id: int) -> datetime:
        """
        Enter ``importing`` and reset the counters.

        Raises:
            ImportInProgressError: the automation is already importing
            AutomationNotFoundError: no such automation

        Returns:
            import_started_at
        """
        started_at = datetime.utcnow()

        result = await self.db.execute(
            self._update(automation_id)
            .where(Automation.import_status != ImportStatus.IMPORTING)
            .values(
                import_status=ImportStatus.IMPORTING,
                import_started_at=started_at,
                import_completed_at=None,
                import_total_rows=None,
                import_processed_rows=0,
                import_fetched_rows=0,
            )
        )
        await self.db.commit()

        if result.rowcount == 0:
            counters = await self.get_counters(automation_id)
            if counters is None:
                raise AutomationNotFoundError(
                    f"Automation {automation_id} not found",
                    context={"automation_id": automation_id},
                )
            raise ImportInProgressError(
                f"Automation {automation_id} is already importing",
                context={"automation_id": automation_id},
            )

        logger.info(f"[automation {automation_id}] Import started")
        return started_at

    async def record_fetched(self, automation_id: int, running_total: int):
        await self.db.execute(
            self._update(automation_id)
            .where(Automation.import_status == ImportStatus.IMPORTING)
            .values(import_fetched_rows=running_total)
        )
        await self.db.commit()

    async def finalize_total(self, automation_id: int, total: int) -> bool:
        """
        Pagination stopped: fix import_total_rows.

        Write jobs may already have finished, so completion is re-checked
        here as well. Returns True when the import is now completed.
        """
        if total <= 0:
            return await self.complete_empty(automation_id)

        await self.db.execute(
            self._update(automation_id)
            .where(Automation.import_status == ImportStatus.IMPORTING)
            .values(import_total_rows=total, import_fetched_rows=total)
        )
        await self.db.commit()

        logger.info(f"[automation {automation_id}] Import total finalized at {total}")
        return await self._check_completion(automation_id)

    async def complete_empty(self, automation_id: int) -> bool:
        """Zero records: straight to completed with 0/0."""
        result = await self.db.execute(
            self._update(automation_id)
            .where(Automation.import_status == ImportStatus.IMPORTING)
            .values(
                import_status=ImportStatus.COMPLETED,
                import_total_rows=0,
                import_processed_rows=0,
                import_fetched_rows=0,
                import_completed_at=datetime.utcnow(),
            )
        )
        await self.db.commit()

        completed = result.rowcount > 0
        if completed:
            logger.info(f"[automation {automation_id}] Import completed with no records")
        return completed

    async def record_created_rows(self, automation_id: int, count: int = 1) -> bool:
        """
        Atomically add ``count`` created rows to the progress counter.

        Only applies while importing and while processed < total (once the
        total is known). Returns True when the increment was applied.
        """
        result = await self.db.execute(
            self._update(automation_id)
            .where(
                Automation.import_status == ImportStatus.IMPORTING,
                or_(
                    Automation.import_total_rows.is_(None),
                    Automation.import_total_rows == 0,
                    Automation.import_processed_rows < Automation.import_total_rows,
                ),
            )
            .values(
                import_processed_rows=func.coalesce(Automation.import_processed_rows, 0) + count
            )
        )
        await self.db.commit()

        if result.rowcount == 0:
            return False

        await self._check_completion(automation_id)
        return True

    async def _check_completion(self, automation_id: int) -> bool:
        counters = await self.get_counters(automation_id)
        if counters is None:
            return False

        status, processed, total = counters
        if status != ImportStatus.IMPORTING:
            return status == ImportStatus.COMPLETED
        if not total or processed < total:
            return False

        result = await self.db.execute(
            self._update(automation_id)
            .where(Automation.import_status == ImportStatus.IMPORTING)
            .values(
                import_status=ImportStatus.COMPLETED,
                import_processed_rows=total,
                import_completed_at=datetime.utcnow(),
            )
        )
        await self.db.commit()

        if result.rowcount > 0:
            logger.info(f"[automation {automation_id}] Import completed ({total}/{total} rows)")
        return True

    async def mark_failed(self, automation_id: int, reason: Optional[str] = None) -> bool:
        result = await self.db.execute(
            self._update(automation_id)
            .where(Automation.import_status == ImportStatus.IMPORTING)
            .values(import_status=ImportStatus.FAILED)
        )
        await self.db.commit()

        failed = result.rowcount > 0
        if failed:
            logger.error(f"[automation {automation_id}] Import failed: {reason}")
        return failed
