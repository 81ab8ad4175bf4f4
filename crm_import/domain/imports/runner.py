"""
Import job runner.

Small files import inside the request; large ones become a queued job that a
FastAPI background task drives chunk by chunk. Both paths share
``execute_import``; they differ only in the progress tracker (in-memory for the
synchronous path, the ``import_jobs`` row for background jobs) and the chunk
size.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_import.core.config import settings
from crm_import.db.session import get_session_local
from crm_import.domain.imports import jobs as job_store
from crm_import.domain.imports.matching import (
    ContactCache,
    ImportPlan,
    RowAction,
    process_row,
)
from crm_import.domain.imports.parser import ParsedFile, RowRecord
from crm_import.domain.imports.schema import EntityType
from crm_import.utils.locks import ImportLockManager

logger = logging.getLogger(__name__)

DUPLICATE_REASON = "Duplicate of an existing record"
FAIL_ATTEMPTS = 2


@dataclass
class ChunkOutcome:
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    contacts_created: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    skipped_rows: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ImportResult:
    """Totals of one synchronous import."""
    created: int = 0
    updated: int = 0
    skipped: int = 0
    contacts_created: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    errors_overflow: int = 0
    skipped_rows: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.skipped

    @property
    def error_count(self) -> int:
        return len(self.errors) + self.errors_overflow

    def as_dict(self) -> Dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "contacts_created": self.contacts_created,
            "errors": self.errors,
            "error_count": self.error_count,
        }


class InMemoryTracker:
    """Progress sink for synchronous imports; nothing is persisted."""

    def __init__(self):
        self.result = ImportResult()

    def record(self, db: Session, outcome: ChunkOutcome) -> None:
        self.result.created += outcome.created
        self.result.updated += outcome.updated
        self.result.skipped += outcome.skipped
        self.result.contacts_created += outcome.contacts_created
        room = max(settings.job_error_retention - len(self.result.errors), 0)
        self.result.errors.extend(outcome.errors[:room])
        self.result.errors_overflow += len(outcome.errors) - min(room, len(outcome.errors))
        self.result.skipped_rows.extend(outcome.skipped_rows)


class JobTracker:
    """Progress sink that writes each chunk's counters to the job row."""

    def __init__(self, job_id: str):
        self.job_id = job_id

    def record(self, db: Session, outcome: ChunkOutcome) -> None:
        job_store.record_chunk_progress(
            db,
            self.job_id,
            processed=outcome.processed,
            created=outcome.created,
            updated=outcome.updated,
            skipped=outcome.skipped,
            contacts_created=outcome.contacts_created,
            errors=outcome.errors,
            skipped_rows=outcome.skipped_rows,
            commit=False,
        )


def chunk_size_for(entity_type: EntityType) -> int:
    if entity_type == EntityType.DEALS:
        return settings.deal_chunk_size
    return settings.contact_chunk_size


def async_threshold_for(entity_type: EntityType) -> int:
    if entity_type == EntityType.DEALS:
        return settings.deal_async_threshold
    return settings.contact_async_threshold


def process_chunk(
    db: Session,
    tenant_id: str,
    plan: ImportPlan,
    rows: List[RowRecord],
    first_row_number: int,
    tracker: Any,
    contact_cache: ContactCache,
) -> ChunkOutcome:
    """
    Run one chunk of rows and commit its writes together with its counters.

    The tenant's named locks are held from the first duplicate check until the
    commit, so a concurrent job cannot insert the same key in between.
    """
    outcome = ChunkOutcome()
    with ImportLockManager.hold_for_import(tenant_id, plan.entity_type):
        try:
            for offset, record in enumerate(rows):
                row_number = first_row_number + offset
                result = process_row(db, tenant_id, plan, record, row_number, contact_cache)
                outcome.processed += 1
                if result.contact_created:
                    outcome.contacts_created += 1
                if result.action == RowAction.CREATED:
                    outcome.created += 1
                elif result.action == RowAction.UPDATED:
                    outcome.updated += 1
                else:
                    outcome.skipped += 1
                    outcome.skipped_rows.append(
                        {"row": row_number, "values": record, "reason": result.error or DUPLICATE_REASON}
                    )
                    if result.error:
                        outcome.errors.append({"row": row_number, "error": result.error})

            tracker.record(db, outcome)
            db.commit()
        except Exception:
            db.rollback()
            # Cached ids may point at contacts created in the rolled-back chunk
            contact_cache.clear()
            raise
    return outcome


def _run_chunk_in_session(
    session_factory: Callable[[], Session],
    tenant_id: str,
    plan: ImportPlan,
    rows: List[RowRecord],
    first_row_number: int,
    tracker: Any,
    contact_cache: ContactCache,
) -> ChunkOutcome:
    db = session_factory()
    try:
        return process_chunk(db, tenant_id, plan, rows, first_row_number, tracker, contact_cache)
    finally:
        db.close()


async def execute_import(
    tenant_id: str,
    plan: ImportPlan,
    parsed: ParsedFile,
    tracker: Any,
    *,
    chunk_size: int,
    session_factory: Optional[Callable[[], Session]] = None,
) -> None:
    """
    Drive every row of ``parsed`` through ``process_row`` in file order.

    Each chunk runs in a worker thread with its own session; the loop yields
    to the event loop between chunks so status polls are served while a large
    import runs.
    """
    factory = session_factory or get_session_local()
    loop = asyncio.get_running_loop()
    contact_cache: ContactCache = {}
    step = max(chunk_size, 1)

    for start in range(0, parsed.total_rows, step):
        rows = parsed.rows[start:start + step]
        outcome = await loop.run_in_executor(
            None,
            _run_chunk_in_session,
            factory,
            tenant_id,
            plan,
            rows,
            parsed.row_number(start),
            tracker,
            contact_cache,
        )
        logger.info(
            "Processed %s rows %d-%d: %d created, %d updated, %d skipped",
            plan.entity_type.value,
            parsed.row_number(start),
            parsed.row_number(start + outcome.processed - 1),
            outcome.created,
            outcome.updated,
            outcome.skipped,
        )
        await asyncio.sleep(0)


async def run_import_job(
    job_id: str,
    tenant_id: str,
    plan: ImportPlan,
    parsed: ParsedFile,
    *,
    session_factory: Optional[Callable[[], Session]] = None,
) -> None:
    """Background task body: claim the job, run every chunk, then finish it."""
    factory = session_factory or get_session_local()

    db = factory()
    try:
        job_store.claim_import_job(db, job_id)
    except (job_store.JobNotFoundError, job_store.InvalidJobTransition):
        logger.exception("Import job %s cannot be started", job_id)
        return
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Database error while claiming import job %s", job_id)
        _fail(factory, job_id, f"Database error: {exc}")
        return
    finally:
        db.close()

    try:
        await execute_import(
            tenant_id,
            plan,
            parsed,
            JobTracker(job_id),
            chunk_size=chunk_size_for(plan.entity_type),
            session_factory=factory,
        )
    except SQLAlchemyError as exc:
        logger.exception("Database error while running import job %s", job_id)
        _fail(factory, job_id, f"Database error: {exc}")
        return
    except Exception as exc:
        logger.exception("Import job %s failed", job_id)
        _fail(factory, job_id, str(exc) or exc.__class__.__name__)
        return

    db = factory()
    try:
        job_store.complete_import_job(db, job_id)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Database error while completing import job %s", job_id)
        _fail(factory, job_id, f"Database error: {exc}")
    finally:
        db.close()


def _fail(session_factory: Callable[[], Session], job_id: str, message: str) -> None:
    """Mark the job failed, retrying once in a fresh session if the database is still erroring."""
    for attempt in range(1, FAIL_ATTEMPTS + 1):
        db = session_factory()
        try:
            job_store.fail_import_job(db, job_id, message)
            return
        except job_store.InvalidJobTransition:
            logger.warning("Import job %s already finished; not marking it failed", job_id)
            return
        except SQLAlchemyError:
            logger.exception("Could not mark import job %s failed (attempt %d of %d)", job_id, attempt, FAIL_ATTEMPTS)
        finally:
            db.close()
    logger.error("Import job %s left unfinished: %s", job_id, message)


@dataclass
class Submission:
    mode: str  # "sync" | "async"
    result: Optional[ImportResult] = None
    job_id: Optional[str] = None
    total_records: int = 0


async def submit_import(
    db: Session,
    tenant_id: str,
    plan: ImportPlan,
    parsed: ParsedFile,
    *,
    force_async: bool = False,
    session_factory: Optional[Callable[[], Session]] = None,
) -> Submission:
    """
    Import small files right away; queue a job for large ones.

    For the async mode the caller schedules ``run_import_job`` with the returned
    job id (the routers use FastAPI ``BackgroundTasks``).
    """
    threshold = async_threshold_for(plan.entity_type)
    if not force_async and parsed.total_rows <= threshold:
        tracker = InMemoryTracker()
        await execute_import(
            tenant_id,
            plan,
            parsed,
            tracker,
            chunk_size=max(parsed.total_rows, 1),
            session_factory=session_factory,
        )
        logger.info(
            "Synchronous %s import finished: %d created, %d updated, %d skipped",
            plan.entity_type.value,
            tracker.result.created,
            tracker.result.updated,
            tracker.result.skipped,
        )
        return Submission(mode="sync", result=tracker.result, total_records=parsed.total_rows)

    job_store.purge_expired_jobs(db)
    job = job_store.create_import_job(
        db,
        tenant_id=tenant_id,
        entity_type=plan.entity_type.value,
        total_records=parsed.total_rows,
        headers=parsed.headers,
        options=plan.describe(),
    )
    return Submission(mode="async", job_id=job["id"], total_records=parsed.total_rows)
