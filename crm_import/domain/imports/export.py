"""
Skipped-rows export for finished import jobs.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from crm_import.domain.imports.jobs import get_terminal_job
from crm_import.domain.imports.parser import rows_to_csv

logger = logging.getLogger(__name__)

SKIP_REASON_COLUMN = "Skip Reason"


def build_skipped_rows_csv(headers, skipped_rows, *, include_reason: bool = False) -> str:
    """CSV of the skipped source rows, in file order and original column order."""
    ordered = sorted(skipped_rows or [], key=lambda item: item["row"])
    rows = []
    for item in ordered:
        values = dict(item.get("values") or {})
        if include_reason:
            values[SKIP_REASON_COLUMN] = item.get("reason") or ""
        rows.append(values)
    extra = [SKIP_REASON_COLUMN] if include_reason else None
    return rows_to_csv(list(headers or []), rows, extra_columns=extra)


def get_skipped_rows_export(
    db: Session,
    job_id: str,
    *,
    tenant_id: Optional[str] = None,
    include_reason: bool = False,
) -> str:
    """
    Return the skipped-rows CSV for a terminal job.

    The plain export is built once and stored on the job; the variant with
    reasons is rebuilt on demand.

    Raises:
        JobNotFoundError: no such job for this tenant.
        JobNotReadyError: the job is still queued or processing.
    """
    job = get_terminal_job(db, job_id, tenant_id)

    if include_reason:
        return build_skipped_rows_csv(job.headers, job.skipped_rows, include_reason=True)

    if job.skipped_export is None:
        job.skipped_export = build_skipped_rows_csv(job.headers, job.skipped_rows)
        db.commit()
        logger.info("Built skipped-rows export for job %s (%d rows)", job_id, len(job.skipped_rows or []))
    return job.skipped_export
