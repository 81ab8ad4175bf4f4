"""
Endpoints for tracking import job progress.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from crm_import.api.dependencies import get_tenant_id
from crm_import.api.schemas.shared import ImportJobInfo, ImportJobListResponse
from crm_import.db.session import get_db
from crm_import.domain.imports.export import get_skipped_rows_export
from crm_import.domain.imports.jobs import (
    JobNotFoundError,
    JobNotReadyError,
    get_import_job,
    list_import_jobs,
)

router = APIRouter(tags=["import-jobs"])


@router.get("/import-jobs/{job_id}", response_model=ImportJobInfo)
async def get_import_job_endpoint(
    job_id: str,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    job = get_import_job(db, job_id, tenant_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.get("/import-jobs", response_model=ImportJobListResponse)
async def list_import_jobs_endpoint(
    entity_type: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    jobs, total = list_import_jobs(db, tenant_id=tenant_id, entity_type=entity_type, limit=limit, offset=offset)
    return ImportJobListResponse(
        success=True,
        jobs=jobs,
        total_count=total,
        limit=limit,
        offset=offset,
    )


@router.get("/import-jobs/{job_id}/skipped-rows")
async def download_skipped_rows(
    job_id: str,
    include_reason: bool = False,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    """
    Download the rows a finished job skipped, as CSV in the original column order.

    Set ``include_reason=true`` to append a "Skip Reason" column.
    """
    try:
        content = get_skipped_rows_export(db, job_id, tenant_id=tenant_id, include_reason=include_reason)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except JobNotReadyError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="skipped_rows_{job_id}.csv"'},
    )
