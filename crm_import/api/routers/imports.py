"""
Contact and deal import endpoints: preview an upload, then start the import.
"""
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_import.api.dependencies import file_hash_for, get_parsed_file, get_tenant_id
from crm_import.api.schemas.shared import (
    ImportOptions,
    ImportPreviewResponse,
    ImportResultInfo,
    ImportStartResponse,
)
from crm_import.db.session import get_db
from crm_import.domain.imports.definitions import build_field_schemas
from crm_import.domain.imports.mapper import (
    distinct_column_values,
    headers_for_field,
    suggest_column_mapping,
    suggest_stage_mapping,
)
from crm_import.domain.imports.matching import ImportPlan, InvalidImportRequest
from crm_import.domain.imports.parser import CsvFormatError, FileTooLargeError, ParsedFile
from crm_import.domain.imports.runner import run_import_job, submit_import
from crm_import.domain.imports.schema import STAGE_FIELD, EntityType, describe_fields, fields_by_key

router = APIRouter(tags=["imports"])

logger = logging.getLogger(__name__)


def _parse_upload(file_content: bytes, file: UploadFile) -> ParsedFile:
    try:
        return get_parsed_file(file_content, file.filename)
    except FileTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))
    except CsvFormatError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _parse_json_form(value: Optional[str], name: str) -> Dict[str, Any]:
    if value is None or not value.strip():
        return {}
    try:
        data = json.loads(value)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"{name} is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail=f"{name} must be a JSON object")
    return data


async def _preview(entity_type: EntityType, file: UploadFile, db: Session, tenant_id: str) -> ImportPreviewResponse:
    file_content = await file.read()
    parsed = _parse_upload(file_content, file)

    fields = build_field_schemas(db, tenant_id, entity_type)
    suggested = suggest_column_mapping(parsed.headers, fields)
    logger.info(
        "Preview of %s upload '%s': %d rows, %d columns",
        entity_type.value, file.filename, parsed.total_rows, len(parsed.headers),
    )

    extra: Dict[str, Any] = {}
    if entity_type == EntityType.DEALS:
        stages = fields_by_key(fields)[STAGE_FIELD].options
        stage_headers = headers_for_field(suggested, STAGE_FIELD)
        stage_mapping: Dict[str, str] = {}
        if stage_headers:
            # Last-wins, like the mapping itself
            values = distinct_column_values(parsed.rows, stage_headers[-1])
            stage_mapping = suggest_stage_mapping(values, stages)
        extra["suggested_stage_mapping"] = stage_mapping
        extra["stages"] = [stage.model_dump() for stage in stages]

    return ImportPreviewResponse(
        headers=parsed.headers,
        preview=parsed.preview,
        suggested_mapping=suggested,
        fields=describe_fields(fields),
        total_rows=parsed.total_rows,
        file_hash=file_hash_for(file_content),
        **extra,
    )


async def _start(
    entity_type: EntityType,
    background_tasks: BackgroundTasks,
    file: UploadFile,
    db: Session,
    tenant_id: str,
    form: Dict[str, Any],
) -> ImportStartResponse:
    try:
        options = ImportOptions(**form)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    parsed = _parse_upload(await file.read(), file)
    fields = build_field_schemas(db, tenant_id, entity_type)

    try:
        plan = ImportPlan.build(
            entity_type,
            parsed.headers,
            options.field_mapping,
            fields,
            duplicate_strategy=options.duplicate_strategy,
            contact_strategy=options.contact_strategy,
            stage_mapping=options.stage_mapping,
            default_stage_id=options.default_stage_id,
        )
    except InvalidImportRequest as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(
        "Starting %s import of '%s' (%d rows) for tenant %s",
        entity_type.value, file.filename, parsed.total_rows, tenant_id,
    )
    try:
        submission = await submit_import(db, tenant_id, plan, parsed, force_async=options.force_async)
    except SQLAlchemyError as e:
        logger.exception("Database error while starting %s import for tenant %s", entity_type.value, tenant_id)
        raise HTTPException(
            status_code=500,
            detail=f"Import failed, no rows were committed: {str(e)}",
        )

    if submission.mode == "async":
        background_tasks.add_task(run_import_job, submission.job_id, tenant_id, plan, parsed)
        return ImportStartResponse(mode="async", job_id=submission.job_id, total_records=submission.total_records)

    return ImportStartResponse(
        mode="sync",
        total_records=submission.total_records,
        result=ImportResultInfo(**submission.result.as_dict()),
    )


@router.post("/contacts/import/preview", response_model=ImportPreviewResponse)
async def preview_contacts_import(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    """
    Parse a contacts CSV and suggest a column mapping.

    Returns the headers, the first rows, the suggested header -> field mapping
    and the importable fields (standard and custom).
    """
    return await _preview(EntityType.CONTACTS, file, db, tenant_id)


@router.post("/deals/import/preview", response_model=ImportPreviewResponse)
async def preview_deals_import(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    """
    Parse a deals CSV and suggest column and stage mappings.

    In addition to the contacts preview, returns the pipeline stages and a
    suggested mapping from the file's stage values to stage ids.
    """
    return await _preview(EntityType.DEALS, file, db, tenant_id)


@router.post("/contacts/import/start", response_model=ImportStartResponse)
async def start_contacts_import(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    field_mapping: str = Form(...),
    duplicate_strategy: str = Form("skip"),
    force_async: bool = Form(False),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    """
    Import contacts with a confirmed mapping.

    Files up to the contacts threshold import immediately and return the
    totals; larger files (or ``force_async``) return a job id to poll.
    """
    form = {
        "field_mapping": _parse_json_form(field_mapping, "field_mapping"),
        "duplicate_strategy": duplicate_strategy,
        "force_async": force_async,
    }
    return await _start(EntityType.CONTACTS, background_tasks, file, db, tenant_id, form)


@router.post("/deals/import/start", response_model=ImportStartResponse)
async def start_deals_import(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    field_mapping: str = Form(...),
    duplicate_strategy: str = Form("skip"),
    contact_strategy: str = Form("create"),
    stage_mapping: Optional[str] = Form(None),
    default_stage_id: Optional[str] = Form(None),
    force_async: bool = Form(False),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    """
    Import deals with a confirmed mapping.

    Parameters:
    - field_mapping: JSON object of CSV header -> field key (or "skip")
    - duplicate_strategy: skip | update | create
    - contact_strategy: match | create | skip
    - stage_mapping: JSON object of stage value in the file -> stage id
    - default_stage_id: stage for rows whose stage cannot be resolved
    """
    form = {
        "field_mapping": _parse_json_form(field_mapping, "field_mapping"),
        "duplicate_strategy": duplicate_strategy,
        "contact_strategy": contact_strategy,
        "stage_mapping": _parse_json_form(stage_mapping, "stage_mapping"),
        "default_stage_id": default_stage_id,
        "force_async": force_async,
    }
    return await _start(EntityType.DEALS, background_tasks, file, db, tenant_id, form)
