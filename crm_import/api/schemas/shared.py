from datetime import datetime
from typing import Dict, List, Optional, Literal

from pydantic import BaseModel, Field, field_validator

from crm_import.domain.imports.matching import ContactStrategy, DuplicateStrategy


class RowError(BaseModel):
    row: int
    error: str


class FieldOptionInfo(BaseModel):
    value: str
    label: str


class FieldInfo(BaseModel):
    """An importable field as shown to the mapping UI."""
    key: str
    label: str
    kind: str
    required: bool = False
    custom: bool = False
    options: List[FieldOptionInfo] = Field(default_factory=list)


class ImportPreviewResponse(BaseModel):
    """Response from an import preview upload"""
    success: bool = True
    headers: List[str]
    preview: List[Dict[str, str]]
    suggested_mapping: Dict[str, str]
    fields: List[FieldInfo]
    total_rows: int
    file_hash: str
    suggested_stage_mapping: Optional[Dict[str, str]] = None
    stages: Optional[List[FieldOptionInfo]] = None


class ImportOptions(BaseModel):
    """Confirmed mapping and strategies sent with an import start request."""
    field_mapping: Dict[str, Optional[str]] = Field(default_factory=dict)
    duplicate_strategy: DuplicateStrategy = DuplicateStrategy.SKIP
    contact_strategy: ContactStrategy = ContactStrategy.CREATE
    stage_mapping: Dict[str, str] = Field(default_factory=dict)
    default_stage_id: Optional[str] = None
    force_async: bool = False

    @field_validator("default_stage_id")
    @classmethod
    def blank_stage_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()


class ImportResultInfo(BaseModel):
    created: int = 0
    updated: int = 0
    skipped: int = 0
    contacts_created: int = 0
    errors: List[RowError] = Field(default_factory=list)
    error_count: int = 0


class ImportStartResponse(BaseModel):
    """Either the finished result (sync) or the id of the queued job (async)."""
    success: bool = True
    mode: Literal["sync", "async"]
    total_records: int
    result: Optional[ImportResultInfo] = None
    job_id: Optional[str] = None


class ImportJobInfo(BaseModel):
    """Point-in-time snapshot of an import job."""
    id: str
    entity_type: str
    status: str  # queued, processing, completed, failed
    total_records: int
    processed_records: int
    created: int
    updated: int
    skipped: int
    contacts_created: int = 0
    error_count: int = 0
    errors: List[RowError] = Field(default_factory=list)
    errors_truncated: bool = False
    progress: float = 0
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration: Optional[float] = None


class ImportJobListResponse(BaseModel):
    """Response wrapper for a list of import jobs."""
    success: bool
    jobs: List[ImportJobInfo]
    total_count: int
    limit: int
    offset: int

