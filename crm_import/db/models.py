"""
ORM models for the records the import engine reads and writes.

Contacts, deals, custom field definitions and pipeline stages belong to the
surrounding CRM; the import engine only needs the columns declared here.
``ImportJob`` is the job store's durable row.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)

from crm_import.db.session import Base


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Contact(Base):
    __tablename__ = "contacts"

    id = Column(String(36), primary_key=True, default=_new_id)
    tenant_id = Column(String(255), nullable=False, index=True)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(50), nullable=True)
    company = Column(String(255), nullable=True)
    position = Column(String(255), nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=True)
    custom_fields = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class PipelineStage(Base):
    __tablename__ = "pipeline_stages"

    id = Column(String(36), primary_key=True, default=_new_id)
    tenant_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)


class Deal(Base):
    __tablename__ = "deals"

    id = Column(String(36), primary_key=True, default=_new_id)
    tenant_id = Column(String(255), nullable=False, index=True)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=False, index=True)
    stage_id = Column(String(36), ForeignKey("pipeline_stages.id"), nullable=False)
    name = Column(String(255), nullable=False)
    value = Column(Numeric(14, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default="open")
    notes = Column(Text, nullable=True)
    expected_close_date = Column(DateTime(timezone=True), nullable=True)
    custom_fields = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class CustomField(Base):
    """Tenant-defined field on contacts or deals."""
    __tablename__ = "custom_fields"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(255), nullable=False, index=True)
    entity_type = Column(String(20), nullable=False)  # contact | deal
    name = Column(String(255), nullable=False)
    label = Column(String(255), nullable=False)
    field_type = Column(String(20), nullable=False, default="text")
    required = Column(Boolean, nullable=False, default=False)
    options = Column(JSON, nullable=True)
    position = Column(Integer, nullable=False, default=0)


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id = Column(String(36), primary_key=True, default=_new_id)
    tenant_id = Column(String(255), nullable=False, index=True)
    entity_type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="queued", index=True)

    total_records = Column(Integer, nullable=False, default=0)
    processed_records = Column(Integer, nullable=False, default=0)
    created = Column(Integer, nullable=False, default=0)
    updated = Column(Integer, nullable=False, default=0)
    skipped = Column(Integer, nullable=False, default=0)
    contacts_created = Column(Integer, nullable=False, default=0)

    errors = Column(JSON, nullable=False, default=list)
    errors_overflow = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)

    options = Column(JSON, nullable=False, default=dict)
    headers = Column(JSON, nullable=False, default=list)
    skipped_rows = Column(JSON, nullable=False, default=list)
    skipped_export = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration = Column(Float, nullable=True)
