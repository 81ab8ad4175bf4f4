"""
Per-row duplicate resolution and contact matching.

``process_row`` decides what a single coerced row does to the database:
create a record, update the matching one, or skip it. It never commits; the
runner commits once per chunk together with the job's counters.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from crm_import.db.models import Contact, Deal
from crm_import.domain.imports.coercion import CoercedRow, coerce_row
from crm_import.domain.imports.mapper import resolve_column_mapping
from crm_import.domain.imports.parser import RowRecord
from crm_import.domain.imports.schema import (
    DEAL_CONTACT_FIELDS,
    STAGE_FIELD,
    EntityType,
    FieldSchema,
    fields_by_key,
)

logger = logging.getLogger(__name__)

UNKNOWN_FIRST_NAME = "Unknown"
UNKNOWN_LAST_NAME = "Contact"
UNKNOWN_STAGE_ERROR = "Unable to determine stage for deal"


class InvalidImportRequest(ValueError):
    """The confirmed mapping or strategy options cannot be used for an import."""


class DuplicateStrategy(str, Enum):
    SKIP = "skip"
    UPDATE = "update"
    CREATE = "create"


class ContactStrategy(str, Enum):
    MATCH = "match"
    CREATE = "create"
    SKIP = "skip"


class RowAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass
class RowOutcome:
    action: RowAction
    error: Optional[str] = None
    contact_created: bool = False
    record_id: Optional[str] = None

    @classmethod
    def skipped(cls, error: Optional[str] = None) -> "RowOutcome":
        return cls(RowAction.SKIPPED, error=error)


@dataclass
class ImportPlan:
    """Everything needed to process rows, fixed before the first row runs."""
    entity_type: EntityType
    fields: List[FieldSchema]
    column_map: Dict[str, str]
    duplicate_strategy: DuplicateStrategy = DuplicateStrategy.SKIP
    contact_strategy: ContactStrategy = ContactStrategy.CREATE
    stage_mapping: Dict[str, str] = field(default_factory=dict)
    default_stage_id: Optional[str] = None

    @classmethod
    def build(
        cls,
        entity_type: EntityType,
        headers: List[str],
        field_mapping: Dict[str, Optional[str]],
        fields: List[FieldSchema],
        *,
        duplicate_strategy: DuplicateStrategy = DuplicateStrategy.SKIP,
        contact_strategy: ContactStrategy = ContactStrategy.CREATE,
        stage_mapping: Optional[Dict[str, str]] = None,
        default_stage_id: Optional[str] = None,
    ) -> "ImportPlan":
        column_map = resolve_column_mapping(headers, field_mapping, fields)
        stage_mapping = {str(k): str(v) for k, v in (stage_mapping or {}).items() if v}

        if entity_type == EntityType.DEALS:
            stage_field = fields_by_key(fields).get(STAGE_FIELD)
            stage_ids = {opt.value for opt in stage_field.options} if stage_field else set()
            if default_stage_id and default_stage_id not in stage_ids:
                raise InvalidImportRequest(f"Default stage '{default_stage_id}' is not a stage of this pipeline")
            unknown = sorted({v for v in stage_mapping.values() if v not in stage_ids})
            if unknown:
                raise InvalidImportRequest(f"Stage mapping targets unknown stages: {unknown}")
            if not default_stage_id and stage_field and stage_field.options:
                default_stage_id = stage_field.options[0].value

        return cls(
            entity_type=entity_type,
            fields=fields,
            column_map=column_map,
            duplicate_strategy=DuplicateStrategy(duplicate_strategy),
            contact_strategy=ContactStrategy(contact_strategy),
            stage_mapping=stage_mapping,
            default_stage_id=default_stage_id,
        )

    def coerce(self, record: RowRecord) -> CoercedRow:
        value_mappings = {STAGE_FIELD: self.stage_mapping} if self.stage_mapping else {}
        defaults = {STAGE_FIELD: self.default_stage_id} if self.default_stage_id else {}
        return coerce_row(record, self.column_map, self.fields, value_mappings=value_mappings, defaults=defaults)

    def describe(self) -> Dict[str, Any]:
        return {
            "column_map": dict(self.column_map),
            "duplicate_strategy": self.duplicate_strategy.value,
            "contact_strategy": self.contact_strategy.value,
            "stage_mapping": dict(self.stage_mapping),
            "default_stage_id": self.default_stage_id,
        }


# Normalized contact identifier -> contact id, shared across one import run
ContactCache = Dict[str, str]


def find_contact_by_email(db: Session, tenant_id: str, email: str) -> Optional[Contact]:
    return (
        db.query(Contact)
        .filter(Contact.tenant_id == tenant_id, func.lower(Contact.email) == email.strip().lower())
        .order_by(Contact.created_at, Contact.id)
        .first()
    )


def find_contact_by_name(db: Session, tenant_id: str, first_name: str, last_name: str) -> Optional[Contact]:
    return (
        db.query(Contact)
        .filter(
            Contact.tenant_id == tenant_id,
            func.lower(Contact.first_name) == first_name.strip().lower(),
            func.lower(Contact.last_name) == last_name.strip().lower(),
        )
        .order_by(Contact.created_at, Contact.id)
        .first()
    )


def find_deal(db: Session, tenant_id: str, name: str, contact_id: str) -> Optional[Deal]:
    return (
        db.query(Deal)
        .filter(
            Deal.tenant_id == tenant_id,
            Deal.contact_id == contact_id,
            func.lower(func.trim(Deal.name)) == name.strip().lower(),
        )
        .order_by(Deal.created_at, Deal.id)
        .first()
    )


def _apply_updates(record: Any, values: Dict[str, Any], custom_values: Dict[str, Any]) -> None:
    for key, value in values.items():
        setattr(record, key, value)
    if custom_values:
        # Reassign so the JSON column is flagged dirty
        record.custom_fields = {**(record.custom_fields or {}), **custom_values}


def _process_contact(db: Session, tenant_id: str, plan: ImportPlan, coerced: CoercedRow) -> RowOutcome:
    values = dict(coerced.values)
    email = values.get("email")

    if email and plan.duplicate_strategy != DuplicateStrategy.CREATE:
        existing = find_contact_by_email(db, tenant_id, email)
        if existing is not None:
            if plan.duplicate_strategy == DuplicateStrategy.SKIP:
                return RowOutcome(RowAction.SKIPPED, record_id=existing.id)
            _apply_updates(existing, values, coerced.custom_values)
            db.flush()
            return RowOutcome(RowAction.UPDATED, record_id=existing.id)

    contact = Contact(tenant_id=tenant_id, custom_fields=dict(coerced.custom_values), **values)
    contact.tags = values.get("tags") or []
    db.add(contact)
    # Flush so later rows of the same file see this record
    db.flush()
    return RowOutcome(RowAction.CREATED, record_id=contact.id)


def _split_full_name(full_name: str) -> Tuple[str, str]:
    parts = full_name.split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def _contact_lookup_keys(
    email: Optional[str], first: Optional[str], last: Optional[str]
) -> Tuple[Optional[str], Optional[str]]:
    email_key = f"email:{email.strip().lower()}" if email else None
    name_key = f"name:{first.strip().lower()}|{last.strip().lower()}" if first and last else None
    return email_key, name_key


def resolve_deal_contact(
    db: Session,
    tenant_id: str,
    plan: ImportPlan,
    contact_values: Dict[str, Any],
    cache: ContactCache,
) -> Tuple[Optional[str], bool, Optional[str]]:
    """
    Find (or, under the ``create`` strategy, create) the contact for a deal row.

    Returns ``(contact_id, created, error)``; ``contact_id`` is None when the
    row must be skipped, with ``error`` explaining why.
    """
    email = contact_values.get("contact_email")
    first = contact_values.get("contact_first_name")
    last = contact_values.get("contact_last_name")
    full_name = contact_values.get("contact_name")

    if not (first and last) and full_name:
        split_first, split_last = _split_full_name(full_name)
        first = first or split_first
        last = last or split_last

    if not email and not (first and last) and not full_name:
        return None, False, "Contact is required for deals"

    email_key, name_key = _contact_lookup_keys(email, first, last)

    # Email wins; the name is only consulted when the email finds nobody.
    # A contact found by email is never cached under the row's names.
    contact: Optional[Contact] = None
    contact_id: Optional[str] = None
    if email_key:
        contact_id = cache.get(email_key)
        if contact_id is None:
            contact = find_contact_by_email(db, tenant_id, email)
            if contact is not None:
                contact_id = cache[email_key] = contact.id
        if contact_id is not None:
            return contact_id, False, None

    if name_key:
        contact_id = cache.get(name_key)
        if contact_id is None:
            contact = find_contact_by_name(db, tenant_id, first, last)
            if contact is not None:
                contact_id = cache[name_key] = contact.id
        if contact_id is not None:
            return contact_id, False, None

    identifier = email or " ".join(p for p in (first, last) if p) or full_name
    if plan.contact_strategy != ContactStrategy.CREATE:
        return None, False, f"No matching contact found for '{identifier}'"
    contact = Contact(
        tenant_id=tenant_id,
        first_name=first or UNKNOWN_FIRST_NAME,
        last_name=last or UNKNOWN_LAST_NAME,
        email=email,
        company=contact_values.get("company"),
        tags=[],
        custom_fields={},
    )
    db.add(contact)
    db.flush()
    logger.debug("Created contact %s for deal import", contact.id)

    for key in (email_key, name_key):
        if key:
            cache[key] = contact.id
    return contact.id, True, None


def _process_deal(
    db: Session,
    tenant_id: str,
    plan: ImportPlan,
    coerced: CoercedRow,
    cache: ContactCache,
) -> RowOutcome:
    values = dict(coerced.values)
    contact_values = {key: values.pop(key) for key in DEAL_CONTACT_FIELDS if key in values}

    contact_id, contact_created, error = resolve_deal_contact(db, tenant_id, plan, contact_values, cache)
    if contact_id is None:
        return RowOutcome.skipped(error)

    stage_id = values.pop(STAGE_FIELD, None)
    # An update leaves the stage alone unless the file supplies one
    if STAGE_FIELD in plan.column_map:
        values["stage_id"] = stage_id

    name = values["name"]
    if plan.duplicate_strategy != DuplicateStrategy.CREATE:
        existing = find_deal(db, tenant_id, name, contact_id)
        if existing is not None:
            if plan.duplicate_strategy == DuplicateStrategy.SKIP:
                return RowOutcome(RowAction.SKIPPED, contact_created=contact_created, record_id=existing.id)
            _apply_updates(existing, values, coerced.custom_values)
            db.flush()
            return RowOutcome(RowAction.UPDATED, contact_created=contact_created, record_id=existing.id)

    values["stage_id"] = stage_id
    values.setdefault("status", "open")
    values.setdefault("value", 0)
    deal = Deal(tenant_id=tenant_id, contact_id=contact_id, custom_fields=dict(coerced.custom_values), **values)
    db.add(deal)
    db.flush()
    return RowOutcome(RowAction.CREATED, contact_created=contact_created, record_id=deal.id)


def process_row(
    db: Session,
    tenant_id: str,
    plan: ImportPlan,
    record: RowRecord,
    row_number: Optional[int] = None,
    cache: Optional[ContactCache] = None,
) -> RowOutcome:
    """
    Coerce one row and apply it according to the plan's strategies.

    Row-level problems come back as a skipped outcome with an error message;
    database errors propagate to the caller.
    """
    coerced = plan.coerce(record)
    if coerced.rejected:
        logger.debug("Row %s rejected: %s", row_number, coerced.rejected_reason)
        if plan.entity_type == EntityType.DEALS and coerced.rejected_field == STAGE_FIELD:
            return RowOutcome.skipped(UNKNOWN_STAGE_ERROR)
        return RowOutcome.skipped(coerced.rejected_reason)

    if plan.entity_type == EntityType.CONTACTS:
        return _process_contact(db, tenant_id, plan, coerced)
    return _process_deal(db, tenant_id, plan, coerced, cache if cache is not None else {})
