"""
Entity definitions supplied to the import engine: custom fields and pipeline stages.
"""
import logging
from typing import List

from sqlalchemy.orm import Session

from crm_import.db.models import CustomField, PipelineStage
from crm_import.domain.imports.schema import (
    EntityType,
    FieldKind,
    FieldOption,
    FieldSchema,
    standard_fields,
)

logger = logging.getLogger(__name__)

_CUSTOM_FIELD_KINDS = {
    "text": (FieldKind.TEXT, None),
    "textarea": (FieldKind.TEXT, None),
    "url": (FieldKind.TEXT, "url"),
    "email": (FieldKind.TEXT, "email"),
    "phone": (FieldKind.TEXT, "phone"),
    "number": (FieldKind.NUMBER, None),
    "date": (FieldKind.DATE, None),
    "checkbox": (FieldKind.BOOLEAN, None),
    "select": (FieldKind.ENUM, None),
    "tags": (FieldKind.TAGS, None),
}


def _entity_name(entity_type: EntityType) -> str:
    return "contact" if entity_type == EntityType.CONTACTS else "deal"


def custom_field_to_schema(field: CustomField) -> FieldSchema:
    kind, text_format = _CUSTOM_FIELD_KINDS.get(field.field_type, (FieldKind.TEXT, None))
    options = [FieldOption(value=str(opt), label=str(opt)) for opt in (field.options or [])]
    return FieldSchema(
        key=field.name,
        label=field.label,
        kind=kind,
        required=bool(field.required),
        options=options,
        format=text_format,
        custom=True,
    )


def list_pipeline_stages(db: Session, tenant_id: str) -> List[PipelineStage]:
    return (
        db.query(PipelineStage)
        .filter(PipelineStage.tenant_id == tenant_id, PipelineStage.is_active.is_(True))
        .order_by(PipelineStage.order, PipelineStage.name)
        .all()
    )


def stage_options(stages: List[PipelineStage]) -> List[FieldOption]:
    return [FieldOption(value=stage.id, label=stage.name) for stage in stages]


def build_field_schemas(db: Session, tenant_id: str, entity_type: EntityType) -> List[FieldSchema]:
    """Standard fields for the entity followed by the tenant's custom fields."""
    stages = list_pipeline_stages(db, tenant_id) if entity_type == EntityType.DEALS else []
    fields = standard_fields(entity_type, stage_options(stages))
    standard_keys = {f.key for f in fields}

    custom_fields = (
        db.query(CustomField)
        .filter(CustomField.tenant_id == tenant_id, CustomField.entity_type == _entity_name(entity_type))
        .order_by(CustomField.position, CustomField.id)
        .all()
    )
    for custom_field in custom_fields:
        if custom_field.name in standard_keys:
            logger.warning(
                "Custom field '%s' shadows a standard %s field and is ignored for imports",
                custom_field.name,
                entity_type.value,
            )
            continue
        fields.append(custom_field_to_schema(custom_field))

    return fields
