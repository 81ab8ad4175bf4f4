"""
Conversion of raw CSV cells into typed field values.

``coerce_value`` handles one cell; ``coerce_row`` applies a column mapping to a
whole row, isolating failures per field so that only a required field can
reject the row.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from crm_import.domain.imports.parser import RowRecord
from crm_import.domain.imports.schema import FieldKind, FieldSchema
from crm_import.domain.imports.validators import validate_with_preset
from crm_import.utils.date import parse_flexible_date
from crm_import.utils.phone import standardize_phone

logger = logging.getLogger(__name__)

TRUE_VALUES = frozenset({"true", "yes", "1", "y"})
FALSE_VALUES = frozenset({"false", "no", "0", "n"})


class CoercionError(ValueError):
    """A single cell could not be converted to its field's type."""

    def __init__(self, field: FieldSchema, raw: Any, reason: str):
        self.field = field
        self.raw = raw
        self.reason = reason
        super().__init__(f"{field.label}: {reason} (value '{raw}')")


def _parse_number(text: str) -> Decimal:
    normalized = text.replace(",", "").replace(" ", "")
    negative = normalized.startswith("(") and normalized.endswith(")")
    if negative:
        normalized = normalized[1:-1]
    if normalized.startswith("-$"):
        normalized = "-" + normalized[2:]
    elif normalized.startswith("$"):
        normalized = normalized[1:]
    number = Decimal(normalized)
    if not number.is_finite():
        raise InvalidOperation(text)
    return -number if negative else number


def _coerce_text(text: str, field: FieldSchema) -> str:
    if field.format == "phone":
        # Numbers that cannot be standardized are kept as typed
        return standardize_phone(text) or text
    if field.format in ("email", "url"):
        ok, message = validate_with_preset(text, field.format)
        if not ok:
            raise CoercionError(field, text, message or "invalid format")
        return text.lower() if field.format == "email" else text
    return text


def split_tags(text: str) -> List[str]:
    tags: Dict[str, None] = {}
    for part in text.split(","):
        tag = part.strip()
        if tag and tag not in tags:
            tags[tag] = None
    return list(tags)


def _match_value_mapping(text: str, value_mapping: Optional[Dict[str, str]]) -> Optional[str]:
    if not value_mapping:
        return None
    if value_mapping.get(text):
        return value_mapping[text]
    lowered = text.lower()
    for source, target in value_mapping.items():
        if target and str(source).strip().lower() == lowered:
            return target
    return None


def _coerce_enum(
    text: str,
    field: FieldSchema,
    value_mapping: Optional[Dict[str, str]],
    default: Optional[str],
) -> Optional[str]:
    if not text:
        return default

    mapped = _match_value_mapping(text, value_mapping)
    if mapped:
        return mapped

    lowered = text.lower()
    for option in field.options:
        if option.value.lower() == lowered or option.label.strip().lower() == lowered:
            return option.value

    if default is not None:
        logger.debug("Value '%s' for %s not recognised; using default '%s'", text, field.key, default)
        return default
    allowed = ", ".join(o.label for o in field.options) or "none configured"
    raise CoercionError(field, text, f"not one of the allowed values ({allowed})")


def coerce_value(
    raw: Any,
    field: FieldSchema,
    *,
    value_mapping: Optional[Dict[str, str]] = None,
    default: Optional[str] = None,
) -> Any:
    """
    Convert one raw cell to the field's type.

    Returns None when the cell is empty (the field is absent). Raises
    ``CoercionError`` when a non-empty cell cannot be converted.
    """
    text = "" if raw is None else str(raw).strip()

    if field.kind == FieldKind.ENUM:
        return _coerce_enum(text, field, value_mapping, default)
    if not text:
        return None

    if field.kind == FieldKind.TEXT:
        return _coerce_text(text, field)

    if field.kind == FieldKind.NUMBER:
        try:
            return _parse_number(text)
        except (InvalidOperation, ValueError):
            raise CoercionError(field, text, "not a number")

    if field.kind == FieldKind.DATE:
        parsed = parse_flexible_date(text, log_context=field.key)
        if parsed is None:
            raise CoercionError(field, text, "not a recognised date")
        return parsed

    if field.kind == FieldKind.BOOLEAN:
        lowered = text.lower()
        if lowered in TRUE_VALUES:
            return True
        if lowered in FALSE_VALUES:
            return False
        raise CoercionError(field, text, "not a yes/no value")

    if field.kind == FieldKind.TAGS:
        return split_tags(text) or None

    raise CoercionError(field, text, f"unsupported field kind '{field.kind}'")


def to_json_value(value: Any) -> Any:
    """Make a coerced value safe for a JSON column."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass
class CoercedRow:
    values: Dict[str, Any] = field(default_factory=dict)
    custom_values: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    rejected_reason: Optional[str] = None
    rejected_field: Optional[str] = None

    @property
    def rejected(self) -> bool:
        return self.rejected_reason is not None

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)


def coerce_row(
    record: RowRecord,
    column_map: Dict[str, str],
    fields: List[FieldSchema],
    *,
    value_mappings: Optional[Dict[str, Dict[str, str]]] = None,
    defaults: Optional[Dict[str, str]] = None,
) -> CoercedRow:
    """
    Coerce every mapped field of one row.

    ``column_map`` is ``field key -> header`` (see ``resolve_column_mapping``).
    Optional-field failures drop the field and are kept as warnings; a
    required field that fails or is absent rejects the row.
    """
    value_mappings = value_mappings or {}
    defaults = defaults or {}
    result = CoercedRow()

    for schema in fields:
        header = column_map.get(schema.key)
        if header is None and not schema.required:
            continue
        raw = record.get(header, "") if header else ""
        try:
            value = coerce_value(
                raw,
                schema,
                value_mapping=value_mappings.get(schema.key),
                default=defaults.get(schema.key),
            )
        except CoercionError as exc:
            if schema.required:
                result.rejected_reason = str(exc)
                result.rejected_field = schema.key
                return result
            logger.debug("Dropping optional field: %s", exc)
            result.warnings.append(str(exc))
            continue

        if value is None:
            if schema.required:
                result.rejected_reason = f"{schema.label} is required"
                result.rejected_field = schema.key
                return result
            continue

        if schema.custom:
            result.custom_values[schema.key] = to_json_value(value)
        else:
            result.values[schema.key] = value

    return result
