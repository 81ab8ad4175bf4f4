"""
Importable field definitions for contacts and deals.

The standard fields below are fixed; tenant custom fields are appended by
``definitions.build_field_schemas`` in the order the tenant defined them.
Declaration order matters: mapping inference breaks ties by it.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


SKIP = "skip"


class EntityType(str, Enum):
    CONTACTS = "contacts"
    DEALS = "deals"


class FieldKind(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    TAGS = "tags"
    ENUM = "enum"


class FieldOption(BaseModel):
    value: str
    label: str


class FieldSchema(BaseModel):
    key: str
    label: str
    kind: FieldKind = FieldKind.TEXT
    required: bool = False
    options: List[FieldOption] = Field(default_factory=list)
    default: Optional[str] = None
    aliases: List[str] = Field(default_factory=list)
    format: Optional[str] = None  # email | phone | url
    custom: bool = False


STAGE_FIELD = "stage"

DEAL_STATUSES = ("open", "won", "lost")

# Deal columns that identify the associated contact rather than the deal itself
DEAL_CONTACT_FIELDS = (
    "contact_email",
    "contact_first_name",
    "contact_last_name",
    "contact_name",
    "company",
)


CONTACT_FIELDS: List[FieldSchema] = [
    FieldSchema(key="first_name", label="First Name", required=True,
                aliases=["firstname", "first", "given name", "forename"]),
    FieldSchema(key="last_name", label="Last Name", required=True,
                aliases=["lastname", "last", "surname", "family name"]),
    FieldSchema(key="email", label="Email", format="email",
                aliases=["email address", "e-mail", "mail"]),
    FieldSchema(key="phone", label="Phone", format="phone",
                aliases=["phone number", "telephone", "mobile", "cell"]),
    FieldSchema(key="company", label="Company", aliases=["organization", "company name", "employer"]),
    FieldSchema(key="position", label="Position", aliases=["title", "job title", "role"]),
    FieldSchema(key="tags", label="Tags", kind=FieldKind.TAGS, aliases=["tag", "labels"]),
    FieldSchema(key="notes", label="Notes", aliases=["note", "comments"]),
]


def _deal_fields(stages: List[FieldOption]) -> List[FieldSchema]:
    return [
        FieldSchema(key="name", label="Deal Name", required=True,
                    aliases=["deal", "opportunity", "name", "title"]),
        FieldSchema(key="value", label="Value", kind=FieldKind.NUMBER,
                    aliases=["amount", "deal value", "revenue", "price"]),
        FieldSchema(key=STAGE_FIELD, label="Stage", kind=FieldKind.ENUM, required=True,
                    options=stages, aliases=["pipeline stage", "deal stage"]),
        FieldSchema(key="status", label="Status", kind=FieldKind.ENUM, default="open",
                    options=[FieldOption(value=s, label=s) for s in DEAL_STATUSES],
                    aliases=["deal status"]),
        FieldSchema(key="expected_close_date", label="Expected Close Date", kind=FieldKind.DATE,
                    aliases=["close date", "closing date", "expected close"]),
        FieldSchema(key="notes", label="Notes", aliases=["description", "comments", "details"]),
        FieldSchema(key="contact_email", label="Contact Email", format="email",
                    aliases=["email", "customer email", "client email"]),
        FieldSchema(key="contact_first_name", label="Contact First Name",
                    aliases=["first name", "firstname", "first"]),
        FieldSchema(key="contact_last_name", label="Contact Last Name",
                    aliases=["last name", "lastname", "last"]),
        FieldSchema(key="contact_name", label="Contact Name", aliases=["contact", "customer", "client"]),
        FieldSchema(key="company", label="Company", aliases=["company name", "organization"]),
    ]


def standard_fields(entity_type: EntityType, stages: Optional[List[FieldOption]] = None) -> List[FieldSchema]:
    """Return fresh copies of the built-in fields for ``entity_type``."""
    if entity_type == EntityType.CONTACTS:
        return [f.model_copy(deep=True) for f in CONTACT_FIELDS]
    return _deal_fields(list(stages or []))


def fields_by_key(fields: List[FieldSchema]) -> Dict[str, FieldSchema]:
    """Index fields by key; a later duplicate key does not replace the first definition."""
    index: Dict[str, FieldSchema] = {}
    for field in fields:
        index.setdefault(field.key, field)
    return index


def describe_fields(fields: List[FieldSchema]) -> List[Dict[str, Any]]:
    return [
        {
            "key": f.key,
            "label": f.label,
            "kind": f.kind.value,
            "required": f.required,
            "custom": f.custom,
            "options": [o.model_dump() for o in f.options],
        }
        for f in fields
    ]
