"""
Column and stage mapping inference for import previews.

Everything here is a pure function of its inputs: the suggestions are advisory
and the caller's confirmed mapping is what an import actually runs with.
"""
import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

from crm_import.core.config import settings
from crm_import.domain.imports.parser import RowRecord
from crm_import.domain.imports.schema import SKIP, FieldOption, FieldSchema

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_header(value: str) -> str:
    """Lowercase and drop whitespace/punctuation: ``"E-mail Address"`` -> ``"emailaddress"``."""
    return _NON_ALNUM.sub("", str(value or "").lower())


def similarity(header: str, term: str) -> float:
    """
    Containment score between two normalized strings.

    1.0 for equality, ``len(shorter) / len(longer)`` when one contains the
    other, otherwise 0.
    """
    if not header or not term:
        return 0.0
    if header == term:
        return 1.0
    shorter, longer = (header, term) if len(header) <= len(term) else (term, header)
    if shorter in longer:
        return len(shorter) / len(longer)
    return 0.0


def _field_terms(field: FieldSchema) -> List[str]:
    terms = [normalize_header(field.key), normalize_header(field.label)]
    terms.extend(normalize_header(alias) for alias in field.aliases)
    return [t for t in terms if t]


def best_field_for_header(
    header: str,
    fields: List[FieldSchema],
    *,
    threshold: Optional[float] = None,
) -> Tuple[Optional[str], float]:
    """Return ``(field_key, score)`` of the best match, or ``(None, score)`` below threshold."""
    cutoff = settings.mapping_similarity_threshold if threshold is None else threshold
    normalized = normalize_header(header)
    best_key: Optional[str] = None
    best_score = 0.0
    for field in fields:
        score = max((similarity(normalized, term) for term in _field_terms(field)), default=0.0)
        # Strictly greater keeps the earliest declared field on ties
        if score > best_score:
            best_key, best_score = field.key, score
    if best_key is None or best_score < cutoff:
        return None, best_score
    return best_key, best_score


def suggest_column_mapping(
    headers: List[str],
    fields: List[FieldSchema],
    *,
    threshold: Optional[float] = None,
) -> Dict[str, str]:
    """Propose ``header -> field key`` (or ``"skip"``) for every header."""
    mapping: Dict[str, str] = {}
    for header in headers:
        key, score = best_field_for_header(header, fields, threshold=threshold)
        mapping[header] = key or SKIP
        logger.debug("Header '%s' -> %s (score %.2f)", header, mapping[header], score)
    return mapping


def distinct_column_values(rows: Iterable[RowRecord], header: str) -> List[str]:
    """Distinct non-empty trimmed values of one column, in first-seen order."""
    seen: Dict[str, None] = {}
    for row in rows:
        value = str(row.get(header) or "").strip()
        if value and value not in seen:
            seen[value] = None
    return list(seen)


def suggest_stage_mapping(values: Iterable[str], stages: List[FieldOption]) -> Dict[str, str]:
    """
    Map observed stage values to stage ids when the value contains a stage name.

    The longest contained stage name wins so that "Proposal Sent" prefers a
    "Proposal Sent" stage over a "Proposal" stage; remaining ties go to
    pipeline order. Values with no match are left out.
    """
    suggestions: Dict[str, str] = {}
    for value in values:
        lowered = value.lower()
        best: Optional[FieldOption] = None
        for stage in stages:
            name = stage.label.strip().lower()
            if not name or name not in lowered:
                continue
            if best is None or len(name) > len(best.label.strip()):
                best = stage
        if best is not None:
            suggestions[value] = best.value
    return suggestions


def headers_for_field(mapping: Dict[str, Optional[str]], field_key: str) -> List[str]:
    return [header for header, key in mapping.items() if key == field_key]


def resolve_column_mapping(
    headers: List[str],
    mapping: Dict[str, Optional[str]],
    fields: List[FieldSchema],
) -> Dict[str, str]:
    """
    Turn a confirmed ``header -> field`` mapping into ``field -> header``.

    When several headers target the same field the one appearing later in the
    file's header order wins. Skipped, unknown and absent headers are dropped.
    """
    known_fields = {f.key for f in fields}
    header_positions = {header: idx for idx, header in enumerate(headers)}
    column_map: Dict[str, str] = {}

    ordered = sorted(
        ((header, key) for header, key in mapping.items() if header in header_positions),
        key=lambda item: header_positions[item[0]],
    )
    for header, key in ordered:
        if not key or key == SKIP:
            continue
        if key not in known_fields:
            logger.warning("Ignoring mapping of column '%s' to unknown field '%s'", header, key)
            continue
        if key in column_map:
            logger.info(
                "Columns '%s' and '%s' both map to '%s'; using '%s'",
                column_map[key], header, key, header,
            )
        column_map[key] = header

    missing = [header for header in mapping if header not in header_positions]
    if missing:
        logger.warning("Mapping references columns not present in the file: %s", missing)
    return column_map
