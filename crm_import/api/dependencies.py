"""
Shared dependencies, state, and utility functions for the API.

This module contains the parsed-file cache and request helpers that are used
across multiple routers.
"""
import hashlib
import logging
import time
from typing import Any, Dict, Optional

from fastapi import Header

from crm_import.core.config import settings
from crm_import.domain.imports.parser import ParsedFile, parse_csv_file

logger = logging.getLogger(__name__)

DEFAULT_TENANT_ID = "default"

# Cache for parsed uploads so /start does not re-parse what /preview just read
# Key: sha256 of the file bytes, Value: dict with 'parsed', 'file_name', 'timestamp'
records_cache: Dict[str, Dict[str, Any]] = {}
CACHE_TTL_SECONDS = settings.parsed_file_cache_ttl_seconds


def get_tenant_id(x_tenant_id: Optional[str] = Header(default=None)) -> str:
    """Tenant scope for the request, from the ``X-Tenant-ID`` header."""
    tenant = (x_tenant_id or "").strip()
    return tenant or DEFAULT_TENANT_ID


def file_hash_for(file_content: bytes) -> str:
    return hashlib.sha256(file_content).hexdigest()


def _evict_expired(now: float) -> None:
    expired_keys = [k for k, v in records_cache.items() if now - v.get("timestamp", 0) > CACHE_TTL_SECONDS]
    for key in expired_keys:
        del records_cache[key]


def get_parsed_file(file_content: bytes, file_name: Optional[str] = None) -> ParsedFile:
    """
    Parse an upload, reusing a cached parse of identical bytes within the TTL.

    Raises the parser's ``CsvFormatError`` / ``FileTooLargeError``.
    """
    now = time.time()
    _evict_expired(now)

    file_hash = file_hash_for(file_content)
    cached = records_cache.get(file_hash)
    if cached is not None:
        logger.debug("Using cached parse for file hash %s...", file_hash[:8])
        return cached["parsed"]

    parsed = parse_csv_file(file_content)
    records_cache[file_hash] = {
        "parsed": parsed,
        "file_name": file_name,
        "timestamp": now,
    }
    logger.debug("Cached %d rows for file hash %s...", parsed.total_rows, file_hash[:8])
    return parsed
