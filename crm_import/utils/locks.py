"""
Per-tenant import locks.

A chunk holds its tenant's locks from the first duplicate lookup until its
commit, so two imports into the same tenant cannot both decide that an email
is new and both insert it.
"""
import logging
import threading
from contextlib import ExitStack, contextmanager
from typing import Dict, Tuple

logger = logging.getLogger(__name__)

# Deal rows may create contacts, so deal imports also hold the contacts lock.
# Scopes are listed in acquisition order; contacts always come first.
LOCK_SCOPES: Dict[str, Tuple[str, ...]] = {
    "contacts": ("contacts",),
    "deals": ("contacts", "deals"),
}


def record_lock_name(tenant_id: str, entity: str) -> str:
    return f"{tenant_id}:{entity}"


class ImportLockManager:
    _locks: Dict[str, threading.Lock] = {}
    _registry_lock = threading.Lock()

    @classmethod
    def get_lock(cls, name: str) -> threading.Lock:
        with cls._registry_lock:
            return cls._locks.setdefault(name, threading.Lock())

    @classmethod
    def lock_names_for(cls, tenant_id: str, entity_type: str) -> Tuple[str, ...]:
        """Lock names an import of ``entity_type`` must hold, in acquisition order."""
        entity = getattr(entity_type, "value", entity_type)
        if entity not in LOCK_SCOPES:
            raise ValueError(f"No lock scope for entity type '{entity}'")
        return tuple(record_lock_name(tenant_id, scope) for scope in LOCK_SCOPES[entity])

    @classmethod
    @contextmanager
    def acquire(cls, name: str):
        lock = cls.get_lock(name)
        lock.acquire()
        logger.debug("Acquired import lock '%s'", name)
        try:
            yield
        finally:
            lock.release()
            logger.debug("Released import lock '%s'", name)

    @classmethod
    @contextmanager
    def hold_for_import(cls, tenant_id: str, entity_type: str):
        """Hold every lock an import chunk needs; released in reverse order."""
        with ExitStack() as stack:
            for name in cls.lock_names_for(tenant_id, entity_type):
                stack.enter_context(cls.acquire(name))
            yield
