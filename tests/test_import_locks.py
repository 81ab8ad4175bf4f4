"""
Tests for the per-tenant import locks.
"""

import pytest

from crm_import.domain.imports.schema import EntityType
from crm_import.utils.locks import ImportLockManager, record_lock_name


def test_same_name_returns_same_lock():
    name = record_lock_name("acme", "contacts")

    assert name == "acme:contacts"
    assert ImportLockManager.get_lock(name) is ImportLockManager.get_lock(name)
    assert ImportLockManager.get_lock(name) is not ImportLockManager.get_lock("acme:deals")


def test_deal_imports_take_contacts_lock_first():
    assert ImportLockManager.lock_names_for("acme", EntityType.CONTACTS) == ("acme:contacts",)
    assert ImportLockManager.lock_names_for("acme", EntityType.DEALS) == ("acme:contacts", "acme:deals")


def test_unknown_entity_type():
    with pytest.raises(ValueError):
        ImportLockManager.lock_names_for("acme", "invoices")


def test_hold_for_import_holds_every_scope_and_releases_on_error():
    names = ImportLockManager.lock_names_for("release-check", EntityType.DEALS)
    try:
        with ImportLockManager.hold_for_import("release-check", EntityType.DEALS):
            assert all(ImportLockManager.get_lock(name).locked() for name in names)
            raise RuntimeError("boom")
    except RuntimeError:
        pass

    assert not any(ImportLockManager.get_lock(name).locked() for name in names)
