"""
Pytest configuration and fixtures for the CRM import tests.

Every test runs against a fresh in-memory SQLite database: tables are created
before the test and dropped after it.
"""

import os

# Settings are read at import time, so point them at SQLite before importing the app.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SKIP_DB_INIT", "1")

import pytest
from fastapi.testclient import TestClient

from crm_import.api.dependencies import records_cache
from crm_import.db.models import Contact, CustomField, PipelineStage
from crm_import.db.session import Base, create_all_tables, get_engine, get_session_local, reset_engine

TENANT_ID = "default"


@pytest.fixture(scope="session", autouse=True)
def initialize_test_engine():
    """Start the session from a clean engine bound to the in-memory database."""
    reset_engine()
    yield
    reset_engine()


@pytest.fixture(autouse=True)
def fresh_database():
    """Create all tables before each test and drop them afterwards."""
    create_all_tables()
    records_cache.clear()
    yield
    records_cache.clear()
    Base.metadata.drop_all(bind=get_engine())


@pytest.fixture
def db_session():
    session = get_session_local()()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_factory():
    return get_session_local()


@pytest.fixture
def client():
    from crm_import.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def stages(db_session):
    """A four-stage pipeline for the default tenant, in pipeline order."""
    names = ["Lead", "Qualified", "Negotiation", "Won"]
    created = []
    for position, name in enumerate(names):
        stage = PipelineStage(tenant_id=TENANT_ID, name=name, order=position, is_active=True)
        db_session.add(stage)
        created.append(stage)
    db_session.commit()
    return {stage.name: stage.id for stage in created}


@pytest.fixture
def existing_contact(db_session):
    contact = Contact(
        tenant_id=TENANT_ID,
        first_name="Ada",
        last_name="Lovelace",
        email="ada@example.com",
        company="Analytical Engines",
        tags=[],
        custom_fields={},
    )
    db_session.add(contact)
    db_session.commit()
    return contact


@pytest.fixture
def custom_contact_field(db_session):
    field = CustomField(
        tenant_id=TENANT_ID,
        entity_type="contact",
        name="lead_source",
        label="Lead Source",
        field_type="select",
        options=["Website", "Referral", "Event"],
        position=0,
    )
    db_session.add(field)
    db_session.commit()
    return field
