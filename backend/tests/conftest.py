"""
Pytest configuration and fixtures for order-entry tests.
"""
import os

# Keep the app's startup hooks away from the development database
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_orderentry_app.db")
os.environ.setdefault("SEED_BUILTIN_TEMPLATES", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from orderentry.core.database import Base, get_db
from orderentry.main import app
from orderentry.models.entry_schemas import GridTemplate
from orderentry.services.entry_sessions import entry_sessions
from orderentry.services.grid_renderer import grid_renderers
from orderentry.services.schema_normalizer import default_grid_config


# Test database
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///./test_orderentry.db"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database for each test.
    """
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session):
    """
    Create a test client with the test database.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    entry_sessions.clear()
    grid_renderers.reset()


@pytest.fixture
def grid_template():
    """Default 8-column item sheet, 10 rows"""
    return GridTemplate(id=1, name="Item Sheet", grid_config=default_grid_config(rows_count=10))


@pytest.fixture
def grid_template_payload():
    """Grid template as the authoring surface sends it."""
    return {
        "templateName": "Steel Order Sheet",
        "templateType": "grid",
        "fieldsConfig": {
            "gridConfig": {
                "colHeaders": ["No.", "Item", "Unit", "Quantity", "Unit Price", "Amount"],
                "columns": [
                    {"dataKey": "no", "title": "No.", "type": "text", "readOnly": True},
                    {"dataKey": "itemName", "title": "Item", "type": "text"},
                    {"dataKey": "unit", "title": "Unit", "type": "dropdown", "source": ["EA", "KG", "M"]},
                    {"dataKey": "quantity", "title": "Quantity", "type": "numeric"},
                    {"dataKey": "unitPrice", "title": "Unit Price", "type": "numeric"},
                    {"dataKey": "amount", "title": "Amount", "type": "numeric", "readOnly": True,
                     "formula": "quantity * unitPrice"},
                ],
                "rowsCount": 5,
            }
        },
    }


@pytest.fixture
def positional_grid_config():
    """Item sheet whose columns address row-array indexes, as the first grid templates did."""
    return {
        "handsontableConfig": {
            "colHeaders": ["NO", "Item", "Spec", "Unit", "Qty", "Unit Price", "Amount", "Notes"],
            "columns": [
                {"data": 0, "type": "text", "readOnly": True},
                {"data": 1, "type": "text"},
                {"data": 2, "type": "text"},
                {"data": 3, "type": "text"},
                {"data": 4, "type": "numeric"},
                {"data": 5, "type": "numeric"},
                {"data": 6, "type": "numeric", "readOnly": True, "formula": "4 * 5"},
                {"data": 7, "type": "text"},
            ],
            "rowsCount": 10,
        }
    }


@pytest.fixture
def general_template_payload():
    return {
        "templateName": "Site Request",
        "templateType": "general",
        "fieldsConfig": {
            "fields": [
                {"fieldName": "siteManager", "label": "Site Manager", "fieldType": "text", "required": True},
                {"fieldName": "budget", "label": "Budget", "fieldType": "number"},
                {"fieldName": "urgency", "label": "Urgency", "fieldType": "select", "options": ["Normal", "Urgent"]},
            ]
        },
    }


@pytest.fixture
def legacy_sections():
    """Sectioned config as older templates stored it."""
    return {
        "basic_fields": {
            "project_name": "Project Name",
            "order_date": "Order Date",
        },
        "extrusion_list": {
            "profile_code": "Profile Code",
            "weight_kg": "Weight (kg)",
            "quantity": "Quantity",
        },
    }


@pytest.fixture
def order_header():
    return {
        "projectId": 1,
        "vendorId": 2,
        "orderDate": "2024-03-15",
        "deliveryDate": "2024-03-30",
        "notes": "Deliver to gate 3",
    }
