"""
API tests for the template source and authoring endpoints.
"""

import pytest
from orderentry.models.template import OrderTemplate


@pytest.fixture
def legacy_row(db_session, legacy_sections):
    """Legacy template written straight to the table, as older writers did."""
    row = OrderTemplate(
        template_name="Extrusion (legacy)",
        template_type="material_extrusion",
        fields_config=legacy_sections,
        is_active=True,
    )
    db_session.add(row)
    db_session.commit()
    db_session.refresh(row)
    return row


def test_create_and_fetch_grid_template(client, grid_template_payload):
    response = client.post("/api/order-templates", json=grid_template_payload)
    assert response.status_code == 201
    created = response.json()
    assert created["surface"] == "grid"
    assert "gridConfig" in created["fieldsConfig"]

    response = client.get(f"/api/templates/{created['id']}")
    assert response.status_code == 200
    data = response.json()
    assert data["definition"]["kind"] == "grid"
    assert data["definition"]["gridConfig"]["colHeaders"][1] == "Item"


def test_list_returns_active_only(client, grid_template_payload, general_template_payload):
    grid_id = client.post("/api/order-templates", json=grid_template_payload).json()["id"]
    client.post("/api/order-templates", json=general_template_payload)

    response = client.patch(f"/api/order-templates/{grid_id}/toggle-status", json={"isActive": False})
    assert response.status_code == 200
    assert response.json()["isActive"] is False

    names = [t["templateName"] for t in client.get("/api/templates").json()["templates"]]
    assert names == ["Site Request"]
    assert len(client.get("/api/order-templates").json()) == 2


def test_toggle_requires_boolean(client, general_template_payload):
    template_id = client.post("/api/order-templates", json=general_template_payload).json()["id"]

    response = client.patch(f"/api/order-templates/{template_id}/toggle-status", json={"isActive": "yes"})

    assert response.status_code == 400
    assert response.json()["message"] == "isActive must be a boolean value"


def test_legacy_template_is_normalized_on_read(client, legacy_row):
    data = client.get(f"/api/templates/{legacy_row.id}").json()

    assert data["fieldsConfig"] == legacy_row.fields_config
    definition = data["definition"]
    assert definition["kind"] == "general"
    assert [f["sectionName"] for f in definition["fields"]][:3] == ["Basic Info", "Basic Info", "Extrusion List"]


def test_invalid_grid_config_rejected(client):
    payload = {
        "templateName": "Broken",
        "templateType": "grid",
        "fieldsConfig": {"gridConfig": {"colHeaders": ["A", "B"], "columns": [{"dataKey": "a"}]}},
    }

    response = client.post("/api/order-templates", json=payload)

    assert response.status_code == 400
    assert response.json()["error"] == "SchemaError"


def test_update_and_versions(client, general_template_payload):
    template_id = client.post("/api/order-templates", json=general_template_payload).json()["id"]

    response = client.put(f"/api/order-templates/{template_id}", json={"templateName": "Renamed"})
    assert response.status_code == 200
    assert response.json()["templateName"] == "Renamed"

    versions = client.get(f"/api/order-templates/{template_id}/versions").json()["versions"]
    assert [v["versionNumber"] for v in versions] == ["1.0", "1.1"]
    assert versions[1]["changes"] == ["templateName"]


def test_delete_template(client, general_template_payload):
    template_id = client.post("/api/order-templates", json=general_template_payload).json()["id"]

    assert client.delete(f"/api/order-templates/{template_id}").status_code == 204
    response = client.get(f"/api/order-templates/{template_id}")
    assert response.status_code == 404
    assert response.json()["error"] == "NotFoundError"


def test_request_validation_errors(client):
    response = client.post("/api/order-templates", json={"templateType": "grid"})

    assert response.status_code == 422
    fields = [d["field"] for d in response.json()["details"]]
    assert "body.templateName" in fields
