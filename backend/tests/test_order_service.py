"""
Tests for the order submission boundary and template persistence services.
"""

from datetime import date

import pytest
from orderentry.core.exceptions import NotFoundError, SchemaError, SubmissionValidationError, ValidationError
from orderentry.models.entry_schemas import OrderHeader, OrderLineItem
from orderentry.models.order import PurchaseOrder
from orderentry.models.template import OrderTemplate
from orderentry.services.order_service import OrderService, merge_header
from orderentry.services.template_service import TemplateService


@pytest.fixture
def header():
    return OrderHeader(project_id=1, vendor_id=2, order_date=date(2024, 3, 15))


@pytest.fixture
def items():
    return [
        {"itemName": "Bolt", "quantity": 5, "unitPrice": 1000, "totalAmount": 1},
        {"itemName": "Nut", "quantity": "2", "unitPrice": "250"},
    ]


class TestOrderService:
    def test_create_order(self, db_session, header, items):
        order = OrderService(db_session).create_order(header, items)

        assert order.order_number == "PO-20240315-001"
        assert order.total_amount == 5500
        assert [i.total_amount for i in order.items] == [5000, 500]

    def test_order_numbers_increment_per_day(self, db_session, header, items):
        service = OrderService(db_session)

        service.create_order(header, items)
        second = service.create_order(header, items)
        other_day = service.create_order(header.model_copy(update={"order_date": date(2024, 3, 16)}), items)

        assert second.order_number == "PO-20240315-002"
        assert other_day.order_number == "PO-20240316-001"

    def test_accepts_line_item_models(self, db_session, header):
        order = OrderService(db_session).create_order(
            header, [OrderLineItem(item_name="Bolt", quantity=3, unit_price=2)]
        )
        assert order.total_amount == 6

    def test_missing_header_and_items_reported_together(self, db_session):
        with pytest.raises(SubmissionValidationError) as exc_info:
            OrderService(db_session).create_order(OrderHeader(), [{"itemName": "  "}])

        assert exc_info.value.messages == [
            "Select a project",
            "Select a vendor",
            "Select an order date",
            "At least one item is required",
        ]
        assert db_session.query(PurchaseOrder).count() == 0

    def test_zero_quantity_rejected(self, db_session, header):
        with pytest.raises(SubmissionValidationError) as exc_info:
            OrderService(db_session).create_order(header, [{"itemName": "Bolt", "quantity": 0, "unitPrice": 3}])

        assert exc_info.value.messages == ["Item 1 (Bolt): quantity must be greater than zero"]

    def test_delivery_before_order_date(self, db_session, header, items):
        early = header.model_copy(update={"delivery_date": date(2024, 3, 1)})

        with pytest.raises(SubmissionValidationError) as exc_info:
            OrderService(db_session).create_order(early, items)

        assert "Delivery date cannot be before the order date" in exc_info.value.messages

    def test_required_custom_fields_of_general_template(self, db_session, header, items, general_template_payload):
        template = TemplateService(db_session).create_template(
            general_template_payload["templateName"],
            general_template_payload["templateType"],
            general_template_payload["fieldsConfig"],
        )
        with_template = header.model_copy(update={"template_id": template.id})

        with pytest.raises(SubmissionValidationError) as exc_info:
            OrderService(db_session).create_order(with_template, items)
        assert exc_info.value.messages == ["Enter Site Manager"]

        complete = with_template.model_copy(update={"custom_fields": {"siteManager": "Kim"}})
        order = OrderService(db_session).create_order(complete, items)
        assert order.custom_fields == {"siteManager": "Kim"}

    def test_update_order_replaces_items(self, db_session, header, items):
        service = OrderService(db_session)
        order = service.create_order(header, items)

        updated = service.update_order(order.id, header, [{"itemName": "Washer", "quantity": 10, "unitPrice": 1}])

        assert updated.order_number == order.order_number
        assert [i.item_name for i in updated.items] == ["Washer"]
        assert updated.total_amount == 10

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFoundError):
            OrderService(db_session).get_order(404)

    def test_merge_header(self, header):
        merged = merge_header(header, {"siteManager": "Kim"}, 9)

        assert merged.custom_fields == {"siteManager": "Kim"}
        assert merged.template_id == 9
        assert merge_header(header, None, None) is header


class TestTemplateService:
    def test_create_grid_template_stores_canonical_shape(self, db_session, grid_template_payload):
        template = TemplateService(db_session).create_template(
            grid_template_payload["templateName"],
            "handsontable",
            {"handsontableConfig": grid_template_payload["fieldsConfig"]["gridConfig"]},
        )

        assert list(template.fields_config) == ["gridConfig"]
        assert template.fields_config["gridConfig"]["columns"][0]["dataKey"] == "no"
        assert template.template_type == "handsontable"
        assert [v.version_number for v in template.versions] == ["1.0"]

    def test_legacy_sections_are_converted_on_write(self, db_session, legacy_sections):
        template = TemplateService(db_session).create_template("Extrusion", "material_extrusion", legacy_sections)

        fields = template.fields_config["fields"]
        assert [f["fieldName"] for f in fields][:2] == ["project_name", "order_date"]
        assert fields[0]["sectionName"] == "Basic Info"

    @pytest.mark.parametrize("template_type,config", [
        ("grid", {"gridConfig": {"colHeaders": ["A"], "columns": []}}),
        ("grid", {"gridConfig": {"columns": []}}),
        ("grid", {"fields": []}),
        ("general", {"fields": [{"fieldName": ""}]}),
        ("general", {"fields": [{"fieldName": "a"}, {"fieldName": "a"}]}),
        ("general", "{not json"),
        ("spreadsheet", {"fields": []}),
    ])
    def test_invalid_configs_rejected(self, db_session, template_type, config):
        with pytest.raises(SchemaError):
            TemplateService(db_session).create_template("Bad", template_type, config)

    def test_update_records_version_with_changes(self, db_session, general_template_payload):
        service = TemplateService(db_session)
        template = service.create_template(
            general_template_payload["templateName"], "general", general_template_payload["fieldsConfig"]
        )

        service.update_template(template.id, {"templateName": "Site Request v2"})
        service.update_template(template.id, {"fieldsConfig": [{"fieldName": "only"}]})

        versions = service.list_versions(template.id)
        assert [v.version_number for v in versions] == ["1.0", "1.1", "1.2"]
        assert versions[1].changes == ["templateName"]
        assert versions[2].changes == ["fieldsConfig"]
        assert versions[2].template_config["templateName"] == "Site Request v2"

    def test_switching_surface_needs_new_config(self, db_session, general_template_payload):
        service = TemplateService(db_session)
        template = service.create_template("Site", "general", general_template_payload["fieldsConfig"])

        with pytest.raises(SchemaError):
            service.update_template(template.id, {"templateType": "grid"})

    def test_toggle_status(self, db_session, general_template_payload):
        service = TemplateService(db_session)
        template = service.create_template("Site", "general", general_template_payload["fieldsConfig"])

        service.toggle_status(template.id, False)

        assert service.list_templates(active_only=True) == []
        with pytest.raises(ValidationError):
            service.toggle_status(template.id, "false")

    def test_seed_is_idempotent(self, db_session):
        service = TemplateService(db_session)

        first = service.seed_builtin_templates()
        second = service.seed_builtin_templates()

        assert len(first) == 3
        assert [t.id for t in first] == [t.id for t in second]
        assert db_session.query(OrderTemplate).count() == 3

    def test_seeded_legacy_template_resolves(self, db_session):
        service = TemplateService(db_session)
        seeded = {t.template_name: t for t in service.seed_builtin_templates()}

        definition = service.get_definition(seeded["Aluminum Extrusion Order"].id)

        assert definition.kind == "general"
        assert len(definition.fields) == 9

    def test_missing_template(self, db_session):
        with pytest.raises(NotFoundError):
            TemplateService(db_session).get_template(999)
