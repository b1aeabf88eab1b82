"""
Tests for reference option merging.
"""

from orderentry.models.entry_schemas import ColumnType, GeneralTemplate, GridTemplate, TemplateField
from orderentry.services.reference_data import (
    ReferenceData,
    StaticReferenceDataProvider,
    apply_reference_data,
    get_reference_provider,
    merge_options,
)
from orderentry.services.schema_normalizer import default_grid_config


def test_merge_preserves_order_without_duplicates():
    assert merge_options(["B", "A"], ["A", "C", "B", "D"]) == ["B", "A", "C", "D"]
    assert merge_options(None, ["X"]) == ["X"]


def test_options_for_keys():
    reference = ReferenceData(vendors=["Acme"], projects=["Tower"], items=["Bolt"])

    assert reference.options_for("vendorId") == ["Acme"]
    assert reference.options_for("project_name") == ["Tower"]
    assert reference.options_for("itemName") == ["Bolt"]
    assert reference.options_for("unit") is None


def test_grid_dropdowns_get_reference_options():
    config = default_grid_config(rows_count=1)
    config = config.with_column_updated(config.index_of("itemName"), type=ColumnType.DROPDOWN)
    template = GridTemplate(name="Sheet", grid_config=config)

    merged = apply_reference_data(template, ReferenceData(items=["Bolt", "Nut"]))

    column = merged.grid_config.columns[config.index_of("itemName")]
    assert column.source == ["Bolt", "Nut"]
    # The original definition is untouched
    assert template.grid_config.columns[config.index_of("itemName")].source is None
    assert merged.grid_config.col_headers == config.col_headers


def test_text_columns_are_left_alone():
    template = GridTemplate(name="Sheet", grid_config=default_grid_config(rows_count=1))

    merged = apply_reference_data(template, ReferenceData(items=["Bolt"]))

    assert all(c.source is None for c in merged.grid_config.columns)


def test_general_select_fields():
    template = GeneralTemplate(fields=[
        TemplateField(id="1", field_name="vendor", field_type="select"),
    ])

    merged = apply_reference_data(template, ReferenceData(vendors=["Acme"]))

    assert merged.fields[0].options == ["Acme"]


def test_static_provider():
    data = ReferenceData(vendors=["Acme"])

    assert StaticReferenceDataProvider(data).get_reference_data() is data
    assert isinstance(get_reference_provider().get_reference_data(), ReferenceData)
