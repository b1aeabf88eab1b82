"""
Reference data merged into select fields and dropdown columns.

Vendor, project and item master lists are owned by other parts of the
system. The engine only needs their display names, fetched through a
ReferenceDataProvider and merged into option lists when a template is
mounted.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from orderentry.models.entry_schemas import (
    ColumnType,
    FieldType,
    GeneralTemplate,
    GridTemplate,
    NAME_KEY,
)

logger = logging.getLogger(__name__)


@dataclass
class ReferenceData:
    vendors: List[str] = field(default_factory=list)
    projects: List[str] = field(default_factory=list)
    items: List[str] = field(default_factory=list)

    def options_for(self, key: str) -> Optional[List[str]]:
        """Reference list a field or column key refers to, if any."""
        lowered = key.lower()
        if "vendor" in lowered:
            return self.vendors
        if "project" in lowered:
            return self.projects
        if key == NAME_KEY or lowered in ("item", "item_name", "itemname"):
            return self.items
        return None


class ReferenceDataProvider(Protocol):
    def get_reference_data(self) -> ReferenceData: ...


class StaticReferenceDataProvider:
    """Provider backed by fixed lists (configuration, seeds, tests)."""

    def __init__(self, data: Optional[ReferenceData] = None):
        self.data = data or ReferenceData()

    def get_reference_data(self) -> ReferenceData:
        return self.data


def merge_options(existing: Optional[List[str]], extra: List[str]) -> List[str]:
    """Existing options first, then reference values, without duplicates."""
    merged: List[str] = []
    for option in list(existing or []) + list(extra):
        if option not in merged:
            merged.append(option)
    return merged


def apply_reference_data(template, reference: ReferenceData):
    """Return a copy of the template with reference options merged in."""
    if isinstance(template, GridTemplate):
        config = template.grid_config
        name_key = config.column_roles().name
        for index, column in enumerate(config.columns):
            if column.type != ColumnType.DROPDOWN:
                continue
            key = NAME_KEY if column.data_key == name_key else column.data_key
            options = reference.options_for(key)
            if options:
                config = config.with_column_updated(index, source=merge_options(column.source, options))
        return template.model_copy(update={"grid_config": config})

    if isinstance(template, GeneralTemplate):
        fields = []
        for template_field in template.fields:
            options = reference.options_for(template_field.field_name)
            if template_field.field_type == FieldType.SELECT and options:
                template_field = template_field.model_copy(
                    update={"options": merge_options(template_field.options, options)}
                )
            fields.append(template_field)
        return template.model_copy(update={"fields": fields})

    logger.warning(f"Cannot merge reference data into {type(template).__name__}")
    return template


reference_provider: ReferenceDataProvider = StaticReferenceDataProvider()


def get_reference_provider() -> ReferenceDataProvider:
    """FastAPI dependency for the configured provider."""
    return reference_provider
