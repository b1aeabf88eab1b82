"""
Schema Normalizer Service

Turns whatever a stored template carries in `fields_config` into the
canonical shapes from `orderentry.models.entry_schemas`.

Accepted inputs:
- `{"fields": [...]}` - already canonical field list
- `[...]` - bare field list
- `{"basic_fields": {...}, "schedule_fields": {...}, ...}` - legacy sectioned
  maps of `fieldName -> label`, flattened in section order
- `{"handsontableConfig": {...}}` / `{"gridConfig": {...}}` / `{"columns": [...]}`
  - grid configs
- any of the above serialized as a JSON string

Malformed or unrecognized payloads never raise: they degrade to an empty
field list or the default grid and are logged as warnings, so a broken
template still lets people enter orders.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from orderentry.core.config import settings
from orderentry.models.entry_schemas import (
    ColumnType,
    DEFAULT_AMOUNT_FORMULA,
    FieldType,
    GridColumn,
    GridConfig,
    GridPosition,
    SurfaceKind,
    TemplateField,
)

logger = logging.getLogger(__name__)


# Legacy section keys in traversal order, with their display names
LEGACY_SECTIONS: List[Tuple[str, str]] = [
    ("basic_fields", "Basic Info"),
    ("item_fields", "Item Info"),
    ("extrusion_list", "Extrusion List"),
    ("schedule_fields", "Schedule"),
    ("specification_fields", "Specifications"),
    ("color_breakdown", "Color Breakdown"),
    ("material_fields", "Materials"),
    ("panel_breakdown", "Panel Breakdown"),
    ("delivery_schedule", "Delivery Schedule"),
    ("insulation_details", "Insulation Details"),
]

NUMBER_HINTS = ("amount", "price", "quantity", "count", "weight", "kg", "area")

# Legacy layouts put three fields per row
LEGACY_FIELDS_PER_ROW = 3


def infer_field_type(field_name: str) -> FieldType:
    """Guess a field type from its key, the way legacy templates were rendered."""
    key = field_name.lower()
    if "date" in key:
        return FieldType.DATE
    if any(hint in key for hint in NUMBER_HINTS):
        return FieldType.NUMBER
    return FieldType.TEXT


def default_grid_config(rows_count: Optional[int] = None) -> GridConfig:
    """Standard item sheet used when a grid template has nothing usable."""
    columns = [
        GridColumn(data_key="no", title="No.", type=ColumnType.TEXT, width=60, read_only=True),
        GridColumn(data_key="itemName", title="Item", type=ColumnType.TEXT, width=150),
        GridColumn(data_key="specification", title="Specification", type=ColumnType.TEXT, width=120),
        GridColumn(data_key="unit", title="Unit", type=ColumnType.TEXT, width=60),
        GridColumn(data_key="quantity", title="Quantity", type=ColumnType.NUMERIC, width=80),
        GridColumn(data_key="unitPrice", title="Unit Price", type=ColumnType.NUMERIC, width=100),
        GridColumn(
            data_key="amount",
            title="Amount",
            type=ColumnType.NUMERIC,
            width=120,
            read_only=True,
            formula=DEFAULT_AMOUNT_FORMULA,
        ),
        GridColumn(data_key="notes", title="Notes", type=ColumnType.TEXT, width=100),
    ]
    return GridConfig(
        col_headers=[c.title for c in columns],
        columns=columns,
        rows_count=settings.GRID_DEFAULT_ROWS if rows_count is None else rows_count,
    )


class SchemaNormalizer:
    """Normalizes raw template payloads into canonical field lists or grid configs."""

    def normalize(
        self,
        raw: Any,
        template_type: Union[SurfaceKind, str]
    ) -> Union[List[TemplateField], GridConfig]:
        """
        Normalize a raw template payload.

        Args:
            raw: Stored `fields_config` (dict, list or JSON string)
            template_type: Surface kind, or a stored type code

        Returns:
            List of TemplateField for general templates, GridConfig for grid templates
        """
        kind = template_type if isinstance(template_type, SurfaceKind) else SurfaceKind.from_type_code(template_type)
        if kind is None:
            logger.warning(f"Unknown template type '{template_type}', treating as general form")
            kind = SurfaceKind.GENERAL

        payload = self._parse(raw)

        if kind == SurfaceKind.GRID:
            return self.normalize_grid(payload)
        return self.normalize_fields(payload)

    def _parse(self, raw: Any) -> Any:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8", errors="replace")
        if isinstance(raw, str):
            try:
                return json.loads(raw)
            except ValueError as e:
                logger.warning(f"Template config is not valid JSON, using empty schema: {e}")
                return None
        return raw

    # ------------------------------------------------------------------
    # General form fields
    # ------------------------------------------------------------------

    def normalize_fields(self, payload: Any) -> List[TemplateField]:
        if isinstance(payload, list):
            return self._coerce_fields(payload)

        if isinstance(payload, dict):
            if isinstance(payload.get("fields"), list):
                return self._coerce_fields(payload["fields"])
            if any(key in payload for key, _ in LEGACY_SECTIONS):
                return self._flatten_legacy(payload)

        logger.warning(
            f"Unrecognized template field config ({type(payload).__name__}), using empty field list"
        )
        return []

    def _coerce_fields(self, items: List[Any], section_name: Optional[str] = None) -> List[TemplateField]:
        fields: List[TemplateField] = []
        for index, item in enumerate(items):
            field = self._coerce_field(item, index, section_name)
            if field is not None:
                fields.append(field)
        return self._dedupe(fields)

    def _coerce_field(self, item: Any, index: int, section_name: Optional[str]) -> Optional[TemplateField]:
        if not isinstance(item, dict):
            logger.warning(f"Skipping template field #{index}: expected an object, got {type(item).__name__}")
            return None

        data = dict(item)
        name = data.get("fieldName") or data.get("field_name") or data.get("name")
        if name is not None:
            data["fieldName"] = name
        data.setdefault("id", f"field_{index}" if not name else str(name))
        data["id"] = str(data["id"])
        data.setdefault("sortOrder", index)
        if section_name and not data.get("sectionName"):
            data["sectionName"] = section_name

        field_type = data.get("fieldType")
        if field_type is not None and field_type not in FieldType._value2member_map_:
            logger.warning(f"Field '{name}' has unknown type '{field_type}', using text")
            data["fieldType"] = FieldType.TEXT.value

        try:
            return TemplateField.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Skipping invalid template field #{index} ({name!r}): {e.error_count()} error(s)")
            return None

    def _flatten_legacy(self, payload: Dict[str, Any]) -> List[TemplateField]:
        fields: List[TemplateField] = []
        sort_order = 0

        for section_key, section_name in LEGACY_SECTIONS:
            section = payload.get(section_key)
            if not section:
                continue

            if isinstance(section, list):
                # Some legacy writers stored field objects instead of key/label maps
                for field in self._coerce_fields(section, section_name=section_name):
                    fields.append(field.model_copy(update={"sort_order": sort_order}))
                    sort_order += 1
                continue

            if not isinstance(section, dict):
                logger.warning(f"Legacy section '{section_key}' is not a map, skipping")
                continue

            for key, label in section.items():
                fields.append(TemplateField(
                    id=f"{section_key}_{key}",
                    field_name=key,
                    label=str(label),
                    field_type=infer_field_type(key),
                    placeholder="",
                    required=True,
                    options=[],
                    section_name=section_name,
                    sort_order=sort_order,
                    grid_position=GridPosition(
                        row=sort_order // LEGACY_FIELDS_PER_ROW,
                        col=sort_order % LEGACY_FIELDS_PER_ROW,
                        span=1
                    ),
                ))
                sort_order += 1

        logger.debug(f"Flattened legacy template into {len(fields)} fields")
        return self._dedupe(fields)

    def _dedupe(self, fields: List[TemplateField]) -> List[TemplateField]:
        seen = set()
        unique = []
        for field in fields:
            if field.field_name in seen:
                logger.warning(f"Duplicate fieldName '{field.field_name}' in template, keeping the first")
                continue
            seen.add(field.field_name)
            unique.append(field)
        return unique

    # ------------------------------------------------------------------
    # Grid configs
    # ------------------------------------------------------------------

    def normalize_grid(self, payload: Any) -> GridConfig:
        candidate = None
        if isinstance(payload, dict):
            for key in ("handsontableConfig", "gridConfig"):
                if isinstance(payload.get(key), dict):
                    candidate = payload[key]
                    break
            else:
                if "columns" in payload:
                    candidate = payload

        if candidate is None:
            logger.warning("Grid template has no usable config, using default item sheet")
            return default_grid_config()

        try:
            return GridConfig.model_validate(self._repair_grid(candidate))
        except ValidationError as e:
            logger.warning(f"Invalid grid config, using default item sheet: {e.error_count()} error(s)")
            return default_grid_config()

    def _repair_grid(self, candidate: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(candidate)
        columns = data.get("columns")
        if not isinstance(columns, list):
            return data

        repaired = []
        for index, column in enumerate(columns):
            if isinstance(column, dict):
                column = dict(column)
                column_type = column.get("type")
                if column_type is not None and column_type not in ColumnType._value2member_map_:
                    logger.warning(f"Grid column #{index} has unknown type '{column_type}', using text")
                    column["type"] = ColumnType.TEXT.value
                column.setdefault("title", str(column.get("dataKey", column.get("data", f"col_{index}"))))
            repaired.append(column)
        data["columns"] = repaired

        headers = data.get("colHeaders")
        if not isinstance(headers, list) or len(headers) != len(repaired):
            if headers is not None:
                logger.warning("Grid colHeaders out of step with columns, rebuilding from column titles")
            data["colHeaders"] = [
                c.get("title", "") if isinstance(c, dict) else "" for c in repaired
            ]
        return data
