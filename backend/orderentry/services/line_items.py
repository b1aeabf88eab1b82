"""
Line-Item Normalization Pipeline

Converts an entry surface's working data into the `OrderLineItem` list that
order submission consumes.

Grid surfaces:
- every row except the total row
- rows whose name cell is empty or whitespace are dropped
- quantity / unit price coerced to numbers (anything non-numeric is 0)
- totalAmount recomputed as quantity * unitPrice; the grid's own amount
  cell is never read
- specification / unit / notes carried over as strings

General surfaces:
- the field map becomes the order's custom-fields bag
- items come from explicit item rows; each needs a name, a non-zero
  quantity and a unit price above zero

An empty result is not an order. `require_line_items` turns it into a
SubmissionValidationError before anything is sent.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from orderentry.core.exceptions import SubmissionValidationError
from orderentry.models.entry_schemas import (
    FieldType,
    GridColumnRoles,
    ItemRow,
    NAME_KEY,
    NOTES_KEY,
    OrderLineItem,
    QUANTITY_KEY,
    SPECIFICATION_KEY,
    SurfaceKind,
    TemplateField,
    UNIT_KEY,
    UNIT_PRICE_KEY,
)
from orderentry.services.cell_strategies import is_blank, parse_date, parse_number
from orderentry.services.grid_engine import GridEngine

logger = logging.getLogger(__name__)

AT_LEAST_ONE_ITEM = "At least one item is required"


def coerce_number(value: Any) -> float:
    number = parse_number(value)
    return number if number is not None else 0.0


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value.strip() if isinstance(value, str) else str(value)


@dataclass
class GeneralWorkingState:
    """Working data of a general-form surface."""
    field_values: Dict[str, Any] = field(default_factory=dict)
    item_rows: List[ItemRow] = field(default_factory=list)


GridWorkingState = Union[GridEngine, Sequence[Mapping[str, Any]]]


def grid_rows_to_line_items(
    rows: Iterable[Mapping[str, Any]],
    roles: Optional[GridColumnRoles] = None,
) -> List[OrderLineItem]:
    """
    Normalize keyed grid rows (total row already excluded).

    `roles` names the column holding each item attribute; the default is the
    named keys (itemName, quantity, unitPrice, ...).
    """
    roles = roles or GridColumnRoles()

    def cell(row: Mapping[str, Any], key: Optional[str]) -> Any:
        return row.get(key) if key is not None else None

    items = []
    for row in rows:
        name = cell(row, roles.name)
        if is_blank(name):
            continue
        items.append(OrderLineItem(
            item_name=_as_text(name),
            specification=_as_text(cell(row, roles.specification)),
            unit=_as_text(cell(row, roles.unit)),
            quantity=coerce_number(cell(row, roles.quantity)),
            unit_price=coerce_number(cell(row, roles.unit_price)),
            notes=_as_text(cell(row, roles.notes)),
        ))
    return items


def item_rows_to_line_items(rows: Iterable[Union[ItemRow, Mapping[str, Any]]]) -> List[OrderLineItem]:
    """
    Validate explicit item rows from a general-form surface.

    Completely blank rows are skipped. Any other invalid row blocks the
    whole submission.

    Raises:
        SubmissionValidationError: listing every invalid row
    """
    items: List[OrderLineItem] = []
    errors: List[str] = []

    for position, raw in enumerate(rows, start=1):
        row = raw if isinstance(raw, ItemRow) else ItemRow.model_validate(_coerce_item_row(raw))
        quantity = row.quantity
        unit_price = row.unit_price

        if is_blank(row.item_name) and not quantity and not unit_price:
            continue

        row_errors = []
        if is_blank(row.item_name):
            row_errors.append(f"Item {position}: enter an item name")
        if not quantity:
            row_errors.append(f"Item {position}: quantity must not be zero")
        if unit_price <= 0:
            row_errors.append(f"Item {position}: unit price must be greater than zero")

        if row_errors:
            errors.extend(row_errors)
            continue

        items.append(OrderLineItem(
            item_name=row.item_name.strip(),
            specification=row.specification,
            unit=row.unit,
            quantity=quantity,
            unit_price=unit_price,
            notes=row.notes,
        ))

    if errors:
        raise SubmissionValidationError(errors)
    return items


def _coerce_item_row(raw: Mapping[str, Any]) -> Dict[str, Any]:
    data = dict(raw)
    for key in ("quantity", "unitPrice", "unit_price"):
        if key in data:
            data[key] = coerce_number(data[key])
    for key in ("itemName", "item_name", "specification", "unit", "notes"):
        if key in data:
            data[key] = _as_text(data[key])
    return data


def to_custom_fields(
    field_values: Mapping[str, Any],
    fields: Sequence[TemplateField],
) -> Dict[str, Any]:
    """
    Build the custom-fields bag attached to a general-form order.

    Values are keyed by fieldName; numbers are coerced, blank values dropped,
    and keys the template does not declare are ignored.
    """
    by_name = {f.field_name: f for f in fields}
    bag: Dict[str, Any] = {}
    for name, value in field_values.items():
        template_field = by_name.get(name)
        if template_field is None:
            logger.debug(f"Ignoring value for undeclared field '{name}'")
            continue
        if is_blank(value):
            continue
        if template_field.field_type == FieldType.NUMBER:
            bag[name] = coerce_number(value)
        else:
            bag[name] = value
    return bag


def missing_required_fields(field_values: Mapping[str, Any], fields: Sequence[TemplateField]) -> List[str]:
    return [
        f.label or f.field_name
        for f in fields
        if f.required and is_blank(field_values.get(f.field_name))
    ]


def invalid_field_values(field_values: Mapping[str, Any], fields: Sequence[TemplateField]) -> List[str]:
    """Messages for values that do not fit their field type."""
    messages = []
    for f in fields:
        value = field_values.get(f.field_name)
        if is_blank(value):
            continue
        label = f.label or f.field_name
        if f.field_type == FieldType.NUMBER and parse_number(value) is None:
            messages.append(f"{label}: enter a number")
        elif f.field_type == FieldType.DATE and parse_date(value) is None:
            messages.append(f"{label}: enter a date as YYYY-MM-DD")
        elif f.field_type == FieldType.SELECT and f.options and str(value) not in f.options:
            messages.append(f"{label}: '{value}' is not one of the options")
    return messages


def to_line_items(
    working_state: Union[GridWorkingState, GeneralWorkingState],
    surface: SurfaceKind,
) -> List[OrderLineItem]:
    """
    Normalize a surface's working data into line items.

    Args:
        working_state: GridEngine / keyed grid rows, or GeneralWorkingState
        surface: Which surface produced the data

    Returns:
        Line items, possibly empty
    """
    if surface == SurfaceKind.GRID:
        if isinstance(working_state, GridEngine):
            working_state.flush()
            return grid_rows_to_line_items(working_state.data_rows(), working_state.roles)
        if isinstance(working_state, GeneralWorkingState):
            raise TypeError("grid surface needs grid rows, got a general-form state")
        return grid_rows_to_line_items(list(working_state))

    if not isinstance(working_state, GeneralWorkingState):
        raise TypeError("general surface needs a GeneralWorkingState")
    return item_rows_to_line_items(working_state.item_rows)


def require_line_items(items: Sequence[OrderLineItem]) -> List[OrderLineItem]:
    """
    Refuse to hand an empty item list to submission.

    Raises:
        SubmissionValidationError: when there are no items
    """
    if not items:
        logger.warning("Submission blocked: no line items")
        raise SubmissionValidationError([AT_LEAST_ONE_ITEM])
    return list(items)


def order_total(items: Iterable[OrderLineItem]) -> float:
    return sum(item.total_amount for item in items)


def normalize_submitted_items(raw_items: Iterable[Mapping[str, Any]]) -> List[OrderLineItem]:
    """
    Re-normalize items received at the submission boundary.

    Same rules as grid rows: unnamed items are dropped, numbers coerced and
    totals recomputed regardless of what the client sent.
    """
    rows = []
    for raw in raw_items:
        if not isinstance(raw, Mapping):
            continue
        rows.append({
            NAME_KEY: raw.get("itemName", raw.get("item_name")),
            SPECIFICATION_KEY: raw.get("specification"),
            UNIT_KEY: raw.get("unit"),
            QUANTITY_KEY: raw.get("quantity"),
            UNIT_PRICE_KEY: raw.get("unitPrice", raw.get("unit_price")),
            NOTES_KEY: raw.get("notes"),
        })
    return grid_rows_to_line_items(rows)


def positivity_errors(items: Sequence[OrderLineItem]) -> List[str]:
    """Messages for items that cannot be ordered (zero or negative quantity / price)."""
    errors = []
    for position, item in enumerate(items, start=1):
        if item.quantity <= 0:
            errors.append(f"Item {position} ({item.item_name}): quantity must be greater than zero")
        if item.unit_price <= 0:
            errors.append(f"Item {position} ({item.item_name}): unit price must be greater than zero")
    return errors


def custom_fields_from(state: GeneralWorkingState, fields: Sequence[TemplateField]) -> Optional[Dict[str, Any]]:
    bag = to_custom_fields(state.field_values, fields)
    return bag or None
