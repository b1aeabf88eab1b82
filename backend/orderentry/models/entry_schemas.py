"""
Canonical shapes for templates, grid configs and order line items.

These pydantic models are what every other layer speaks. JSON uses camelCase
keys (fieldName, colHeaders, unitPrice, ...) to stay compatible with what the
authoring surface and order screens already send; Python code uses the
snake_case attribute names.

Usage:
    from orderentry.models.entry_schemas import GridConfig, OrderLineItem

    config = GridConfig.model_validate(payload)
    item = OrderLineItem(item_name="Bolt", quantity=5, unit_price=1000)
    assert item.total_amount == 5000
"""

from datetime import date
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


# Well-known column keys. Grid columns are addressed by these internally;
# positional indexes only matter at the rendering boundary.
ROW_NUMBER_KEYS = ("no", "rowNumber")
NAME_KEY = "itemName"
SPECIFICATION_KEY = "specification"
UNIT_KEY = "unit"
QUANTITY_KEY = "quantity"
UNIT_PRICE_KEY = "unitPrice"
NOTES_KEY = "notes"
AMOUNT_KEYS = ("amount", "totalAmount")
DEFAULT_AMOUNT_FORMULA = f"{QUANTITY_KEY} * {UNIT_PRICE_KEY}"

# Older grids address cells by row-array position (`{"data": 0}` .. `{"data": 7}`)
# in this fixed order.
COLUMN_ROLE_LOOKUP = {
    "number": (ROW_NUMBER_KEYS, 0),
    "name": ((NAME_KEY,), 1),
    "specification": ((SPECIFICATION_KEY,), 2),
    "unit": ((UNIT_KEY,), 3),
    "quantity": ((QUANTITY_KEY,), 4),
    "unit_price": ((UNIT_PRICE_KEY,), 5),
    "amount": (AMOUNT_KEYS, 6),
    "notes": ((NOTES_KEY,), 7),
}

DEFAULT_SECTION_NAME = "Basic Info"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FieldType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    SELECT = "select"
    DATE = "date"
    TEXTAREA = "textarea"


class ColumnType(str, Enum):
    TEXT = "text"
    NUMERIC = "numeric"
    DROPDOWN = "dropdown"
    DATE = "date"
    CHECKBOX = "checkbox"
    IMAGE = "image"


class SurfaceKind(str, Enum):
    GENERAL = "general"
    GRID = "grid"

    @classmethod
    def from_type_code(cls, type_code: Optional[str]) -> Optional["SurfaceKind"]:
        """Map a stored template type (including legacy codes) to a surface, or None if unknown."""
        code = (type_code or "").strip().lower()
        if code in GRID_TYPE_CODES:
            return cls.GRID
        if code in GENERAL_TYPE_CODES:
            return cls.GENERAL
        return None


# Stored template types. The extra codes come from templates authored before
# the general/grid split.
GENERAL_TYPE_CODES = ("general", "material_extrusion", "panel_manufacturing")
GRID_TYPE_CODES = ("grid", "handsontable", "excel_like")


class GridPosition(CamelModel):
    row: int = 0
    col: int = 0
    span: int = 1


class TemplateField(CamelModel):
    """One input of a general-form template."""
    id: str
    field_name: str = Field(min_length=1)
    label: str = ""
    field_type: FieldType = FieldType.TEXT
    placeholder: Optional[str] = None
    required: bool = False
    options: Optional[List[str]] = None
    section_name: str = DEFAULT_SECTION_NAME
    sort_order: int = 0
    grid_position: Optional[GridPosition] = None
    validation: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("field_name")
    @classmethod
    def _strip_field_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("fieldName must not be blank")
        return value


class GridColumnRoles(BaseModel):
    """dataKey of each column the engine and the line-item pipeline read, or None."""
    number: Optional[str] = ROW_NUMBER_KEYS[0]
    name: Optional[str] = NAME_KEY
    specification: Optional[str] = SPECIFICATION_KEY
    unit: Optional[str] = UNIT_KEY
    quantity: Optional[str] = QUANTITY_KEY
    unit_price: Optional[str] = UNIT_PRICE_KEY
    amount: Optional[str] = AMOUNT_KEYS[0]
    notes: Optional[str] = NOTES_KEY


class GridColumn(CamelModel):
    """One column of a grid template."""
    data_key: str = Field(
        validation_alias=AliasChoices("dataKey", "data", "data_key"),
        serialization_alias="dataKey"
    )
    title: str = ""
    type: ColumnType = ColumnType.TEXT
    width: Optional[int] = None
    read_only: bool = False
    source: Optional[List[str]] = None  # Dropdown options
    formula: Optional[str] = None  # e.g. "quantity * unitPrice"
    validator: Optional[str] = None  # Named validator, see services.cell_strategies
    renderer: Optional[str] = None  # Named renderer, see services.cell_strategies

    @field_validator("data_key", mode="before")
    @classmethod
    def _stringify_key(cls, value: Any) -> str:
        # Old positional configs used integer row-array indexes
        return str(value)

    @property
    def is_numeric(self) -> bool:
        return self.type == ColumnType.NUMERIC


class GridConfig(CamelModel):
    """
    Column set of a grid template.

    `col_headers` is kept parallel to `columns`; use the `with_column_*`
    helpers to change either so both lists move together.
    """
    col_headers: List[str] = Field(default_factory=list)
    columns: List[GridColumn] = Field(default_factory=list)
    rows_count: int = Field(default=10, ge=0)
    formulas: Dict[str, str] = Field(default_factory=dict)  # {column index: formula}
    validation_rules: Dict[str, Any] = Field(default_factory=dict)
    custom_styles: Dict[str, Any] = Field(default_factory=dict)
    settings: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("formulas", mode="before")
    @classmethod
    def _stringify_formula_keys(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): v for k, v in value.items()}
        return value

    @model_validator(mode="after")
    def _check_invariants(self):
        if len(self.col_headers) != len(self.columns):
            raise ValueError(
                f"colHeaders ({len(self.col_headers)}) and columns ({len(self.columns)}) must be the same length"
            )

        for key in self.formulas:
            if not key.isdigit() or int(key) >= len(self.columns):
                raise ValueError(f"formula key '{key}' does not name a column index")

        computed = self.computed_column_indexes()
        if len(computed) > 1:
            raise ValueError("a grid may have only one computed amount column")
        for index in computed:
            if not self.columns[index].read_only:
                raise ValueError(f"computed column '{self.columns[index].data_key}' must be readOnly")
        return self

    def computed_column_indexes(self) -> List[int]:
        indexes = {i for i, col in enumerate(self.columns) if col.formula}
        indexes.update(int(key) for key in self.formulas)
        return sorted(indexes)

    def index_of(self, data_key: str) -> Optional[int]:
        for i, col in enumerate(self.columns):
            if col.data_key == data_key:
                return i
        return None

    @property
    def is_positional(self) -> bool:
        """True when every column addresses a row-array index instead of a named field."""
        return bool(self.columns) and all(c.data_key.isdigit() for c in self.columns)

    def column_roles(self) -> GridColumnRoles:
        """
        Resolve which column plays which part (number, name, quantity, ...).

        Named keys win. A positional grid falls back to the fixed order of
        the original item sheet: 0 number, 1 name, 2 specification, 3 unit,
        4 quantity, 5 unit price, 6 amount, 7 notes.
        """
        positional = self.is_positional
        roles = {}
        for role, (names, position) in COLUMN_ROLE_LOOKUP.items():
            key = next((name for name in names if self.index_of(name) is not None), None)
            if key is None and positional and self.index_of(str(position)) is not None:
                key = str(position)
            roles[role] = key
        return GridColumnRoles(**roles)

    def amount_column_index(self) -> Optional[int]:
        """
        Index of the computed amount column.

        Explicit formulas win. Otherwise a read-only amount column is treated
        as computed, matching how older templates were authored.
        """
        computed = self.computed_column_indexes()
        if computed:
            return computed[0]
        amount_key = self.column_roles().amount
        if amount_key is not None:
            index = self.index_of(amount_key)
            if self.columns[index].read_only:
                return index
        return None

    def amount_formula(self) -> Optional[str]:
        index = self.amount_column_index()
        if index is None:
            return None
        formula = self.columns[index].formula or self.formulas.get(str(index))
        if formula:
            return formula
        roles = self.column_roles()
        if roles.quantity is not None and roles.unit_price is not None:
            return f"{roles.quantity} * {roles.unit_price}"
        return None

    def row_number_column_index(self) -> Optional[int]:
        number_key = self.column_roles().number
        return self.index_of(number_key) if number_key is not None else None

    def with_column_added(self, column: GridColumn) -> "GridConfig":
        return self.model_copy(update={
            "columns": [*self.columns, column],
            "col_headers": [*self.col_headers, column.title],
        })

    def with_column_removed(self, index: int) -> "GridConfig":
        if not 0 <= index < len(self.columns):
            raise IndexError(f"column index {index} out of range")
        formulas = {}
        for key, formula in self.formulas.items():
            position = int(key)
            if position == index:
                continue
            formulas[str(position - 1 if position > index else position)] = formula
        return self.model_copy(update={
            "columns": [c for i, c in enumerate(self.columns) if i != index],
            "col_headers": [h for i, h in enumerate(self.col_headers) if i != index],
            "formulas": formulas,
        })

    def with_column_updated(self, index: int, **updates: Any) -> "GridConfig":
        if not 0 <= index < len(self.columns):
            raise IndexError(f"column index {index} out of range")
        column = self.columns[index].model_copy(update=updates)
        headers = list(self.col_headers)
        if "title" in updates:
            headers[index] = column.title
        columns = list(self.columns)
        columns[index] = column
        return self.model_copy(update={"columns": columns, "col_headers": headers})


class GeneralTemplate(CamelModel):
    kind: Literal["general"] = "general"
    id: Optional[int] = None
    name: str = ""
    is_active: bool = True
    fields: List[TemplateField] = Field(default_factory=list)

    def fields_by_section(self) -> Dict[str, List[TemplateField]]:
        """Group fields by section, in first-seen section order, each sorted by sortOrder."""
        sections: Dict[str, List[TemplateField]] = {}
        for field in self.fields:
            sections.setdefault(field.section_name or DEFAULT_SECTION_NAME, []).append(field)
        for section_fields in sections.values():
            section_fields.sort(key=lambda f: f.sort_order)
        return sections


class GridTemplate(CamelModel):
    kind: Literal["grid"] = "grid"
    id: Optional[int] = None
    name: str = ""
    is_active: bool = True
    grid_config: GridConfig


TemplateDefinition = Annotated[Union[GeneralTemplate, GridTemplate], Field(discriminator="kind")]


class OrderLineItem(CamelModel):
    """
    One priced line of an order.

    `total_amount` is always recomputed as quantity * unit_price; whatever a
    client sends for it is ignored.
    """
    item_name: str = Field(min_length=1)
    specification: str = ""
    unit: str = ""
    quantity: float = 0
    unit_price: float = 0
    total_amount: float = 0
    notes: str = ""

    @model_validator(mode="after")
    def _recompute_total(self):
        self.total_amount = self.quantity * self.unit_price
        return self


class ItemRow(CamelModel):
    """Explicit item row entered next to a general-form template."""
    item_id: Optional[int] = None
    item_name: str = ""
    specification: str = ""
    unit: str = ""
    quantity: float = 0
    unit_price: float = 0
    notes: str = ""


class OrderHeader(CamelModel):
    """
    Order header fields.

    Everything is optional here so that missing values surface as
    submission validation messages instead of request parsing errors.
    """
    project_id: Optional[int] = None
    vendor_id: Optional[int] = None
    order_date: Optional[date] = None
    delivery_date: Optional[date] = None
    notes: Optional[str] = None
    template_id: Optional[int] = None
    custom_fields: Optional[Dict[str, Any]] = None

    @field_validator("order_date", "delivery_date", "project_id", "vendor_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class OrderSubmission(CamelModel):
    """Body of POST /api/orders and PUT /api/orders/{id}."""
    header: OrderHeader = Field(default_factory=OrderHeader)
    items: List[Dict[str, Any]] = Field(default_factory=list)
