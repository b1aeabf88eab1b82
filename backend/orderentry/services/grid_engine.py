"""
Structured Grid Engine

Spreadsheet-style working state for grid templates:
- keyed row records (`{"itemName": ..., "quantity": ...}`), positional
  arrays only at the rendering boundary (`to_matrix`)
- computed amount cell per row (`quantity * unitPrice` or whatever product
  the template declares)
- a read-only total row, always last, whose amount cell is the sum of
  every other row, recomputed through a debounce so pastes cost one pass
- auto-numbered rows and numeric cell validation with revert-on-failure

Every cell edit goes Unedited -> Editing -> Committed | Reverted. A
reverted edit leaves the previous value in place and records a
ValidationEvent; it never raises.

Usage:
    engine = GridEngine(grid_config)
    engine.set_cell(0, "quantity", 5)
    engine.set_cell(0, "unitPrice", 1000)
    engine.flush()
    engine.get_cell(engine.total_row_index, "amount")  # 5000
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from orderentry.core.config import settings
from orderentry.core.exceptions import CellValidationError, ValidationError
from orderentry.models.entry_schemas import ColumnType, GridColumn, GridConfig
from orderentry.services.cell_strategies import (
    is_blank,
    parse_date,
    parse_number,
    resolve_validator,
)
from orderentry.services.debounce import Debouncer

logger = logging.getLogger(__name__)

TOTAL_LABEL = "TOTAL"

# Operands are column keys, or row-array indexes on positional grids
_PRODUCT_FORMULA = re.compile(r"^\s*=?\s*([A-Za-z_]\w*|\d+)\s*\*\s*([A-Za-z_]\w*|\d+)\s*$")

_TRUE_STRINGS = ("true", "1", "yes", "y", "x")
_FALSE_STRINGS = ("false", "0", "no", "n", "")


def parse_product_formula(formula: Optional[str]) -> Optional[Tuple[str, str]]:
    """Parse "a * b" into its two column keys. Anything else is unsupported."""
    if not formula:
        return None
    match = _PRODUCT_FORMULA.match(formula)
    if not match:
        return None
    return match.group(1), match.group(2)


def _tidy_number(number: float) -> Union[int, float]:
    return int(number) if float(number).is_integer() else number


class ChangeSource(str, Enum):
    USER = "user"
    LOAD = "loadData"
    CALCULATION = "calculation"
    TOTAL = "total_calculation"
    AUTO_NUMBER = "auto"


# Writes from these sources skip validation and never trigger recomputation
INTERNAL_SOURCES = frozenset({
    ChangeSource.LOAD,
    ChangeSource.CALCULATION,
    ChangeSource.TOTAL,
    ChangeSource.AUTO_NUMBER,
})


class CellEditState(str, Enum):
    UNEDITED = "unedited"
    EDITING = "editing"
    COMMITTED = "committed"
    REVERTED = "reverted"


@dataclass
class CellEdit:
    """Outcome of one attempted cell write."""
    row: int
    col: int
    data_key: str
    old_value: Any
    new_value: Any
    source: ChangeSource
    state: CellEditState = CellEditState.UNEDITED
    message: Optional[str] = None

    @property
    def committed(self) -> bool:
        return self.state == CellEditState.COMMITTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row": self.row,
            "col": self.col,
            "dataKey": self.data_key,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "source": self.source.value,
            "state": self.state.value,
            "message": self.message,
        }


@dataclass
class ValidationEvent:
    """Raised (as data) when a write is reverted."""
    row: int
    col: int
    data_key: str
    rejected_value: Any
    previous_value: Any
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row": self.row,
            "col": self.col,
            "dataKey": self.data_key,
            "rejectedValue": self.rejected_value,
            "previousValue": self.previous_value,
            "message": self.message,
        }


ChangeListener = Callable[[List[CellEdit]], None]
ValidationListener = Callable[[ValidationEvent], None]
CellRef = Union[int, str]
RowData = Union[Sequence[Any], Dict[str, Any]]


class GridEngine:
    """Working state of one grid entry surface."""

    def __init__(
        self,
        config: GridConfig,
        data: Optional[Sequence[RowData]] = None,
        debounce_seconds: Optional[float] = None,
        max_rows: Optional[int] = None,
    ):
        self.config = config
        self.roles = config.column_roles()
        self.columns: List[GridColumn] = list(config.columns)
        self._keys: List[str] = [c.data_key for c in self.columns]

        self.amount_index = config.amount_column_index()
        self.amount_key = self._keys[self.amount_index] if self.amount_index is not None else None
        self.formula_factors: Tuple[str, ...] = self._resolve_formula()

        self.number_index = config.row_number_column_index()
        self.number_key = self._keys[self.number_index] if self.number_index is not None else None
        self.name_key = self._resolve_name_key()

        self._validators = {col.data_key: resolve_validator(col.validator) for col in self.columns}

        if debounce_seconds is None:
            debounce_seconds = settings.GRID_TOTAL_DEBOUNCE_MS / 1000
        self._total_debouncer = Debouncer(debounce_seconds, self.recompute_total_row)

        self._change_listeners: List[ChangeListener] = []
        self._validation_listeners: List[ValidationListener] = []
        self._editing: Optional[Tuple[int, int]] = None
        self._batching = False
        self._batch_needs_total = False
        self.validation_events: List[ValidationEvent] = []
        self.destroyed = False

        self.rows: List[Dict[str, Any]] = self._build_rows(data)
        self.total_row_index = len(self.rows) - 1

        limit = max_rows if max_rows is not None else config.rows_count + settings.GRID_EXTRA_ROWS
        self.max_rows = max(limit, self.total_row_index)

        self._refresh_all()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _resolve_formula(self) -> Tuple[str, ...]:
        formula = self.config.amount_formula()
        if formula is None:
            return ()
        factors = parse_product_formula(formula)
        if factors is None or any(key not in self._keys for key in factors):
            logger.warning(f"Unsupported amount formula '{formula}', amount column will not be computed")
            return ()
        return factors

    def _resolve_name_key(self) -> Optional[str]:
        if self.roles.name is not None:
            return self.roles.name
        for col in self.columns:
            if col.type == ColumnType.TEXT and not col.read_only and col.data_key != self.number_key:
                return col.data_key
        return None

    def _blank_value(self, column: GridColumn) -> Any:
        if column.type == ColumnType.NUMERIC:
            return 0
        if column.type == ColumnType.CHECKBOX:
            return False
        return ""

    def _blank_row(self, index: int) -> Dict[str, Any]:
        row = {col.data_key: self._blank_value(col) for col in self.columns}
        if self.number_key:
            row[self.number_key] = index + 1
        return row

    def _total_row(self) -> Dict[str, Any]:
        row = {col.data_key: "" for col in self.columns}
        if self.number_key:
            row[self.number_key] = TOTAL_LABEL
        if self.amount_key:
            row[self.amount_key] = 0
        return row

    def _load_row(self, raw: RowData, index: int) -> Dict[str, Any]:
        row = self._blank_row(index)
        if isinstance(raw, dict):
            values = {key: raw[key] for key in self._keys if key in raw}
        else:
            values = {self._keys[i]: value for i, value in enumerate(raw) if i < len(self._keys)}

        for key, value in values.items():
            column = self.columns[self._keys.index(key)]
            ok, coerced, _ = self._coerce(column, value)
            if ok:
                row[key] = coerced
            else:
                logger.warning(f"Dropping invalid loaded value {value!r} in row {index}, column '{key}'")
        return row

    def _build_rows(self, data: Optional[Sequence[RowData]]) -> List[Dict[str, Any]]:
        if data is None:
            rows = [self._blank_row(i) for i in range(self.config.rows_count)]
        else:
            rows = []
            for raw in data:
                if self._looks_like_total_row(raw):
                    continue
                rows.append(self._load_row(raw, len(rows)))
        rows.append(self._total_row())
        return rows

    def _looks_like_total_row(self, raw: RowData) -> bool:
        if self.number_key is None:
            return False
        if isinstance(raw, dict):
            return raw.get(self.number_key) == TOTAL_LABEL
        index = self.number_index
        return index is not None and index < len(raw) and raw[index] == TOTAL_LABEL

    def _refresh_all(self) -> None:
        for index in range(self.total_row_index):
            if self.formula_factors:
                self._recompute_row_amount(index)
            self._number_row(index)
        self.recompute_total_row()

    # ------------------------------------------------------------------
    # Cell access
    # ------------------------------------------------------------------

    def _resolve_col(self, row: int, col: CellRef) -> int:
        if isinstance(col, str):
            if col in self._keys:
                return self._keys.index(col)
            if col.isdigit():
                col = int(col)
            else:
                raise CellValidationError(row, -1, f"unknown column '{col}'")
        if isinstance(col, bool) or not isinstance(col, int) or not 0 <= col < len(self._keys):
            raise CellValidationError(row, -1, f"column {col!r} out of range")
        return col

    def _check_row(self, row: int, col: int) -> None:
        if isinstance(row, bool) or not isinstance(row, int) or not 0 <= row < len(self.rows):
            raise CellValidationError(row, col, "row out of range")

    def get_cell(self, row: int, col: CellRef) -> Any:
        col_index = self._resolve_col(row, col)
        self._check_row(row, col_index)
        return self.rows[row][self._keys[col_index]]

    def cell_state(self, row: int, col: CellRef) -> CellEditState:
        col_index = self._resolve_col(row, col)
        if self._editing == (row, col_index):
            return CellEditState.EDITING
        return CellEditState.UNEDITED

    def _coerce(self, column: GridColumn, value: Any) -> Tuple[bool, Any, Optional[str]]:
        if column.type == ColumnType.NUMERIC:
            if is_blank(value):
                return True, 0, None
            number = parse_number(value)
            if number is None:
                return False, None, "Only numbers can be entered"
            return True, _tidy_number(number), None

        if column.type == ColumnType.CHECKBOX:
            if isinstance(value, bool):
                return True, value, None
            text = "" if value is None else str(value).strip().lower()
            if text in _TRUE_STRINGS:
                return True, True, None
            if text in _FALSE_STRINGS:
                return True, False, None
            return False, None, "Checkbox cells accept true or false"

        if column.type == ColumnType.DATE:
            if is_blank(value):
                return True, "", None
            parsed = parse_date(value)
            if parsed is None:
                return False, None, "Enter a date as YYYY-MM-DD"
            return True, parsed.isoformat(), None

        text = "" if value is None else str(value)
        if column.type == ColumnType.DROPDOWN and column.source and text and text not in column.source:
            return False, None, f"'{text}' is not one of the options"
        return True, text, None

    def set_cell(self, row: int, col: CellRef, value: Any, source: ChangeSource = ChangeSource.USER) -> CellEdit:
        """
        Write one cell.

        User writes are rejected on the total row and on read-only columns,
        and reverted when the value does not fit the column. Internal
        writes (calculated amounts, totals, row numbers) are applied as-is.
        """
        col_index = self._resolve_col(row, col)
        self._check_row(row, col_index)
        key = self._keys[col_index]
        column = self.columns[col_index]
        old_value = self.rows[row][key]

        edit = CellEdit(row, col_index, key, old_value, value, source, state=CellEditState.EDITING)

        if source in INTERNAL_SOURCES:
            self.rows[row][key] = value
            edit.state = CellEditState.COMMITTED
            self._notify([edit])
            return edit

        if self.destroyed:
            return self._revert(edit, "The entry surface has been closed")
        if row == self.total_row_index:
            return self._revert(edit, "The total row is read-only")
        if column.read_only:
            return self._revert(edit, f"Column '{column.title or key}' is read-only")

        self._editing = (row, col_index)
        try:
            ok, coerced, message = self._coerce(column, value)
            if not ok:
                return self._revert(edit, message)

            validator = self._validators.get(key)
            if validator is not None and not validator(coerced):
                return self._revert(edit, f"Value does not satisfy the '{column.validator}' rule")

            self.rows[row][key] = coerced
            edit.new_value = coerced
            edit.state = CellEditState.COMMITTED
        finally:
            self._editing = None

        self._notify([edit])
        self.on_cell_committed(row, col_index, old_value, edit.new_value)
        return edit

    def set_cells(self, changes: Iterable[Tuple[int, CellRef, Any]]) -> List[CellEdit]:
        """
        Apply a batch of user writes; the total row is recomputed once afterwards.

        Every cell reference is checked before anything is written, so an
        unknown column or row rejects the whole batch and leaves the grid as
        it was.

        Raises:
            CellValidationError: when any change names a cell that does not exist
        """
        resolved = []
        for row, col, value in changes:
            col_index = self._resolve_col(row, col)
            self._check_row(row, col_index)
            resolved.append((row, col_index, value))

        self._batching = True
        try:
            edits = [self.set_cell(row, col, value) for row, col, value in resolved]
        finally:
            self._batching = False

        if self._batch_needs_total:
            self._batch_needs_total = False
            self.schedule_total_recompute()
        return edits

    def _revert(self, edit: CellEdit, message: str) -> CellEdit:
        attempted = edit.new_value
        edit.state = CellEditState.REVERTED
        edit.new_value = edit.old_value
        edit.message = message

        event = ValidationEvent(
            row=edit.row,
            col=edit.col,
            data_key=edit.data_key,
            rejected_value=attempted,
            previous_value=edit.old_value,
            message=message,
        )
        self.validation_events.append(event)
        logger.info(f"Reverted cell ({edit.row}, {edit.data_key}): {message}")

        for listener in list(self._validation_listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Validation listener failed: {e}", exc_info=True)
        return edit

    # ------------------------------------------------------------------
    # Derived cells
    # ------------------------------------------------------------------

    def on_cell_committed(self, row: int, col: int, old_value: Any, new_value: Any) -> None:
        """React to a committed user edit: recompute the row amount and number the row."""
        if row == self.total_row_index:
            return
        key = self._keys[col]

        if key in self.formula_factors:
            self._recompute_row_amount(row)
            self.schedule_total_recompute()

        if key == self.name_key and is_blank(old_value) and not is_blank(new_value):
            self._number_row(row)

    def _recompute_row_amount(self, row: int) -> None:
        if not self.formula_factors or self.amount_key is None:
            return
        first, second = self.formula_factors
        a = parse_number(self.rows[row][first]) or 0
        b = parse_number(self.rows[row][second]) or 0
        self.set_cell(row, self.amount_key, _tidy_number(a * b), ChangeSource.CALCULATION)

    def _number_row(self, row: int) -> None:
        if self.number_key is None or row == self.total_row_index:
            return
        if self.rows[row][self.number_key] != row + 1:
            self.set_cell(row, self.number_key, row + 1, ChangeSource.AUTO_NUMBER)

    def recompute_total_row(self) -> Optional[Union[int, float]]:
        """Sum the amount column over every non-total row into the total row."""
        self._total_debouncer.cancel()
        if self.amount_key is None:
            return None
        total = 0.0
        for index, row in enumerate(self.rows):
            if index == self.total_row_index:
                continue
            total += parse_number(row[self.amount_key]) or 0
        total = _tidy_number(total)
        self.set_cell(self.total_row_index, self.amount_key, total, ChangeSource.TOTAL)
        return total

    def schedule_total_recompute(self) -> None:
        if self._batching:
            self._batch_needs_total = True
            return
        if not self.destroyed:
            self._total_debouncer.schedule()

    @property
    def pending_recompute(self) -> bool:
        return self._total_debouncer.pending

    def flush(self) -> bool:
        """Run any pending total recompute now."""
        return self._total_debouncer.flush()

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    @property
    def data_row_count(self) -> int:
        return self.total_row_index

    def insert_row(self, at: Optional[int] = None) -> int:
        """
        Insert a blank row, by default immediately before the total row.

        Returns the index of the new row. Rows below it (including the
        total row) shift down by one and are renumbered.
        """
        if self.destroyed:
            raise ValidationError("The entry surface has been closed")
        if self.data_row_count >= self.max_rows:
            raise ValidationError(f"A grid can hold at most {self.max_rows} item rows")

        index = self.total_row_index if at is None else at
        if not 0 <= index <= self.total_row_index:
            raise ValidationError(f"Cannot insert a row at position {index}")

        self.rows.insert(index, self._blank_row(index))
        self.total_row_index += 1
        if self.number_key:
            self.set_cell(self.total_row_index, self.number_key, TOTAL_LABEL, ChangeSource.AUTO_NUMBER)
        self._renumber_from(index + 1)

        logger.debug(f"Inserted grid row at {index}, total row now at {self.total_row_index}")
        return index

    def remove_row(self, index: int) -> None:
        if self.destroyed:
            raise ValidationError("The entry surface has been closed")
        if not 0 <= index < self.total_row_index:
            raise ValidationError(f"Cannot remove row {index}")

        self.rows.pop(index)
        self.total_row_index -= 1
        self._renumber_from(index)
        self.schedule_total_recompute()

    def _renumber_from(self, start: int) -> None:
        if self.number_key is None:
            return
        for index in range(start, self.total_row_index):
            self._number_row(index)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def keys(self) -> List[str]:
        return list(self._keys)

    def data_rows(self) -> List[Dict[str, Any]]:
        return [dict(row) for i, row in enumerate(self.rows) if i != self.total_row_index]

    def total_row(self) -> Dict[str, Any]:
        return dict(self.rows[self.total_row_index])

    def to_matrix(self) -> List[List[Any]]:
        """Positional rows in column order, total row last."""
        return [[row[key] for key in self._keys] for row in self.rows]

    def column_totals(self) -> Dict[str, Union[int, float]]:
        totals = {}
        for col in self.columns:
            if not col.is_numeric:
                continue
            total = sum(
                parse_number(row[col.data_key]) or 0
                for i, row in enumerate(self.rows)
                if i != self.total_row_index
            )
            totals[col.data_key] = _tidy_number(total)
        return totals

    def snapshot(self) -> Dict[str, Any]:
        return {
            "colHeaders": list(self.config.col_headers),
            "columns": [c.model_dump(by_alias=True, exclude_none=True) for c in self.columns],
            "rows": self.to_matrix(),
            "totalRowIndex": self.total_row_index,
            "totals": self.column_totals(),
            "pendingRecompute": self.pending_recompute,
        }

    # ------------------------------------------------------------------
    # Listeners / lifecycle
    # ------------------------------------------------------------------

    def on_change(self, listener: ChangeListener) -> None:
        self._change_listeners.append(listener)

    def on_validation(self, listener: ValidationListener) -> None:
        self._validation_listeners.append(listener)

    def _notify(self, edits: List[CellEdit]) -> None:
        for listener in list(self._change_listeners):
            try:
                listener(edits)
            except Exception as e:
                logger.error(f"Grid change listener failed: {e}", exc_info=True)

    def destroy(self) -> None:
        """Drop pending recomputation and listeners. Pending work is discarded, not flushed."""
        self._total_debouncer.cancel()
        self._change_listeners.clear()
        self._validation_listeners.clear()
        self.destroyed = True
        logger.debug("Grid engine destroyed")
