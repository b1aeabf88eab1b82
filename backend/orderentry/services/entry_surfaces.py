"""
Entry surfaces: the mounted working state for one template.

- GeneralEntrySurface: field values keyed by fieldName plus explicit item rows
- GridEntrySurface: a GridEngine, mirrored into a GridRenderer when one could
  be loaded, or shown as a read-only preview when it could not

`build_surface` is the only constructor callers need; it picks the surface
from the definition type and handles the renderer fallback.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from orderentry.core.exceptions import GridRendererError, ValidationError
from orderentry.models.entry_schemas import (
    FieldType,
    GeneralTemplate,
    GridTemplate,
    ItemRow,
    OrderLineItem,
    SurfaceKind,
    TemplateDefinition,
)
from orderentry.services.cell_strategies import is_blank, parse_date, parse_number
from orderentry.services.grid_engine import CellEdit, CellRef, GridEngine, ValidationEvent
from orderentry.services.grid_preview import build_readonly_preview, export_csv
from orderentry.services.grid_renderer import GridRenderer, GridRendererRegistry
from orderentry.services.line_items import (
    GeneralWorkingState,
    custom_fields_from,
    invalid_field_values,
    missing_required_fields,
    order_total,
    to_line_items,
)

logger = logging.getLogger(__name__)


class GeneralEntrySurface:
    """Free-form field list plus an item-row table."""

    kind = SurfaceKind.GENERAL

    def __init__(self, definition: GeneralTemplate):
        self.definition = definition
        self.state = GeneralWorkingState(
            field_values={f.field_name: None for f in definition.fields}
        )
        self.destroyed = False

    def set_field_values(self, values: Mapping[str, Any]) -> List[str]:
        """
        Store field values.

        Numbers and dates are normalized when they parse; values that do not
        are kept as typed and reported back, so nothing the user entered is
        lost. Unknown field names are ignored.

        Returns:
            Messages for values that did not fit their field
        """
        self._check_open()
        by_name = {f.field_name: f for f in self.definition.fields}
        for name, value in values.items():
            template_field = by_name.get(name)
            if template_field is None:
                logger.debug(f"Ignoring unknown field '{name}'")
                continue
            self.state.field_values[name] = self._normalize_value(template_field.field_type, value)
        return invalid_field_values(self.state.field_values, self.definition.fields)

    def _normalize_value(self, field_type: FieldType, value: Any) -> Any:
        if is_blank(value):
            return None
        if field_type == FieldType.NUMBER:
            number = parse_number(value)
            if number is not None:
                return int(number) if number.is_integer() else number
        elif field_type == FieldType.DATE:
            parsed = parse_date(value)
            if parsed is not None:
                return parsed.isoformat()
        return value

    def set_item_rows(self, rows: Iterable[Union[ItemRow, Mapping[str, Any]]]) -> None:
        self._check_open()
        self.state.item_rows = [
            row if isinstance(row, ItemRow) else ItemRow.model_validate(row) for row in rows
        ]

    def line_items(self) -> List[OrderLineItem]:
        return to_line_items(self.state, self.kind)

    def custom_fields(self) -> Optional[Dict[str, Any]]:
        return custom_fields_from(self.state, self.definition.fields)

    def missing_required(self) -> List[str]:
        return missing_required_fields(self.state.field_values, self.definition.fields)

    def snapshot(self) -> Dict[str, Any]:
        sections = {
            name: [f.model_dump(by_alias=True) for f in fields]
            for name, fields in self.definition.fields_by_section().items()
        }
        return {
            "kind": self.kind.value,
            "degraded": False,
            "sections": sections,
            "values": dict(self.state.field_values),
            "itemRows": [row.model_dump(by_alias=True) for row in self.state.item_rows],
            "fieldErrors": invalid_field_values(self.state.field_values, self.definition.fields),
        }

    def _check_open(self) -> None:
        if self.destroyed:
            raise ValidationError("The entry surface has been closed")

    def destroy(self) -> None:
        self.destroyed = True


class GridEntrySurface:
    """
    Grid engine bound to a renderer.

    Committed engine writes (including calculated amounts and totals) are
    mirrored into the renderer; reverted writes restore the renderer's cell.
    User input arriving from the renderer goes through the engine, so the
    engine is always the source of truth. Without a renderer the surface is
    a read-only preview.
    """

    kind = SurfaceKind.GRID

    def __init__(
        self,
        definition: GridTemplate,
        engine: Optional[GridEngine] = None,
        renderer: Optional[GridRenderer] = None,
    ):
        self.definition = definition
        self.engine = engine or GridEngine(definition.grid_config)
        self.renderer = renderer
        self._reloading = False

        if renderer is not None:
            self.engine.on_change(self._mirror_edits)
            self.engine.on_validation(self._restore_cell)
            renderer.on_change(self._on_renderer_edit)

    @property
    def degraded(self) -> bool:
        return self.renderer is None

    @property
    def destroyed(self) -> bool:
        return self.engine.destroyed

    def _mirror_edits(self, edits: List[CellEdit]) -> None:
        if self._reloading:
            return
        for edit in edits:
            if edit.committed:
                self.renderer.set_cell(edit.row, edit.col, edit.new_value, edit.source.value)

    def _restore_cell(self, event: ValidationEvent) -> None:
        if 0 <= event.row < len(self.engine.rows):
            self.renderer.set_cell(event.row, event.col, event.previous_value, "revert")

    def _on_renderer_edit(self, row: int, col: int, value: Any) -> None:
        self.engine.set_cell(row, col, value)

    def _check_interactive(self) -> None:
        if self.degraded:
            raise ValidationError("The spreadsheet could not be loaded; this grid is read-only")

    @contextmanager
    def _structural_change(self):
        # Row shapes differ mid-change; reload the renderer once afterwards
        self._reloading = True
        try:
            yield
        finally:
            self._reloading = False
            self.renderer.load(self.engine.to_matrix())

    def set_cells(self, changes: Iterable[Tuple[int, CellRef, Any]]) -> List[CellEdit]:
        """Apply user edits. Reverted edits are returned, not raised."""
        self._check_interactive()
        return self.engine.set_cells(changes)

    def insert_row(self, at: Optional[int] = None) -> int:
        self._check_interactive()
        with self._structural_change():
            index = self.engine.insert_row(at)
        return index

    def remove_row(self, index: int) -> None:
        self._check_interactive()
        with self._structural_change():
            self.engine.remove_row(index)

    def line_items(self) -> List[OrderLineItem]:
        return to_line_items(self.engine, self.kind)

    def custom_fields(self) -> Optional[Dict[str, Any]]:
        return None

    def missing_required(self) -> List[str]:
        return []

    def preview(self) -> Dict[str, Any]:
        self.engine.flush()
        return build_readonly_preview(self.definition.grid_config, self.engine.to_matrix())

    def export_csv(self) -> str:
        self.engine.flush()
        return export_csv(self.definition.grid_config, self.engine.to_matrix())

    def snapshot(self) -> Dict[str, Any]:
        self.engine.flush()
        data = {
            "kind": self.kind.value,
            "degraded": self.degraded,
            "grid": self.engine.snapshot(),
            "validationEvents": [e.to_dict() for e in self.engine.validation_events],
        }
        if self.degraded:
            data["preview"] = self.preview()
        return data

    def destroy(self) -> None:
        """Discard the working state. Pending recomputation is cancelled, not flushed."""
        self.engine.destroy()
        if self.renderer is not None:
            self.renderer.destroy()


EntrySurface = Union[GeneralEntrySurface, GridEntrySurface]


async def build_surface(
    definition: TemplateDefinition,
    registry: GridRendererRegistry,
    data: Optional[Sequence[Any]] = None,
) -> EntrySurface:
    """
    Create the entry surface for a resolved template.

    Grid surfaces ask the registry for the renderer library; if it cannot be
    loaded the grid still mounts, as a read-only preview.
    """
    if isinstance(definition, GeneralTemplate):
        return GeneralEntrySurface(definition)

    engine = GridEngine(definition.grid_config, data)
    try:
        library = await registry.acquire()
        try:
            renderer = library.create(list(definition.grid_config.col_headers), engine.to_matrix())
        except Exception as e:
            raise GridRendererError("failed to initialize grid renderer", e)
    except GridRendererError as e:
        logger.error(f"{e.message}; falling back to read-only preview")
        renderer = None

    return GridEntrySurface(definition, engine=engine, renderer=renderer)


def line_item_summary(items: Sequence[OrderLineItem]) -> Dict[str, Any]:
    return {
        "items": [item.model_dump(by_alias=True) for item in items],
        "count": len(items),
        "totalAmount": order_total(items),
    }
