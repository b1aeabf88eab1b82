"""
Entry session endpoints.

A session is a mounted entry surface for one template. Grid sessions take
cell edits and row inserts; general sessions take field values and item
rows. Every read flushes pending total recomputation first, so responses
always show a settled grid.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, Response
from pydantic import Field
from sqlalchemy.orm import Session

from orderentry.core.database import get_db
from orderentry.core.exceptions import ValidationError
from orderentry.models.entry_schemas import CamelModel, ItemRow, OrderHeader
from orderentry.services.entry_sessions import EntrySession, EntrySessionManager, get_session_manager
from orderentry.services.entry_surfaces import GeneralEntrySurface, GridEntrySurface, line_item_summary
from orderentry.services.line_items import require_line_items
from orderentry.services.order_service import OrderService, merge_header
from orderentry.services.reference_data import ReferenceDataProvider, get_reference_provider
from orderentry.services.template_service import TemplateService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/entry-sessions", tags=["entry-sessions"])


class MountRequest(CamelModel):
    template_id: int


class CellChange(CamelModel):
    row: int
    col: Union[int, str]  # Column index or dataKey
    value: Any = None


class CellChangesRequest(CamelModel):
    changes: List[CellChange] = Field(min_length=1)


class InsertRowRequest(CamelModel):
    at: Optional[int] = None  # Defaults to just above the total row


class FieldValuesRequest(CamelModel):
    values: Dict[str, Any]


class ItemRowsRequest(CamelModel):
    items: List[ItemRow]


def _grid(session: EntrySession) -> GridEntrySurface:
    if not isinstance(session.surface, GridEntrySurface):
        raise ValidationError("This entry session uses a general form, not a grid")
    return session.surface


def _general(session: EntrySession) -> GeneralEntrySurface:
    if not isinstance(session.surface, GeneralEntrySurface):
        raise ValidationError("This entry session uses a grid, not a general form")
    return session.surface


@router.post("", status_code=201)
async def mount_session(
    request: MountRequest,
    db: Session = Depends(get_db),
    manager: EntrySessionManager = Depends(get_session_manager),
    provider: ReferenceDataProvider = Depends(get_reference_provider)
):
    """Load the template, then mount its entry surface"""
    definition = TemplateService(db).get_definition(request.template_id, provider.get_reference_data())
    session = await manager.mount(definition)
    return session.snapshot()


@router.get("/{session_id}")
async def get_session(session_id: str, manager: EntrySessionManager = Depends(get_session_manager)):
    return manager.get(session_id).snapshot()


@router.delete("/{session_id}", status_code=204)
async def unmount_session(session_id: str, manager: EntrySessionManager = Depends(get_session_manager)):
    """Discard the session. Pending recomputation is cancelled, not flushed."""
    manager.unmount(session_id)
    return Response(status_code=204)


@router.put("/{session_id}/template")
async def switch_template(
    session_id: str,
    request: MountRequest,
    db: Session = Depends(get_db),
    manager: EntrySessionManager = Depends(get_session_manager),
    provider: ReferenceDataProvider = Depends(get_reference_provider)
):
    """Switch to another template. Everything entered under the old one is dropped."""
    manager.get(session_id)
    definition = TemplateService(db).get_definition(request.template_id, provider.get_reference_data())
    session = await manager.switch(session_id, definition)
    return session.snapshot()


@router.patch("/{session_id}/cells")
async def edit_cells(
    session_id: str,
    request: CellChangesRequest,
    manager: EntrySessionManager = Depends(get_session_manager)
):
    """
    Apply a batch of cell edits.

    Invalid values are reverted, not rejected: the response lists each edit
    with its final state and any validation events.
    """
    session = manager.get(session_id)
    surface = _grid(session)
    edits = surface.set_cells((c.row, c.col, c.value) for c in request.changes)
    session.touch()

    return {
        "edits": [e.to_dict() for e in edits],
        "reverted": sum(1 for e in edits if not e.committed),
        "session": session.snapshot(),
    }


@router.post("/{session_id}/rows", status_code=201)
async def insert_row(
    session_id: str,
    request: Optional[InsertRowRequest] = None,
    manager: EntrySessionManager = Depends(get_session_manager)
):
    session = manager.get(session_id)
    index = _grid(session).insert_row(request.at if request else None)
    session.touch()
    return {"rowIndex": index, "session": session.snapshot()}


@router.delete("/{session_id}/rows/{row_index}")
async def remove_row(
    session_id: str,
    row_index: int,
    manager: EntrySessionManager = Depends(get_session_manager)
):
    session = manager.get(session_id)
    _grid(session).remove_row(row_index)
    session.touch()
    return session.snapshot()


@router.put("/{session_id}/fields")
async def set_field_values(
    session_id: str,
    request: FieldValuesRequest,
    manager: EntrySessionManager = Depends(get_session_manager)
):
    session = manager.get(session_id)
    _general(session).set_field_values(request.values)
    session.touch()
    return session.snapshot()


@router.put("/{session_id}/items")
async def set_item_rows(
    session_id: str,
    request: ItemRowsRequest,
    manager: EntrySessionManager = Depends(get_session_manager)
):
    session = manager.get(session_id)
    _general(session).set_item_rows(request.items)
    session.touch()
    return session.snapshot()


@router.get("/{session_id}/line-items")
async def get_line_items(session_id: str, manager: EntrySessionManager = Depends(get_session_manager)):
    """Line items the session would submit right now (may be empty)"""
    session = manager.get(session_id)
    return line_item_summary(session.surface.line_items())


@router.get("/{session_id}/preview")
async def get_preview(session_id: str, manager: EntrySessionManager = Depends(get_session_manager)):
    """Read-only tabular rendering of a grid session"""
    return _grid(manager.get(session_id)).preview()


@router.get("/{session_id}/export")
async def export_session_csv(session_id: str, manager: EntrySessionManager = Depends(get_session_manager)):
    session = manager.get(session_id)
    csv_data = _grid(session).export_csv()
    filename = f"{(session.definition.name or 'order').replace(' ', '_')}.csv"
    return Response(
        content=csv_data,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


@router.post("/{session_id}/submit", status_code=201)
async def submit_session(
    session_id: str,
    header: OrderHeader,
    db: Session = Depends(get_db),
    manager: EntrySessionManager = Depends(get_session_manager)
):
    """
    Turn the session into an order.

    An empty item list stops here, before the order service is called. On
    success the session is unmounted.
    """
    session = manager.get(session_id)
    surface = session.surface
    items = require_line_items(surface.line_items())

    header = merge_header(header, surface.custom_fields(), session.definition.id)
    order = OrderService(db).create_order(header, items)

    manager.unmount(session_id)
    return OrderService.to_dict(order)
