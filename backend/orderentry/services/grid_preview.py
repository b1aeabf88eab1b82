"""
Read-only tabular preview and CSV export of a grid.

The preview is what a grid surface shows when the renderer cannot be
loaded: headers plus the first rows, rendered to plain strings.
"""

import io
import logging
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from orderentry.models.entry_schemas import ColumnType, GridConfig
from orderentry.services.cell_strategies import resolve_renderer

logger = logging.getLogger(__name__)

PREVIEW_MAX_ROWS = 10

_PLACEHOLDERS = {
    ColumnType.NUMERIC: "0",
    ColumnType.CHECKBOX: "[ ]",
    ColumnType.IMAGE: "[image]",
}


def build_readonly_preview(
    config: GridConfig,
    matrix: Optional[Sequence[Sequence[Any]]] = None,
    max_rows: int = PREVIEW_MAX_ROWS,
    message: str = "Spreadsheet could not be loaded; showing a read-only table",
) -> Dict[str, Any]:
    """
    Render a non-interactive preview.

    With no data, each column shows the placeholder for its type.
    """
    renderers = [resolve_renderer(col.renderer, col.type.value) for col in config.columns]

    rows: List[List[str]] = []
    if matrix is None:
        for _ in range(min(config.rows_count, max_rows)):
            rows.append([_PLACEHOLDERS.get(col.type, "") for col in config.columns])
    else:
        for raw in list(matrix)[:max_rows]:
            rows.append([renderers[i](raw[i]) if i < len(raw) else "" for i in range(len(config.columns))])

    return {
        "degraded": True,
        "message": message,
        "colHeaders": list(config.col_headers),
        "rows": rows,
        "rowNumbers": list(range(1, len(rows) + 1)),
    }


def export_csv(config: GridConfig, matrix: Sequence[Sequence[Any]]) -> str:
    """Headers plus every row (total row included) as CSV text."""
    df = pd.DataFrame([list(row) for row in matrix], columns=list(config.col_headers))

    output = io.StringIO()
    df.to_csv(output, index=False)
    return output.getvalue()
