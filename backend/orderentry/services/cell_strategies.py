"""
Named cell validators and renderers.

Grid columns refer to these by name (`"validator": "positive"`,
`"renderer": "currency"`). Only the names below exist; a template cannot
ship its own code.
"""

import logging
import math
import re
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

_GROUPED_NUMBER = re.compile(r"^[+-]?\d{1,3}(,\d{3})+(\.\d+)?$")


def parse_number(value: Any) -> Optional[float]:
    """
    Parse a cell value as a number.

    Returns None when the value is not numeric. Booleans are not numbers.
    Thousands separators ("1,000") are accepted since that is how the grid
    displays amounts.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if _GROUPED_NUMBER.match(text):
            text = text.replace(",", "")
        try:
            number = float(text)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


class CellValidatorName(str, Enum):
    NUMERIC = "numeric"
    POSITIVE = "positive"
    NON_NEGATIVE = "non_negative"
    INTEGER = "integer"
    REQUIRED = "required"
    DATE = "date"


def _is_integer(value: Any) -> bool:
    number = parse_number(value)
    return number is not None and number.is_integer()


def _is_positive(value: Any) -> bool:
    number = parse_number(value)
    return number is not None and number > 0


def _is_non_negative(value: Any) -> bool:
    number = parse_number(value)
    return number is not None and number >= 0


VALIDATORS: Dict[CellValidatorName, Callable[[Any], bool]] = {
    CellValidatorName.NUMERIC: lambda v: parse_number(v) is not None,
    CellValidatorName.POSITIVE: _is_positive,
    CellValidatorName.NON_NEGATIVE: _is_non_negative,
    CellValidatorName.INTEGER: _is_integer,
    CellValidatorName.REQUIRED: lambda v: not is_blank(v),
    CellValidatorName.DATE: lambda v: is_blank(v) or parse_date(v) is not None,
}


class CellRendererName(str, Enum):
    TEXT = "text"
    NUMERIC = "numeric"
    CURRENCY = "currency"
    CHECKBOX = "checkbox"
    IMAGE = "image"
    DATE = "date"


def _render_text(value: Any) -> str:
    return "" if value is None else str(value)


def _render_numeric(value: Any) -> str:
    number = parse_number(value)
    if number is None:
        return _render_text(value)
    if number.is_integer():
        return f"{int(number):,}"
    return f"{number:,}"


def _render_currency(value: Any) -> str:
    number = parse_number(value)
    if number is None:
        return _render_text(value)
    return f"{number:,.2f}"


def _render_checkbox(value: Any) -> str:
    return "[x]" if value is True else "[ ]"


def _render_image(value: Any) -> str:
    if is_blank(value):
        return ""
    if isinstance(value, str) and value.startswith("data:image"):
        return "[image]"
    return f"[image: {value}]"


def _render_date(value: Any) -> str:
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else _render_text(value)


RENDERERS: Dict[CellRendererName, Callable[[Any], str]] = {
    CellRendererName.TEXT: _render_text,
    CellRendererName.NUMERIC: _render_numeric,
    CellRendererName.CURRENCY: _render_currency,
    CellRendererName.CHECKBOX: _render_checkbox,
    CellRendererName.IMAGE: _render_image,
    CellRendererName.DATE: _render_date,
}

# Renderer used for a column type when the column names none
DEFAULT_RENDERER_BY_TYPE = {
    "text": CellRendererName.TEXT,
    "numeric": CellRendererName.NUMERIC,
    "dropdown": CellRendererName.TEXT,
    "date": CellRendererName.DATE,
    "checkbox": CellRendererName.CHECKBOX,
    "image": CellRendererName.IMAGE,
}


def resolve_validator(name: Optional[str]) -> Optional[Callable[[Any], bool]]:
    """Look up a named validator. Unknown names are ignored with a warning."""
    if not name:
        return None
    try:
        return VALIDATORS[CellValidatorName(name)]
    except ValueError:
        logger.warning(f"Unknown cell validator '{name}', ignoring")
        return None


def resolve_renderer(name: Optional[str], column_type: str = "text") -> Callable[[Any], str]:
    """Look up a named renderer, falling back to the column type's default."""
    if name:
        try:
            return RENDERERS[CellRendererName(name)]
        except ValueError:
            logger.warning(f"Unknown cell renderer '{name}', using default for '{column_type}'")
    return RENDERERS[DEFAULT_RENDERER_BY_TYPE.get(column_type, CellRendererName.TEXT)]
