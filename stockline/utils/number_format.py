"""Number parsing and rounding utilities for grid input."""
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, ROUND_DOWN

TWO_PLACES = Decimal('0.01')
QTY_PLACES = Decimal('0.0001')
ZERO = Decimal('0')
HUNDRED = Decimal('100')

NUMERIC_INPUT_PATTERN = re.compile(r"^-?(?:\d+(?:\.\d*)?|\.\d+)$")


def to_decimal(value, default=ZERO) -> Decimal:
    """
    Coerce a loosely typed value (int, float, str, None) to Decimal.

    Floats go through str() so 0.1 stays 0.1. None and blank strings
    return the default.
    """
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f'Not a number: {value!r}')
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    cleaned = str(value).strip()
    if not cleaned:
        return default
    try:
        return Decimal(cleaned)
    except (InvalidOperation, ValueError):
        raise ValueError(f'Not a number: {value!r}')


def round2(value) -> Decimal:
    """Round half-up to 2 decimal places."""
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def floor_qty(value) -> Decimal:
    """Truncate a quantity cap to 4 decimal places (never rounds up past stock)."""
    return to_decimal(value).quantize(QTY_PLACES, rounding=ROUND_DOWN)


def parse_numeric_input(raw) -> Decimal:
    """
    Parse what the user typed into a numeric cell.

    Rules:
    - Blank or None reads as 0
    - A comma is accepted as decimal separator (single comma, no dot)
    - Thousands separators are not accepted
    - Anything unparseable reads as 0, matching an emptied cell

    Negative values are returned as typed; callers clamp where needed.
    """
    if raw is None:
        return ZERO
    if isinstance(raw, (int, float, Decimal)) and not isinstance(raw, bool):
        return to_decimal(raw)

    cleaned = str(raw).strip()
    if not cleaned:
        return ZERO
    if ',' in cleaned and '.' not in cleaned and cleaned.count(',') == 1:
        cleaned = cleaned.replace(',', '.')
    if not NUMERIC_INPUT_PATTERN.match(cleaned):
        return ZERO
    try:
        return Decimal(cleaned)
    except (InvalidOperation, ValueError):
        return ZERO
