"""
Stock allocation engine.

Works out how much of a product a row may still take, given the stock the
row was selected against, what the other rows of the same document already
hold, an optional batch cap, and (when editing a saved document) the
quantities that document had already deducted.

All stock arithmetic is in base-unit pieces; a row's cap in its own unit is
pieces / conversion, truncated to 4 places.
"""
import logging
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from stockline.domain.entities import LineItem, OriginalLine
from stockline.exceptions import InsufficientStockError
from stockline.utils.number_format import floor_qty, to_decimal, ZERO

logger = logging.getLogger(__name__)

QTY_NOT_AVAILABLE = 'Qty not available'


def credited_pieces(original_lines: Iterable[OriginalLine], product_id: str) -> Decimal:
    """Pieces the edited document already deducted for a product."""
    return sum((o.pieces for o in original_lines if o.product_id == product_id), ZERO)


def used_by_other_rows(lines: List[LineItem], product_id: str, exclude_line_id: Optional[str]) -> Decimal:
    """Pieces of a product held by the shared-pool rows other than `exclude_line_id`."""
    used = ZERO
    for other in lines:
        if other.id == exclude_line_id or other.product_id != product_id:
            continue
        if other.has_batch_cap:
            continue
        used += other.pieces
    return used


def remaining_pieces(line: LineItem, lines: List[LineItem]) -> Decimal:
    """Pieces still available to a row."""
    if line.has_batch_cap:
        return line.batch_max_pieces
    return line.base_stock_pieces - used_by_other_rows(lines, line.product_id, line.id)


def max_quantity_for_row(line: LineItem, lines: List[LineItem], conversion: Optional[Decimal] = None) -> Decimal:
    """
    Maximum quantity a row may hold in its selected unit (or in `conversion`).

    May be negative when other rows already overdraw the pool; callers clamp.
    """
    conv = to_decimal(conversion) if conversion else line.conversion
    if conv <= 0:
        conv = Decimal('1')
    return remaining_pieces(line, lines) / conv


def clamp_quantity(line: LineItem, requested, lines: List[LineItem], conversion: Optional[Decimal] = None) -> Tuple[Decimal, bool]:
    """
    Clamp a requested quantity into [0, cap].

    Returns (quantity, clamped) where `clamped` is True only when the request
    exceeded the cap.
    """
    requested = to_decimal(requested)
    cap = floor_qty(max(ZERO, max_quantity_for_row(line, lines, conversion)))
    if requested > cap:
        logger.info(
            f"[STOCK] Row {line.id} product {line.product_id}: "
            f"requested {requested} capped to {cap}"
        )
        return cap, True
    return max(ZERO, requested), False


def pieces_available_for_selection(
    product_id: str,
    stock_pieces,
    line_id: Optional[str],
    lines: List[LineItem],
    original_lines: Iterable[OriginalLine] = (),
    batch_scoped: bool = False
) -> Tuple[Decimal, Decimal]:
    """
    Stock figure for a row about to take a product, and what is left of it.

    Returns (base_stock_pieces, remaining_pieces). A batch-scoped selection
    is neither credited back nor shared with other rows.
    """
    stock = to_decimal(stock_pieces)
    if batch_scoped:
        return stock, stock
    stock += credited_pieces(original_lines, product_id)
    return stock, stock - used_by_other_rows(lines, product_id, line_id)


# =====================================================
# PRE-SUBMIT CHECK
# =====================================================

def requested_pieces_by_product(lines: List[LineItem]) -> Dict[str, Dict[str, object]]:
    """Total requested pieces per product, in first-seen order."""
    totals: Dict[str, Dict[str, object]] = {}
    for line in lines:
        entry = totals.get(line.product_id)
        if entry is None:
            totals[line.product_id] = {'name': line.name, 'pieces': line.pieces}
        else:
            entry['pieces'] += line.pieces
    return totals


def verify_live_stock(
    lines: List[LineItem],
    get_stock: Callable[[str], Decimal],
    original_lines: Iterable[OriginalLine] = ()
) -> None:
    """
    Check requested totals against freshly fetched stock for every product.

    Raises InsufficientStockError for the first product that falls short; the
    caller must not persist anything in that case.
    """
    original_lines = list(original_lines)
    for product_id, info in requested_pieces_by_product(lines).items():
        available = to_decimal(get_stock(product_id)) + credited_pieces(original_lines, product_id)
        if available < info['pieces']:
            logger.warning(
                f"[STOCK] Pre-submit check failed for {product_id}: "
                f"available {available}, required {info['pieces']}"
            )
            raise InsufficientStockError(info['name'], info['pieces'], available)
