"""Document aggregator - folds lines and header adjustments into document totals."""

from decimal import Decimal
from typing import Any, Dict, List

from stockline.domain.entities import DocumentHeader, LineItem
from stockline.services.pricing_service import line_profit
from stockline.utils.number_format import round2, to_decimal, ZERO, HUNDRED


def net_adjustments(header: DocumentHeader) -> Decimal:
    return (
        header.other_charges + header.freight + header.misc_charge
        + header.round_off - header.other_discount
    )


def tax_from_adjustments(header: DocumentHeader, rate) -> Decimal:
    """
    VAT contained in the header adjustments, treated as tax-inclusive figures.

    Informational only: it is reported in total VAT but never re-enters the
    grand total.
    """
    adjustments = net_adjustments(header)
    if not header.is_taxed or adjustments == 0:
        return ZERO
    rate = to_decimal(rate)
    return round2(adjustments * rate / (HUNDRED + rate))


def other_discount_from_percent(sub_total, percent) -> Decimal:
    return round2(to_decimal(sub_total) * to_decimal(percent) / HUNDRED)


def calculate_document_totals(lines: List[LineItem], header: DocumentHeader, rate) -> Dict[str, Any]:
    """Calculate totals for a document from its filled lines and header."""
    filled = [line for line in lines if not line.is_empty]

    items_gross = sum((line.gross for line in filled), ZERO)
    items_discount = sum((line.discount_amount for line in filled), ZERO)
    items_vat = sum((line.vat_amount for line in filled), ZERO)
    sub_total = sum((line.total for line in filled), ZERO)

    vat_from_adjustments = tax_from_adjustments(header, rate)
    grand_total = (
        sub_total - header.other_discount + header.other_charges
        + header.freight + header.misc_charge + header.round_off
    )
    balance = grand_total - header.cash_received - header.card_amount
    total_profit = sum((line_profit(line) * line.quantity for line in filled), ZERO)

    return {
        'items_gross': round2(items_gross),
        'items_discount': round2(items_discount),
        'items_vat': round2(items_vat),
        'vat_from_adjustments': vat_from_adjustments,
        'total_vat': round2(items_vat + vat_from_adjustments),
        'sub_total': round2(sub_total),
        'grand_total': round2(grand_total),
        'balance': round2(balance),
        'net_balance': round2(balance + header.old_balance),
        'total_items': len(filled),
        'total_profit': round2(total_profit),
    }
