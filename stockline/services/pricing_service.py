"""
Pricing & tax calculator.

Pure functions: turn (quantity, unit price, discount) into the per-line
figures under a tax mode. Every step is rounded to 2 places before the next
one uses it, so recomputing a row always reproduces the stored figures.
"""
from decimal import Decimal
from typing import Optional, Tuple

from stockline.domain.entities import LineFigures, LineField, LineItem, TaxMode
from stockline.utils.number_format import round2, to_decimal, ZERO, HUNDRED


def calc_vat_and_total(net, is_taxed: bool, tax_mode: TaxMode, rate) -> Tuple[Decimal, Decimal]:
    """Return (vat_amount, total) for a net amount."""
    net = to_decimal(net)
    rate = to_decimal(rate)
    if not is_taxed:
        return ZERO, round2(net)
    if tax_mode == TaxMode.INCLUSIVE:
        # Price already includes tax: extract it
        vat_amount = round2(net * rate / (HUNDRED + rate))
        return vat_amount, round2(net)
    vat_amount = round2(net * rate / HUNDRED)
    return vat_amount, round2(net + vat_amount)


def compute_line_figures(
    quantity,
    unit_price,
    discount_percent=ZERO,
    discount_amount=ZERO,
    edited: Optional[LineField] = None,
    *,
    is_taxed: bool,
    tax_mode: TaxMode,
    rate
) -> LineFigures:
    """
    Compute gross, discount, VAT and total for one line.

    `edited` names the discount cell the user just typed into; only the other
    one is derived. Any other value keeps both discount figures as given.
    """
    gross = round2(to_decimal(quantity) * to_decimal(unit_price))
    discount_percent = to_decimal(discount_percent)
    discount_amount = to_decimal(discount_amount)

    if edited == LineField.DISCOUNT_PERCENT:
        discount_amount = round2(gross * discount_percent / HUNDRED)
    elif edited == LineField.DISCOUNT_AMOUNT:
        discount_percent = round2(discount_amount / gross * HUNDRED) if gross > 0 else ZERO

    net = round2(gross - discount_amount)
    vat_amount, total = calc_vat_and_total(net, is_taxed, tax_mode, rate)
    return LineFigures(
        gross=gross,
        discount_percent=discount_percent,
        discount_amount=discount_amount,
        net=net,
        vat_amount=vat_amount,
        total=total,
    )


def recalculate_line(line: LineItem, edited: Optional[LineField] = None, *, is_taxed: bool, tax_mode: TaxMode, rate) -> LineItem:
    """Recompute every derived figure of a row in place."""
    figures = compute_line_figures(
        line.quantity, line.unit_price, line.discount_percent, line.discount_amount, edited,
        is_taxed=is_taxed, tax_mode=tax_mode, rate=rate
    )
    line.gross = figures.gross
    line.discount_percent = figures.discount_percent
    line.discount_amount = figures.discount_amount
    line.vat_amount = figures.vat_amount
    line.total = figures.total
    return line


def refresh_tax(line: LineItem, *, is_taxed: bool, tax_mode: TaxMode, rate) -> LineItem:
    """Recompute net, VAT and total only; gross and discount amount are kept."""
    net = round2(line.gross - line.discount_amount)
    line.vat_amount, line.total = calc_vat_and_total(net, is_taxed, tax_mode, rate)
    return line


# =====================================================
# PROFIT
# =====================================================

def cost_basis(purchase_price, conversion=Decimal('1')) -> Decimal:
    """Cost of one selected unit: the base piece cost scaled by the unit's pieces."""
    return to_decimal(purchase_price) * to_decimal(conversion)


def unit_profit(unit_price, purchase_price, conversion=Decimal('1')) -> Decimal:
    return to_decimal(unit_price) - cost_basis(purchase_price, conversion)


def line_profit(line: LineItem) -> Decimal:
    return unit_profit(line.unit_price, line.purchase_price, line.conversion)


def profit_percent_for(price, retail) -> Decimal:
    """Markup of retail over purchase price, 0 when either side is missing."""
    price = to_decimal(price)
    retail = to_decimal(retail)
    if price > 0 and retail > 0:
        return round2((retail - price) / price * HUNDRED)
    return ZERO


def sync_profit_fields(line: LineItem, edited: LineField) -> LineItem:
    """
    Stock-entry pricing: keep retail/wholesale and profit percent linked.

    - profit % edited: retail and wholesale both become price marked up by it
    - retail edited: profit % follows
    - price edited: profit % follows the existing retail
    """
    price = line.unit_price
    if edited == LineField.PROFIT_PERCENT and price > 0:
        marked_up = round2(price * (1 + line.profit_percent / HUNDRED))
        line.retail = marked_up
        line.wholesale = marked_up
    elif edited == LineField.RETAIL and price > 0:
        line.profit_percent = round2((line.retail - price) / price * HUNDRED)
    elif edited == LineField.UNIT_PRICE and price > 0 and line.retail > 0:
        line.profit_percent = profit_percent_for(price, line.retail)
    return line
