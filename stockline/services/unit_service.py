"""Unit conversion resolver: selectable units, tier prices and default unit choice."""

from decimal import Decimal
from typing import Dict, List, Optional

from stockline.domain.entities import AlternateUnit, Batch, Product, RateTier, UnitOption
from stockline.services.pricing_service import cost_basis, profit_percent_for
from stockline.utils.number_format import round2, ZERO

BASE_UNIT_ID = 'base'


def base_tier_price(product: Product, tier: RateTier, batch: Optional[Batch] = None) -> Decimal:
    """
    Price of the base unit for a rate tier.

    Batch prices win for Retail/Wholesale when non-zero; an absent tier price
    falls back to the product's retail price, then 0.
    """
    retail = product.retail_price if product.retail_price is not None else ZERO
    if tier == RateTier.WHOLESALE:
        if batch is not None and batch.wholesale:
            return batch.wholesale
        return product.wholesale_price if product.wholesale_price is not None else retail
    if tier == RateTier.SPECIAL1:
        return product.special1_price if product.special1_price is not None else retail
    if tier == RateTier.SPECIAL2:
        return product.special2_price if product.special2_price is not None else retail
    if batch is not None and batch.retail:
        return batch.retail
    return retail


def alternate_tier_price(unit, tier: RateTier) -> Decimal:
    """Tier price of an alternate unit, falling back retail -> wholesale -> 0 when zero."""
    by_tier = {
        RateTier.RETAIL: unit.retail,
        RateTier.WHOLESALE: unit.wholesale,
        RateTier.SPECIAL1: unit.special1,
        RateTier.SPECIAL2: unit.special2,
    }
    price = by_tier.get(tier, unit.retail)
    if not price:
        price = unit.retail or unit.wholesale or ZERO
    return price


def _alternate_option(unit: AlternateUnit, price: Decimal) -> UnitOption:
    return UnitOption(
        id=unit.unit_id,
        name=unit.unit_name,
        is_multi_unit=True,
        conversion=unit.conversion,
        price=price,
        multi_unit_id=unit.multi_unit_id,
        serial_tag=unit.serial_tag,
        retail=unit.retail,
        wholesale=unit.wholesale,
        special1=unit.special1,
        special2=unit.special2,
    )


def build_unit_options(product: Product, tier: Optional[RateTier], batch: Optional[Batch] = None) -> List[UnitOption]:
    """
    Build the unit list for a product.

    With a rate tier (sales) units are priced by tier. Without one (stock
    entry) the base unit carries the purchase price and each alternate unit
    the purchase price scaled by its conversion. Alternate units are only
    offered when the product does not track batches.
    """
    if tier is None:
        base_price = product.purchase_price
    else:
        base_price = base_tier_price(product, tier, batch)

    units = [UnitOption(
        id=product.base_unit_id or BASE_UNIT_ID,
        name=product.base_unit_name or 'Main',
        is_multi_unit=False,
        price=round2(base_price),
        serial_tag=product.serial_tag,
        retail=product.retail_price or ZERO,
        wholesale=product.wholesale_price or ZERO,
    )]

    if product.allow_batches or not product.alternate_units:
        return units

    for alt in product.alternate_units:
        if tier is None:
            price = round2(cost_basis(product.purchase_price, alt.conversion))
        else:
            price = alternate_tier_price(alt, tier)
        units.append(_alternate_option(alt, price))
    return units


def pick_default_unit(
    units: List[UnitOption],
    product: Product,
    matched_multi_unit_id: Optional[str] = None,
    searched_tag: Optional[str] = None
) -> Optional[UnitOption]:
    """
    Choose the unit a freshly selected row starts on.

    Priority: multi-unit id resolved by a barcode lookup, then the searched
    serial tag (base unit's tag first, then any alternate unit's), then the
    first unit in the list.
    """
    if matched_multi_unit_id:
        for unit in units:
            if unit.is_multi_unit and unit.multi_unit_id == matched_multi_unit_id:
                return unit

    tag = str(searched_tag).strip() if searched_tag else ''
    if tag:
        if product.serial_tag and product.serial_tag.strip() == tag:
            for unit in units:
                if not unit.is_multi_unit:
                    return unit
        for unit in units:
            if unit.is_multi_unit and unit.serial_tag and unit.serial_tag.strip() == tag:
                return unit

    return units[0] if units else None


def price_for_unit(unit: UnitOption, tier: Optional[RateTier]) -> Decimal:
    """Unit price a row takes when switched onto `unit` under the current tier."""
    price = unit.price
    if unit.is_multi_unit and tier is not None:
        by_tier = {
            RateTier.RETAIL: unit.retail,
            RateTier.WHOLESALE: unit.wholesale,
            RateTier.SPECIAL1: unit.special1,
            RateTier.SPECIAL2: unit.special2,
        }
        if by_tier.get(tier):
            price = by_tier[tier]
    return round2(price)


def stock_entry_prices(product: Product, unit: UnitOption) -> Dict[str, Decimal]:
    """
    Purchase rate and selling prices a stock-entry row takes for a unit.

    Multi-units cost the base purchase rate times pieces inside and carry
    their own selling prices when set; the base unit uses the product's.
    """
    retail = product.retail_price or ZERO
    wholesale = product.wholesale_price or ZERO
    if unit.is_multi_unit:
        price = round2(cost_basis(product.purchase_price, unit.effective_conversion))
        retail = unit.retail or retail
        wholesale = unit.wholesale or wholesale
        special1 = unit.special1 or ZERO
        special2 = unit.special2 or ZERO
    else:
        price = round2(unit.price if unit.price is not None else product.purchase_price)
        special1 = ZERO
        special2 = ZERO
    return {
        'unit_price': price,
        'retail': retail,
        'wholesale': wholesale,
        'special1': special1,
        'special2': special2,
        'profit_percent': profit_percent_for(price, retail),
    }
