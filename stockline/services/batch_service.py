"""Batch resolver: decide whether a product needs a batch choice, or merge its batches."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from stockline.domain.entities import Batch, LineItem, MERGED_BATCH, Product
from stockline.utils.number_format import round2, ZERO

logger = logging.getLogger(__name__)


class BatchOutcome(str, Enum):
    NONE = 'NONE'                  # no batches, product-level stock applies
    SINGLE = 'SINGLE'              # exactly one batch, row capped to it
    MERGED = 'MERGED'              # batches disabled, merged into one pool
    CHOICE_REQUIRED = 'CHOICE_REQUIRED'


@dataclass
class BatchResolution:
    outcome: BatchOutcome
    batch: Optional[Batch] = None
    choices: List[Batch] = field(default_factory=list)

    @property
    def caps_row(self) -> bool:
        """A specific (non-merged) batch caps the row on its own."""
        return self.outcome == BatchOutcome.SINGLE


def _mean(values: List[Decimal]) -> Decimal:
    return sum(values, ZERO) / len(values)


def merge_batches(batches: List[Batch]) -> Batch:
    """
    Merge open batches into one synthetic MERGED batch.

    Prices are plain means over batches holding stock; with none holding
    stock the first batch's prices are kept. Quantity is the sum over the
    batches holding stock.
    """
    if not batches:
        raise ValueError('Cannot merge an empty batch list')

    in_stock = [b for b in batches if b.quantity > 0]
    if in_stock:
        purchase = _mean([b.purchase_price for b in in_stock])
        retail = _mean([b.retail for b in in_stock])
        wholesale = _mean([b.wholesale for b in in_stock])
        quantity = sum((b.quantity for b in in_stock), ZERO)
    else:
        first = batches[0]
        purchase, retail, wholesale = first.purchase_price, first.retail, first.wholesale
        quantity = sum((b.quantity for b in batches), ZERO)

    return Batch(
        batch_number=MERGED_BATCH,
        purchase_price=purchase,
        quantity=quantity,
        retail=retail,
        wholesale=wholesale,
        expiry_date=None,
    )


def resolve_batches(product: Product, batches: List[Batch]) -> BatchResolution:
    """Apply the zero / one / many batch rules for a product."""
    if not batches:
        return BatchResolution(BatchOutcome.NONE)
    if len(batches) == 1:
        return BatchResolution(BatchOutcome.SINGLE, batch=batches[0])
    if product.allow_batches:
        logger.info(f"[STOCK] {len(batches)} batches for product {product.id}: choice required")
        return BatchResolution(BatchOutcome.CHOICE_REQUIRED, choices=list(batches))
    return BatchResolution(BatchOutcome.MERGED, batch=merge_batches(batches))


def group_into_batches(lines: List[LineItem], products: Dict[str, Product]) -> List[Dict[str, Any]]:
    """
    Group stock-entry lines into the batches they will create.

    Lines of a batch-tracked product group by (product, piece cost, expiry);
    products without batches collapse into one group with a
    quantity-weighted average piece cost. Quantities are in base-unit pieces.
    """
    groups: Dict[str, Dict[str, Any]] = {}

    for line in lines:
        product = products.get(line.product_id)
        no_batches = product is not None and not product.allow_batches
        pieces = line.pieces
        piece_cost = round2(line.unit_price / line.conversion)

        if no_batches:
            key = f"{line.product_id}-NO-BATCH"
        else:
            key = f"{line.product_id}-{piece_cost}-{line.expiry_date or 'no-expiry'}"

        group = groups.get(key)
        if group is None:
            groups[key] = {
                'batch_number': (line.batch_number or '').strip(),
                'product_id': line.product_id,
                'product_code': line.product_code,
                'product_name': line.name,
                'purchase_price': piece_cost,
                'expiry_date': None if no_batches else line.expiry_date,
                'quantity': pieces,
                'discount_amount': line.discount_amount,
                'vat_amount': line.vat_amount,
                'gross': line.gross,
                'total': line.total,
                'retail': line.retail,
                'wholesale': line.wholesale,
                'special1': line.special1,
                'special2': line.special2,
                'multi_unit_id': line.multi_unit_id,
                '_weighted_cost': piece_cost * pieces,
            }
            continue

        group['quantity'] += pieces
        group['discount_amount'] += line.discount_amount
        group['vat_amount'] += line.vat_amount
        group['gross'] += line.gross
        group['total'] += line.total
        group['_weighted_cost'] += piece_cost * pieces
        if no_batches and group['quantity'] > 0:
            group['purchase_price'] = round2(group['_weighted_cost'] / group['quantity'])

    result = []
    for group in groups.values():
        group.pop('_weighted_cost')
        result.append(group)
    return result
