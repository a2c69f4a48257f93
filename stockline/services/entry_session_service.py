"""
Document editing session.

One `EntrySession` owns everything about ONE open document: its lines and
header, the row transaction state, a pending batch choice, the lines of the
saved document being edited (for stock restitution) and the per-row lookup
request tokens. Sales invoices and opening-stock entries share this class;
the document kind decides whether rate tiers and stock caps apply (sales) or
purchase pricing with linked profit/retail fields does (stock entry).
"""
import itertools
import logging
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from stockline.domain.entities import (
    Batch, DocumentHeader, DocumentKind, LineField, LineItem, OriginalLine,
    Product, RateTier, TaxMode, TaxType, UnitOption
)
from stockline.exceptions import NotFoundError, PersistenceConflict, StockExhaustedError, ValidationError
from stockline.services.allocation_service import (
    QTY_NOT_AVAILABLE, clamp_quantity, max_quantity_for_row,
    pieces_available_for_selection, verify_live_stock
)
from stockline.services.batch_service import BatchOutcome, group_into_batches, resolve_batches
from stockline.services.pricing_service import (
    line_profit, recalculate_line, refresh_tax, sync_profit_fields
)
from stockline.services.row_edit_service import RowEditTracker, missing_field
from stockline.services.totals_service import calculate_document_totals, other_discount_from_percent
from stockline.services.unit_service import (
    build_unit_options, pick_default_unit, price_for_unit, stock_entry_prices
)
from stockline.utils.number_format import floor_qty, parse_numeric_input, round2, to_decimal, ZERO

logger = logging.getLogger(__name__)

LAST_VENDOR_PLACEHOLDER = 'N/A'

ADJUSTMENT_FIELDS = (
    'other_charges', 'freight', 'misc_charge', 'round_off',
    'cash_received', 'card_amount', 'old_balance',
)


class SelectionStatus(str, Enum):
    SELECTED = 'SELECTED'
    BATCH_REQUIRED = 'BATCH_REQUIRED'
    SUPERSEDED = 'SUPERSEDED'


@dataclass
class SelectionResult:
    status: SelectionStatus
    line: Optional[LineItem] = None
    batches: List[Batch] = field(default_factory=list)


@dataclass
class PendingBatchChoice:
    line_id: str
    token: int
    product: Product
    batches: List[Batch]
    matched_multi_unit_id: Optional[str] = None
    searched_tag: Optional[str] = None


@dataclass
class RowAdvance:
    """Outcome of a forward move out of a row: where focus goes next."""
    committed: bool
    focus: str
    line_id: Optional[str] = None


class EntrySession:
    """Editing state and operations for one open document."""

    def __init__(
        self,
        products,
        batches,
        stock,
        documents,
        kind: DocumentKind = DocumentKind.SALES_INVOICE,
        *,
        vat_rate='5',
        tax_type: TaxType = TaxType.TAXED,
        tax_mode: TaxMode = TaxMode.INCLUSIVE,
        rate_tier: RateTier = RateTier.WHOLESALE,
        cache=None,
        company_id: int = 1
    ):
        self.products = products
        self.batches = batches
        self.stock = stock
        self.documents = documents
        self.cache = cache
        self.company_id = company_id
        self.kind = DocumentKind(kind)
        self.vat_rate = to_decimal(vat_rate)
        self._defaults = (TaxType(tax_type), TaxMode(tax_mode), RateTier(rate_tier))
        self._request_seq = itertools.count(1)
        self.clear()

    def __repr__(self):
        return (
            f"<EntrySession(kind={self.kind.value}, document_no={self.document_no}, "
            f"lines={len(self.lines)})>"
        )

    def clear(self) -> None:
        """Reset to a fresh, unsaved document with one empty row."""
        tax_type, tax_mode, rate_tier = self._defaults
        self.header = DocumentHeader(
            kind=self.kind,
            tax_type=tax_type,
            tax_mode=tax_mode,
            rate_tier=rate_tier if self.kind == DocumentKind.SALES_INVOICE else None,
        )
        self.lines: List[LineItem] = [LineItem()]
        self.tracker = RowEditTracker()
        self.pending: Optional[PendingBatchChoice] = None
        self.original_lines: List[OriginalLine] = []
        self.document_no: Optional[str] = None
        self.is_saved = False
        self._products: Dict[str, Product] = {}
        self._tokens: Dict[str, int] = {}

    # =====================================================
    # HELPERS
    # =====================================================

    @property
    def is_sales(self) -> bool:
        return self.kind == DocumentKind.SALES_INVOICE

    @property
    def is_editing(self) -> bool:
        return self.document_no is not None

    def line(self, line_id: str) -> LineItem:
        for line in self.lines:
            if line.id == line_id:
                return line
        raise NotFoundError(f'Line {line_id} not found')

    def _index(self, line_id: str) -> int:
        for index, line in enumerate(self.lines):
            if line.id == line_id:
                return index
        raise NotFoundError(f'Line {line_id} not found')

    def _recalc(self, line: LineItem, edited: Optional[LineField] = None) -> None:
        recalculate_line(
            line, edited,
            is_taxed=self.header.is_taxed, tax_mode=self.header.tax_mode, rate=self.vat_rate
        )

    def _product_for(self, product_id: str) -> Product:
        product = self._products.get(product_id)
        if product is None:
            product = self.products.get_product(product_id)
            self._products[product_id] = product
        return product

    def _stock_for(self, product_id: str) -> Decimal:
        """Stock in pieces, through the short-lived cache when one is configured."""
        if self.cache is not None:
            return to_decimal(self.cache.get_stock_cached(
                self.company_id, product_id, lambda: self.stock.get_stock(product_id)
            ))
        return to_decimal(self.stock.get_stock(product_id))

    def _invalidate_stock_cache(self) -> None:
        if self.cache is not None:
            self.cache.invalidate_stock(self.company_id)

    # =====================================================
    # LOOKUP SUPERSESSION
    # =====================================================

    def request_token(self, line_id: str) -> int:
        """Issue a lookup request token for a row; any older token for it goes stale."""
        token = next(self._request_seq)
        self._tokens[line_id] = token
        return token

    def is_current(self, line_id: str, token: int) -> bool:
        return self._tokens.get(line_id) == token

    def _superseded(self, line_id: str, token: int) -> bool:
        if self.is_current(line_id, token):
            return False
        logger.info(f"[ENTRY] Discarding superseded lookup {token} for row {line_id}")
        return True

    # =====================================================
    # ROWS
    # =====================================================

    def new_line(self) -> LineItem:
        line = LineItem()
        self.lines.append(line)
        return line

    def remove_line(self, line_id: str) -> None:
        """Delete a row; the document always keeps at least one (possibly empty) row."""
        index = self._index(line_id)
        self.tracker.discard(line_id)
        self._tokens.pop(line_id, None)
        if self.pending is not None and self.pending.line_id == line_id:
            self.pending = None
        del self.lines[index]
        if not self.lines:
            self.lines.append(LineItem())

    def enter_row(self, line_id: str) -> Optional[str]:
        """The user moved into a row. Returns the id of a row reverted on the way, if any."""
        return self.tracker.enter_row(self.line(line_id), self.lines)

    def leave_grid(self, into_overlay: bool = False) -> Optional[str]:
        return self.tracker.leave_grid(self.lines, into_overlay)

    def advance_row(self, line_id: str) -> RowAdvance:
        """
        Forward progression out of a row (Enter on its last cell).

        An incomplete row keeps focus on its first missing cell, except an
        incomplete last row, which hands focus to the payment fields. A
        complete row is committed and focus moves to the next row, a new one
        being appended after the last.
        """
        line = self.line(line_id)
        index = self._index(line_id)
        is_last = index == len(self.lines) - 1

        missing = missing_field(line)
        if missing is not None:
            if is_last:
                return RowAdvance(committed=False, focus='payment')
            return RowAdvance(committed=False, focus=missing, line_id=line_id)

        self.tracker.commit()
        if not is_last:
            next_line = self.lines[index + 1]
            self.tracker.enter_row(next_line, self.lines)
            return RowAdvance(committed=True, focus='product', line_id=next_line.id)
        return RowAdvance(committed=True, focus='product', line_id=self.new_line().id)

    # =====================================================
    # PRODUCT SELECTION
    # =====================================================

    def select_by_code(self, line_id: str, code: str, token: Optional[int] = None) -> SelectionResult:
        """Select whatever product a typed code, barcode or serial tag resolves to."""
        if token is None:
            token = self.request_token(line_id)
        product, matched_multi_unit_id = self.products.find_by_code(code)
        return self.select_product(line_id, product, matched_multi_unit_id, code, token=token)

    def select_product(
        self,
        line_id: str,
        product: Product,
        matched_multi_unit_id: Optional[str] = None,
        searched_tag: Optional[str] = None,
        token: Optional[int] = None
    ) -> SelectionResult:
        """
        Put a product into a row.

        Sales rows resolve the product's batches first: several batches on a
        batch-tracked product suspend the selection until `choose_batch`.
        Raises StockExhaustedError (row left unchanged) when no stock is left.
        """
        line = self.line(line_id)
        if token is None:
            token = self.request_token(line_id)
        if self._superseded(line_id, token):
            return SelectionResult(SelectionStatus.SUPERSEDED)

        if not self.is_sales:
            return self._complete_stock_entry_selection(line, product, matched_multi_unit_id, searched_tag)

        resolution = resolve_batches(product, self.batches.list_batches(product.id))
        if self._superseded(line_id, token):
            return SelectionResult(SelectionStatus.SUPERSEDED)

        if resolution.outcome == BatchOutcome.CHOICE_REQUIRED:
            self.pending = PendingBatchChoice(
                line_id=line_id,
                token=token,
                product=product,
                batches=resolution.choices,
                matched_multi_unit_id=matched_multi_unit_id,
                searched_tag=searched_tag,
            )
            return SelectionResult(SelectionStatus.BATCH_REQUIRED, line=line, batches=resolution.choices)

        return self._complete_sales_selection(
            line, product, resolution.batch, resolution.caps_row,
            matched_multi_unit_id, searched_tag, token
        )

    def choose_batch(self, batch_number: str) -> SelectionResult:
        """Finish a suspended selection with the batch the user picked."""
        pending = self.pending
        if pending is None:
            raise ValidationError('No batch choice is pending')
        batch = next((b for b in pending.batches if b.batch_number == batch_number), None)
        if batch is None:
            raise NotFoundError(f'Batch {batch_number} is not among the offered batches')

        self.pending = None
        line = self.line(pending.line_id)
        return self._complete_sales_selection(
            line, pending.product, batch, True,
            pending.matched_multi_unit_id, pending.searched_tag, pending.token
        )

    def cancel_batch_choice(self) -> None:
        """Abandon a suspended selection; the row keeps whatever it held before."""
        if self.pending is not None:
            logger.info(f"[ENTRY] Batch choice cancelled for row {self.pending.line_id}")
        self.pending = None

    def _complete_sales_selection(
        self,
        line: LineItem,
        product: Product,
        batch: Optional[Batch],
        batch_scoped: bool,
        matched_multi_unit_id: Optional[str],
        searched_tag: Optional[str],
        token: int
    ) -> SelectionResult:
        if batch is None:
            stock = self._stock_for(product.id)
        elif batch.is_merged:
            # the pool never offers more than the product holds
            stock = min(batch.quantity, self._stock_for(product.id))
        else:
            stock = batch.quantity
        if self._superseded(line.id, token):
            return SelectionResult(SelectionStatus.SUPERSEDED)

        base_stock, remaining = pieces_available_for_selection(
            product.id, stock, line.id, self.lines, self.original_lines, batch_scoped
        )
        if remaining <= 0:
            logger.info(f"[STOCK] Selection of {product.id} rejected: {remaining} pieces left")
            raise StockExhaustedError(product.name)

        tier = self.header.rate_tier
        units = build_unit_options(product, tier, batch)
        unit = pick_default_unit(units, product, matched_multi_unit_id, searched_tag)
        max_qty = remaining / unit.effective_conversion
        purchase = product.purchase_price or (batch.purchase_price if batch is not None else ZERO)

        line.product_id = product.id
        line.product_code = product.code
        line.name = product.name
        line.serial_tag = unit.serial_tag or product.serial_tag or ''
        line.unit_id = unit.id
        line.unit_name = unit.name
        line.available_units = units
        line.quantity = min(Decimal('1'), floor_qty(max_qty))
        line.unit_price = round2(unit.price)
        line.purchase_price = purchase
        line.discount_percent = ZERO
        line.discount_amount = ZERO
        line.base_stock_pieces = base_stock
        line.batch_max_pieces = batch.quantity if batch_scoped else None
        line.batch_number = batch.batch_number if batch is not None else None
        line.expiry_date = batch.expiry_date if batch is not None else None
        line.retail = batch.retail if batch is not None and batch.retail else (product.retail_price or ZERO)
        line.wholesale = batch.wholesale if batch is not None and batch.wholesale else (product.wholesale_price or ZERO)
        self._recalc(line)

        self._products[product.id] = product
        # A freshly filled row has nothing to revert to
        self.tracker.commit()
        logger.info(f"[ENTRY] Row {line.id} <- product {product.id} ({line.quantity} {line.unit_name})")
        return SelectionResult(SelectionStatus.SELECTED, line=line)

    def _complete_stock_entry_selection(
        self,
        line: LineItem,
        product: Product,
        matched_multi_unit_id: Optional[str],
        searched_tag: Optional[str]
    ) -> SelectionResult:
        units = build_unit_options(product, None)
        unit = pick_default_unit(units, product, matched_multi_unit_id, searched_tag)
        prices = stock_entry_prices(product, unit)

        line.product_id = product.id
        line.product_code = product.code
        line.name = product.name
        line.serial_tag = unit.serial_tag or product.serial_tag or ''
        line.unit_id = unit.id
        line.unit_name = unit.name
        line.available_units = units
        line.quantity = Decimal('1')
        line.unit_price = prices['unit_price']
        line.purchase_price = product.purchase_price
        line.discount_percent = ZERO
        line.discount_amount = ZERO
        line.retail = prices['retail']
        line.wholesale = prices['wholesale']
        line.special1 = prices['special1']
        line.special2 = prices['special2']
        line.profit_percent = prices['profit_percent']
        self._recalc(line)

        self._products[product.id] = product
        self.tracker.commit()
        return SelectionResult(SelectionStatus.SELECTED, line=line)

    # =====================================================
    # FIELD EDITS
    # =====================================================

    def change_unit(self, line_id: str, unit_id: str) -> LineItem:
        """
        Switch a row to another of its units.

        The price is re-derived from the new unit, discounts reset and the
        quantity re-capped for the new conversion.
        """
        line = self.line(line_id)
        unit: Optional[UnitOption] = next((u for u in line.available_units if u.id == unit_id), None)
        if unit is None:
            raise NotFoundError(f'Unit {unit_id} is not available for this row')

        if self.is_sales:
            cap = max_quantity_for_row(line, self.lines, unit.effective_conversion)
            if cap <= 0:
                raise StockExhaustedError(line.name, f'Cannot sell "{line.name}": not enough stock for this unit.')
            line.unit_price = price_for_unit(unit, self.header.rate_tier)
            line.quantity = min(line.quantity, floor_qty(cap))
        else:
            prices = stock_entry_prices(self._product_for(line.product_id), unit)
            line.unit_price = prices['unit_price']
            line.quantity = Decimal('1')
            line.retail = prices['retail']
            line.wholesale = prices['wholesale']
            line.special1 = prices['special1']
            line.special2 = prices['special2']
            line.profit_percent = prices['profit_percent']

        line.unit_id = unit.id
        line.unit_name = unit.name
        line.serial_tag = unit.serial_tag or ''
        line.discount_percent = ZERO
        line.discount_amount = ZERO
        self._recalc(line)
        return line

    def edit_line(self, line_id: str, field_name, value) -> LineItem:
        """Apply one cell edit and recompute the row."""
        line = self.line(line_id)
        edited = LineField(field_name)
        try:
            value = to_decimal(value)
        except ValueError:
            raise ValidationError(f'"{value}" is not a number for {edited.value}')

        if edited in (LineField.RETAIL, LineField.WHOLESALE, LineField.PROFIT_PERCENT) and self.is_sales:
            raise ValidationError(f'"{edited.value}" is not editable on a sales invoice')

        if edited == LineField.QUANTITY:
            if self.header.caps_stock and not line.is_empty:
                line.quantity, _ = clamp_quantity(line, value, self.lines)
            else:
                line.quantity = max(ZERO, value)
        elif edited == LineField.UNIT_PRICE:
            line.unit_price = round2(value)
        else:
            setattr(line, edited.value, value)

        if edited in (LineField.QUANTITY, LineField.UNIT_PRICE,
                      LineField.DISCOUNT_PERCENT, LineField.DISCOUNT_AMOUNT):
            self._recalc(line, edited)
        if not self.is_sales and edited in (LineField.UNIT_PRICE, LineField.RETAIL, LineField.PROFIT_PERCENT):
            sync_profit_fields(line, edited)
        return line

    def commit_quantity(self, line_id: str, raw) -> Optional[str]:
        """
        The quantity cell lost focus with a typed value.

        Returns the "Qty not available" notice when the value had to be
        clamped; editing is not blocked either way.
        """
        line = self.line(line_id)
        parsed = parse_numeric_input(raw)
        if line.is_empty or not self.header.caps_stock:
            self.edit_line(line_id, LineField.QUANTITY, parsed)
            return None

        quantity, clamped = clamp_quantity(line, parsed, self.lines)
        line.quantity = quantity
        self._recalc(line, LineField.QUANTITY)
        return QTY_NOT_AVAILABLE if clamped else None

    def set_batch_details(self, line_id: str, batch_number: Optional[str] = None, expiry_date: Optional[str] = None) -> LineItem:
        """Stock entry: record the batch number and expiry a row will create."""
        if self.is_sales:
            raise ValidationError('Batch details are chosen, not typed, on a sales invoice')
        line = self.line(line_id)
        if batch_number is not None:
            line.batch_number = batch_number.strip() or None
        if expiry_date is not None:
            line.expiry_date = expiry_date or None
        return line

    # =====================================================
    # HEADER
    # =====================================================

    def _refresh_all_taxes(self) -> None:
        for line in self.lines:
            if not line.is_empty:
                refresh_tax(line, is_taxed=self.header.is_taxed, tax_mode=self.header.tax_mode, rate=self.vat_rate)

    def set_tax_type(self, tax_type) -> None:
        self.header.tax_type = TaxType(tax_type)
        self._refresh_all_taxes()

    def set_tax_mode(self, tax_mode) -> None:
        self.header.tax_mode = TaxMode(tax_mode)
        self._refresh_all_taxes()

    def set_rate_tier(self, rate_tier) -> None:
        """Tier used by later selections; rows already filled keep their prices."""
        if not self.is_sales:
            raise ValidationError('Rate tiers only apply to sales invoices')
        self.header.rate_tier = RateTier(rate_tier)

    def set_other_disc_percent(self, percent) -> Decimal:
        percent = to_decimal(percent)
        self.header.other_disc_percent = percent
        sub_total = self.totals()['sub_total']
        self.header.other_discount = other_discount_from_percent(sub_total, percent)
        return self.header.other_discount

    def set_other_discount(self, amount) -> None:
        self.header.other_discount = round2(to_decimal(amount))
        self.header.other_disc_percent = ZERO

    def set_adjustment(self, name: str, value) -> None:
        if name not in ADJUSTMENT_FIELDS:
            raise ValidationError(f'Unknown adjustment "{name}"')
        setattr(self.header, name, round2(to_decimal(value)))

    # =====================================================
    # READ MODELS
    # =====================================================

    def totals(self) -> Dict[str, Any]:
        return calculate_document_totals(self.lines, self.header, self.vat_rate)

    def product_info(self, line_id: str) -> Optional[Dict[str, Any]]:
        """Side-panel figures for a row: profit, stock, prices and the last vendor."""
        line = self.line(line_id)
        if line.is_empty:
            return None

        if line.has_batch_cap:
            stock = line.batch_max_pieces
        else:
            stock = self._stock_for(line.product_id)

        try:
            last_vendor = self._product_for(line.product_id).last_vendor or LAST_VENDOR_PLACEHOLDER
        except Exception as e:
            logger.warning(f"[ENTRY] Last vendor lookup failed for {line.product_id}: {e}")
            last_vendor = LAST_VENDOR_PLACEHOLDER

        return {
            'profit': round2(line_profit(line)),
            'stock': stock,
            'purchase_rate': line.purchase_price,
            'retail_price': line.retail,
            'wholesale_price': line.wholesale,
            'last_vendor': last_vendor,
            'batch_number': line.batch_number,
            'expiry_date': line.expiry_date,
        }

    # =====================================================
    # VALIDATION AND PAYLOAD
    # =====================================================

    def validate(self) -> List[LineItem]:
        """Return the rows to submit, or raise ValidationError."""
        with_code = [line for line in self.lines if line.product_code]
        without_code = [line for line in self.lines if not line.product_code]

        if len(without_code) > 1:
            raise ValidationError('Enter data correctly. Multiple rows without product code found.')
        if not with_code:
            raise ValidationError('At least one product with Item Code is required')

        invalid_rows = [
            self._index(line.id) + 1 for line in with_code
            if line.quantity <= 0 or line.unit_price <= 0
        ]
        if invalid_rows:
            raise ValidationError(
                f"Row(s) {', '.join(str(n) for n in invalid_rows)} have invalid Quantity or Price. "
                f"Quantity and Price must be greater than 0.",
                payload={'rows': invalid_rows}
            )

        valid = [line for line in with_code if line.product_id and line.quantity > 0]
        if not valid:
            raise ValidationError('At least one product is required')
        return valid

    def build_payload(self, valid_lines: List[LineItem]) -> Dict[str, Any]:
        """Persistence payload for the validated rows plus header and totals."""
        vat_rate = self.vat_rate if self.header.is_taxed else ZERO
        items = []
        for line in valid_lines:
            items.append({
                'product_id': line.product_id,
                'product_code': line.product_code,
                'serial_tag': line.serial_tag,
                'description': line.name,
                'unit_id': line.unit_id,
                'unit_name': line.unit_name,
                'multi_unit_id': line.multi_unit_id,
                'conversion': line.conversion,
                'quantity': line.quantity,
                'unit_price': line.unit_price,
                'discount_percent': line.discount_percent,
                'discount_amount': line.discount_amount,
                'vat_rate': vat_rate,
                'vat_amount': line.vat_amount,
                'total': line.total,
                'batch_number': line.batch_number,
                'expiry_date': line.expiry_date,
            })

        header = self.header
        totals = self.totals()
        payload = {
            'kind': self.kind.value,
            'header': {
                'tax_type': header.tax_type.value,
                'tax_mode': header.tax_mode.value,
                'rate_tier': header.rate_tier.value if header.rate_tier else None,
                'other_disc_percent': header.other_disc_percent,
                'other_discount': header.other_discount,
                'other_charges': header.other_charges,
                'freight': header.freight,
                'misc_charge': header.misc_charge,
                'round_off': header.round_off,
                'cash_received': header.cash_received,
                'card_amount': header.card_amount,
            },
            'totals': {
                'sub_total': totals['sub_total'],
                'total_vat': totals['total_vat'],
                'grand_total': totals['grand_total'],
            },
            'items': items,
        }
        if not self.is_sales:
            products = {line.product_id: self._product_for(line.product_id) for line in valid_lines}
            payload['batches'] = group_into_batches(valid_lines, products)
        return payload

    # =====================================================
    # PERSISTENCE
    # =====================================================

    def _pre_submit(self, credit_original: bool) -> Dict[str, Any]:
        valid = self.validate()
        if self.header.caps_stock:
            # Live figures only; the cache is bypassed here
            verify_live_stock(valid, self.stock.get_stock, self.original_lines if credit_original else ())
        return self.build_payload(valid)

    def _remember_saved(self, payload: Dict[str, Any]) -> None:
        self.original_lines = [
            OriginalLine(item['product_id'], item['quantity'], item['conversion'])
            for item in payload['items']
        ]
        self.is_saved = True

    def save(self) -> str:
        """Validate, check live stock and create the document. Returns its number."""
        if self.is_editing:
            raise ValidationError('Document is already saved; update it instead')
        payload = self._pre_submit(credit_original=False)
        try:
            document_no = self.documents.create(payload)
        except PersistenceConflict as e:
            logger.warning(f"[ENTRY] Save failed, document kept in memory: {e.message}")
            raise
        self._invalidate_stock_cache()
        self.document_no = document_no
        self._remember_saved(payload)
        return document_no

    def update(self) -> str:
        """Replace the saved document with the current rows."""
        if not self.is_editing:
            raise ValidationError('Only a saved document can be updated')
        payload = self._pre_submit(credit_original=True)
        try:
            self.documents.update(self.document_no, payload)
        except PersistenceConflict as e:
            logger.warning(f"[ENTRY] Update of {self.document_no} failed: {e.message}")
            raise
        self._invalidate_stock_cache()
        self._remember_saved(payload)
        return self.document_no

    def delete(self) -> None:
        if not self.is_editing:
            raise ValidationError('Only a saved document can be deleted')
        try:
            self.documents.delete(self.document_no)
        except PersistenceConflict as e:
            logger.warning(f"[ENTRY] Delete of {self.document_no} failed: {e.message}")
            raise
        self._invalidate_stock_cache()
        self.clear()

    def load_document(self, document_no: str) -> None:
        """
        Open a saved document for editing.

        Rows are rebuilt against the current product data. Their stock figure
        is the live stock plus what the document itself already deducted, so
        the saved quantities stay editable.
        """
        data = self.documents.load(document_no)
        kind = DocumentKind(data['kind'])
        if kind != self.kind:
            raise ValidationError(f'{document_no} is a {kind.value} document')

        self.clear()
        raw_header = data['header']
        self.header.tax_type = TaxType(raw_header['tax_type'])
        self.header.tax_mode = TaxMode(raw_header['tax_mode'])
        if self.is_sales and raw_header.get('rate_tier'):
            self.header.rate_tier = RateTier(raw_header['rate_tier'])
        for name in ('other_disc_percent', 'other_discount') + ADJUSTMENT_FIELDS:
            if name in raw_header:
                setattr(self.header, name, to_decimal(raw_header[name]))

        self.original_lines = [
            OriginalLine(str(item['product_id']), to_decimal(item['quantity']), to_decimal(item.get('conversion'), Decimal('1')))
            for item in data['items']
        ]
        lines = [self._line_from_saved(item) for item in data['items']]
        self.lines = lines or [LineItem()]

        if self.is_sales:
            for line in self.lines:
                if line.is_empty:
                    continue
                line.base_stock_pieces, _ = pieces_available_for_selection(
                    line.product_id, self._stock_for(line.product_id), line.id, self.lines, self.original_lines
                )

        self.document_no = data['document_no']
        self.is_saved = True
        logger.info(f"[ENTRY] Loaded {self.document_no} ({len(lines)} lines) for editing")

    def _line_from_saved(self, item: Dict[str, Any]) -> LineItem:
        product_id = str(item['product_id'])
        try:
            product = self._product_for(product_id)
        except NotFoundError:
            # Product gone from the catalog: keep the saved figures on its base unit
            product = Product(id=product_id, code=item.get('product_code') or '', name=item.get('description') or '')
        units = build_unit_options(product, self.header.rate_tier if self.is_sales else None)

        unit = None
        if item.get('multi_unit_id'):
            unit = next((u for u in units if u.multi_unit_id == item['multi_unit_id']), None)
        if unit is None and item.get('unit_id'):
            unit = next((u for u in units if u.id == item['unit_id']), None)
        if unit is None and item.get('unit_name'):
            unit = next((u for u in units if u.name.lower() == str(item['unit_name']).lower()), None)
        if unit is None:
            unit = next((u for u in units if not u.is_multi_unit), units[0])

        quantity = to_decimal(item['quantity'])
        unit_price = to_decimal(item['unit_price'])
        line = LineItem(
            product_id=product_id,
            product_code=item.get('product_code') or product.code,
            serial_tag=item.get('serial_tag') or '',
            name=product.name or item.get('description', ''),
            unit_id=unit.id,
            unit_name=unit.name,
            available_units=units,
            quantity=quantity,
            unit_price=unit_price,
            purchase_price=product.purchase_price,
            gross=round2(quantity * unit_price),
            discount_percent=to_decimal(item.get('discount_percent')),
            discount_amount=to_decimal(item.get('discount_amount')),
            vat_amount=to_decimal(item.get('vat_amount')),
            total=to_decimal(item.get('total')),
            batch_number=item.get('batch_number'),
            expiry_date=item.get('expiry_date'),
            retail=product.retail_price or ZERO,
            wholesale=product.wholesale_price or ZERO,
        )
        return line

    # =====================================================
    # DRAFTS
    # =====================================================

    def draft(self) -> Dict[str, Any]:
        """Plain-data copy of the unsaved document: header plus filled rows."""
        header = asdict(self.header)
        return {
            'kind': self.kind.value,
            'header': header,
            'lines': [asdict(line) for line in self.lines if not line.is_empty],
        }

    def load_draft(self, draft: Dict[str, Any]) -> None:
        """Restore a draft as a new, unsaved document."""
        if DocumentKind(draft['kind']) != self.kind:
            raise ValidationError(f"Draft is a {draft['kind']} document")
        self.clear()

        raw = dict(draft['header'])
        self.header = DocumentHeader(
            kind=self.kind,
            tax_type=TaxType(raw.pop('tax_type')),
            tax_mode=TaxMode(raw.pop('tax_mode')),
            rate_tier=RateTier(raw['rate_tier']) if raw.get('rate_tier') else None,
            **{name: to_decimal(raw[name]) for name in ('other_disc_percent', 'other_discount') + ADJUSTMENT_FIELDS if name in raw}
        )

        lines = []
        for raw_line in draft['lines']:
            values = dict(raw_line)
            values['available_units'] = [UnitOption(**unit) for unit in values.get('available_units') or []]
            lines.append(LineItem(**values))
        self.lines = lines or [LineItem()]


def open_session(context: Dict[str, Any], kind: DocumentKind = DocumentKind.SALES_INVOICE) -> EntrySession:
    """Build a session over the context's catalog, cache and configured defaults."""
    config = context['config']
    catalog = context['catalog']
    return EntrySession(
        catalog, catalog, catalog, catalog,
        kind,
        vat_rate=config.get('VAT_RATE', '5'),
        tax_type=config.get('DEFAULT_TAX_TYPE', TaxType.TAXED.value),
        tax_mode=config.get('DEFAULT_TAX_MODE', TaxMode.INCLUSIVE.value),
        rate_tier=config.get('DEFAULT_RATE_TIER', RateTier.WHOLESALE.value),
        cache=context.get('cache'),
        company_id=config.get('COMPANY_ID', 1),
    )
