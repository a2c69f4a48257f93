"""
Collaborators consumed by the entry engine, and a SQLAlchemy-backed
implementation of them.

The engine only depends on the Protocols. `SqlCatalog` reads products,
batches and stock from the `stockline.models` tables and persists documents,
moving stock the way the stock service does: a sales invoice deducts the
pieces it sells, an opening-stock entry adds the batches it records, and
update/delete first undo what the document originally did.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from stockline import models
from stockline.domain.entities import Batch, DocumentKind, MERGED_BATCH, Product
from stockline.exceptions import EntryError, NotFoundError, PersistenceConflict
from stockline.utils.number_format import to_decimal, ZERO

logger = logging.getLogger(__name__)

DOCUMENT_PREFIXES = {
    DocumentKind.SALES_INVOICE: 'SI',
    DocumentKind.OPENING_STOCK: 'OS',
}


class ProductLookup(Protocol):
    def get_product(self, product_id: str) -> Product: ...

    def find_by_code(self, code: str) -> Tuple[Product, Optional[str]]:
        """Product for a code, barcode or serial tag, plus the alternate unit the tag matched."""
        ...


class BatchLookup(Protocol):
    def list_batches(self, product_id: str) -> List[Batch]: ...


class StockLookup(Protocol):
    def get_stock(self, product_id: str) -> Decimal: ...


class DocumentStore(Protocol):
    def create(self, payload: Dict[str, Any]) -> str: ...

    def update(self, document_no: str, payload: Dict[str, Any]) -> str: ...

    def delete(self, document_no: str) -> None: ...

    def load(self, document_no: str) -> Dict[str, Any]: ...


def _parse_date(value) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class SqlCatalog:
    """Product, batch, stock and document collaborator over one SQLAlchemy session."""

    def __init__(self, session, company_id: int):
        self.session = session
        self.company_id = company_id

    def __repr__(self):
        return f"<SqlCatalog(company_id={self.company_id})>"

    # =====================================================
    # LOOKUPS
    # =====================================================

    def _product_row(self, product_id) -> models.Product:
        try:
            pid = int(product_id)
        except (TypeError, ValueError):
            raise NotFoundError(f'Product {product_id} not found')
        product = self.session.query(models.Product).filter_by(
            id=pid, company_id=self.company_id, active=True
        ).first()
        if not product:
            raise NotFoundError(f'Product {product_id} not found')
        return product

    def get_product(self, product_id: str) -> Product:
        return Product.from_record(self._product_row(product_id).to_record())

    def find_by_code(self, code: str) -> Tuple[Product, Optional[str]]:
        """
        Resolve a typed code.

        Checks the product code and base barcode first, then the barcodes of
        alternate units; a unit match also returns that unit's multi-unit id.
        """
        code = (code or '').strip()
        if not code:
            raise NotFoundError('Empty product code')

        product = self.session.query(models.Product).filter(
            models.Product.company_id == self.company_id,
            models.Product.active.is_(True),
            or_(models.Product.code == code, models.Product.barcode == code)
        ).first()
        if product:
            return Product.from_record(product.to_record()), None

        unit = self.session.query(models.ProductUnit).join(models.Product).filter(
            models.Product.company_id == self.company_id,
            models.Product.active.is_(True),
            models.ProductUnit.is_active.is_(True),
            models.ProductUnit.barcode == code
        ).first()
        if unit:
            return Product.from_record(unit.product.to_record()), str(unit.id)

        raise NotFoundError(f'No product for code "{code}"')

    def list_batches(self, product_id: str) -> List[Batch]:
        product = self._product_row(product_id)
        return [Batch.from_record(batch.to_record()) for batch in product.batches]

    def get_stock(self, product_id: str) -> Decimal:
        product = self._product_row(product_id)
        return to_decimal(product.on_hand_qty)

    # =====================================================
    # STOCK MOVEMENT
    # =====================================================

    def _stock_row(self, product_id) -> models.ProductStock:
        stock = self.session.query(models.ProductStock).filter_by(product_id=int(product_id)).first()
        if stock is None:
            stock = models.ProductStock(product_id=int(product_id), on_hand_qty=ZERO)
            self.session.add(stock)
            self.session.flush()
        return stock

    def _find_batch(self, product_id, batch_number) -> Optional[models.StockBatch]:
        if not batch_number or batch_number == MERGED_BATCH:
            return None
        return self.session.query(models.StockBatch).filter_by(
            product_id=int(product_id), batch_number=batch_number
        ).first()

    def _draw_oldest_first(self, product_id, pieces: Decimal) -> List[Dict[str, str]]:
        """
        Take pieces from the product's batches, oldest first.

        Returns the draws as [{'batch_id', 'pieces'}] so the sale can be
        undone exactly. Pieces beyond what the batches hold are left undrawn.
        """
        draws = []
        batches = self.session.query(models.StockBatch).filter(
            models.StockBatch.product_id == int(product_id),
            models.StockBatch.quantity > 0
        ).order_by(models.StockBatch.id).all()
        for batch in batches:
            if pieces <= 0:
                break
            taken = min(pieces, to_decimal(batch.quantity))
            batch.quantity = to_decimal(batch.quantity) - taken
            pieces -= taken
            draws.append({'batch_id': str(batch.id), 'pieces': str(taken)})
        return draws

    def _restore_draws(self, draws: List[Dict[str, str]]) -> None:
        for draw in draws or []:
            batch = self.session.get(models.StockBatch, int(draw['batch_id']))
            if batch is not None:
                batch.quantity = to_decimal(batch.quantity) + to_decimal(draw['pieces'])

    def _apply_sale(self, document: models.EntryDocument) -> None:
        """Deduct the pieces of a sales invoice from stock and batches."""
        for line in document.lines:
            pieces = to_decimal(line.pieces)
            stock = self._stock_row(line.product_id)
            new_qty = to_decimal(stock.on_hand_qty) - pieces
            if new_qty < 0:
                raise PersistenceConflict(
                    f'Insufficient stock for "{line.description}". '
                    f'Available: {stock.on_hand_qty}, Required: {pieces}'
                )
            stock.on_hand_qty = new_qty

            batch = self._find_batch(line.product_id, line.batch_number)
            if batch is not None:
                batch.quantity = to_decimal(batch.quantity) - pieces
                line.batch_draws = [{'batch_id': str(batch.id), 'pieces': str(pieces)}]
            else:
                # merged or unbatched lines
                line.batch_draws = self._draw_oldest_first(line.product_id, pieces)

    def _undo_sale(self, document: models.EntryDocument) -> None:
        for line in document.lines:
            stock = self._stock_row(line.product_id)
            stock.on_hand_qty = to_decimal(stock.on_hand_qty) + to_decimal(line.pieces)
            self._restore_draws(line.batch_draws)

    def _apply_opening_stock(self, document: models.EntryDocument, batches: List[Dict[str, Any]]) -> None:
        for index, group in enumerate(batches, start=1):
            pieces = to_decimal(group['quantity'])
            stock = self._stock_row(group['product_id'])
            stock.on_hand_qty = to_decimal(stock.on_hand_qty) + pieces
            self.session.add(models.StockBatch(
                product_id=int(group['product_id']),
                document_id=document.id,
                batch_number=group.get('batch_number') or f"{document.document_no}-{index}",
                purchase_price=to_decimal(group['purchase_price']),
                quantity=pieces,
                retail=to_decimal(group.get('retail')),
                wholesale=to_decimal(group.get('wholesale')),
                expiry_date=_parse_date(group.get('expiry_date')),
            ))

    def _undo_opening_stock(self, document: models.EntryDocument) -> None:
        created = self.session.query(models.StockBatch).filter_by(document_id=document.id).all()
        for batch in created:
            stock = self._stock_row(batch.product_id)
            stock.on_hand_qty = to_decimal(stock.on_hand_qty) - to_decimal(batch.quantity)
            self.session.delete(batch)

    def _apply(self, document: models.EntryDocument, payload: Dict[str, Any]) -> None:
        if document.kind == DocumentKind.SALES_INVOICE:
            self._apply_sale(document)
        else:
            self._apply_opening_stock(document, payload.get('batches') or [])

    def _undo(self, document: models.EntryDocument) -> None:
        if document.kind == DocumentKind.SALES_INVOICE:
            self._undo_sale(document)
        else:
            self._undo_opening_stock(document)

    # =====================================================
    # DOCUMENTS
    # =====================================================

    def _fill_document(self, document: models.EntryDocument, payload: Dict[str, Any]) -> None:
        header = payload['header']
        totals = payload.get('totals') or {}
        document.tax_type = header['tax_type']
        document.tax_mode = header['tax_mode']
        document.rate_tier = header.get('rate_tier')
        for name in ('other_disc_percent', 'other_discount', 'other_charges', 'freight',
                     'misc_charge', 'round_off', 'cash_received', 'card_amount'):
            setattr(document, name, to_decimal(header.get(name)))
        document.sub_total = to_decimal(totals.get('sub_total'))
        document.total_vat = to_decimal(totals.get('total_vat'))
        document.grand_total = to_decimal(totals.get('grand_total'))

        document.lines = [
            models.EntryDocumentLine(
                line_no=index,
                product_id=int(item['product_id']),
                product_code=item['product_code'],
                serial_tag=item.get('serial_tag') or None,
                description=item['description'],
                unit_id=item.get('unit_id'),
                unit_name=item.get('unit_name'),
                multi_unit_id=item.get('multi_unit_id'),
                conversion=to_decimal(item.get('conversion'), Decimal('1')),
                quantity=to_decimal(item['quantity']),
                unit_price=to_decimal(item['unit_price']),
                discount_percent=to_decimal(item.get('discount_percent')),
                discount_amount=to_decimal(item.get('discount_amount')),
                vat_rate=to_decimal(item.get('vat_rate')),
                vat_amount=to_decimal(item.get('vat_amount')),
                total=to_decimal(item['total']),
                batch_number=item.get('batch_number') or None,
                expiry_date=_parse_date(item.get('expiry_date')),
            )
            for index, item in enumerate(payload['items'], start=1)
        ]

    def _document_row(self, document_no: str) -> models.EntryDocument:
        document = self.session.query(models.EntryDocument).filter_by(
            document_no=document_no, company_id=self.company_id
        ).first()
        if not document:
            raise NotFoundError(f'Document {document_no} not found')
        return document

    def _run(self, action: str, fn):
        """Run a write in one transaction; failures roll back and surface as PersistenceConflict."""
        try:
            result = fn()
            self.session.commit()
            return result
        except PersistenceConflict as e:
            self.session.rollback()
            logger.warning(f"[ENTRY] {action} rejected: {e.message}")
            raise
        except NotFoundError:
            self.session.rollback()
            raise
        except (SQLAlchemyError, EntryError, KeyError, ValueError) as e:
            self.session.rollback()
            logger.exception(f"[ENTRY] {action} failed: {e}")
            raise PersistenceConflict(f'{action} failed: {e}')

    def create(self, payload: Dict[str, Any]) -> str:
        """Persist a new document and move stock; returns the assigned document number."""
        def _create():
            kind = DocumentKind(payload['kind'])
            document = models.EntryDocument(company_id=self.company_id, kind=kind)
            self._fill_document(document, payload)
            self.session.add(document)
            self.session.flush()
            document.document_no = f"{DOCUMENT_PREFIXES[kind]}-{document.id:05d}"
            self._apply(document, payload)
            logger.info(
                f"[ENTRY] Created {document.document_no} "
                f"({len(document.lines)} lines, total {document.grand_total})"
            )
            return document.document_no
        return self._run('Save', _create)

    def update(self, document_no: str, payload: Dict[str, Any]) -> str:
        """Replace a document's header and lines, undoing its original stock effect first."""
        def _update():
            document = self._document_row(document_no)
            self._undo(document)
            self.session.flush()
            self._fill_document(document, payload)
            self.session.flush()
            self._apply(document, payload)
            logger.info(f"[ENTRY] Updated {document_no} ({len(document.lines)} lines)")
            return document_no
        return self._run('Update', _update)

    def delete(self, document_no: str) -> None:
        def _delete():
            document = self._document_row(document_no)
            self._undo(document)
            self.session.delete(document)
            logger.info(f"[ENTRY] Deleted {document_no}")
        self._run('Delete', _delete)

    def load(self, document_no: str) -> Dict[str, Any]:
        """Saved document as a header/items mapping (same keys as the save payload)."""
        document = self._document_row(document_no)
        header = {
            'tax_type': document.tax_type,
            'tax_mode': document.tax_mode,
            'rate_tier': document.rate_tier,
        }
        for name in ('other_disc_percent', 'other_discount', 'other_charges', 'freight',
                     'misc_charge', 'round_off', 'cash_received', 'card_amount'):
            header[name] = to_decimal(getattr(document, name))

        items = []
        for line in document.lines:
            items.append({
                'product_id': str(line.product_id),
                'product_code': line.product_code,
                'serial_tag': line.serial_tag or '',
                'description': line.description,
                'unit_id': line.unit_id,
                'unit_name': line.unit_name,
                'multi_unit_id': line.multi_unit_id,
                'conversion': to_decimal(line.conversion),
                'quantity': to_decimal(line.quantity),
                'unit_price': to_decimal(line.unit_price),
                'discount_percent': to_decimal(line.discount_percent),
                'discount_amount': to_decimal(line.discount_amount),
                'vat_rate': to_decimal(line.vat_rate),
                'vat_amount': to_decimal(line.vat_amount),
                'total': to_decimal(line.total),
                'batch_number': line.batch_number,
                'expiry_date': line.expiry_date.isoformat() if line.expiry_date else None,
            })

        return {
            'document_no': document.document_no,
            'kind': document.kind.value,
            'header': header,
            'items': items,
        }
