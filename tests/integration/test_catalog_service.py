"""
Integration tests for the SQL-backed catalog and document store.
"""

from datetime import date
from decimal import Decimal

import pytest

from stockline.domain.entities import DocumentKind
from stockline.exceptions import NotFoundError, PersistenceConflict, StockExhaustedError
from stockline.models import EntryDocument, StockBatch
from stockline.services.entry_session_service import EntrySession, SelectionStatus, open_session


def entry_session(catalog, kind=DocumentKind.SALES_INVOICE):
    return EntrySession(catalog, catalog, catalog, catalog, kind)


def stock_of(catalog, product):
    return catalog.get_stock(str(product.id))


class TestLookups:
    """Tests for product, batch and stock lookups."""

    def test_find_by_code(self, sql_catalog, seeded):
        product, matched = sql_catalog.find_by_code('PEN')
        assert product.id == str(seeded['pen'].id)
        assert product.base_unit_name == 'PCS'
        assert product.last_vendor == 'Acme Supplies'
        assert matched is None

    def test_find_by_barcode(self, sql_catalog, seeded):
        product, _ = sql_catalog.find_by_code(' 8900001 ')
        assert product.name == 'Blue Pen'

    def test_find_by_unit_barcode(self, sql_catalog, seeded):
        product, matched = sql_catalog.find_by_code('8900012')
        assert product.name == 'Soap'
        assert matched == product.alternate_units[0].multi_unit_id
        assert product.alternate_units[0].conversion == Decimal('12')

    def test_unknown_code(self, sql_catalog, seeded):
        with pytest.raises(NotFoundError):
            sql_catalog.find_by_code('NOPE')

    def test_inactive_product_is_hidden(self, session, sql_catalog, seeded):
        seeded['pen'].active = False
        session.commit()
        with pytest.raises(NotFoundError):
            sql_catalog.get_product(str(seeded['pen'].id))

    def test_batches_and_stock(self, sql_catalog, seeded):
        batches = sql_catalog.list_batches(str(seeded['rice'].id))
        assert [b.batch_number for b in batches] == ['R-1', 'R-2']
        assert batches[1].quantity == Decimal('6')
        assert stock_of(sql_catalog, seeded['soap']) == Decimal('120')


class TestSalesDocuments:
    """Tests for sales invoices moving stock."""

    def test_save_update_delete(self, sql_catalog, seeded):
        pen = seeded['pen']
        sales = entry_session(sql_catalog)
        line_id = sales.lines[0].id
        sales.select_by_code(line_id, 'PEN')
        assert sales.line(line_id).unit_price == Decimal('12.00')
        sales.commit_quantity(line_id, '4')

        document_no = sales.save()
        assert document_no == 'SI-00001'
        assert stock_of(sql_catalog, pen) == Decimal('6')

        sales.load_document(document_no)
        line_id = sales.lines[0].id
        assert sales.line(line_id).base_stock_pieces == Decimal('10')
        assert sales.commit_quantity(line_id, '10') is None
        sales.update()
        assert stock_of(sql_catalog, pen) == Decimal('0')

        sales.delete()
        assert stock_of(sql_catalog, pen) == Decimal('10')

    def test_batch_sale_draws_down_the_batch(self, sql_catalog, seeded):
        sales = entry_session(sql_catalog)
        line_id = sales.lines[0].id
        assert sales.select_by_code(line_id, 'RICE').status == SelectionStatus.BATCH_REQUIRED
        sales.choose_batch('R-2')
        assert sales.line(line_id).unit_price == Decimal('38.00')
        sales.commit_quantity(line_id, '5')
        sales.save()

        rice_id = str(seeded['rice'].id)
        assert sql_catalog.get_stock(rice_id) == Decimal('5')
        assert [b.quantity for b in sql_catalog.list_batches(rice_id)] == [Decimal('4'), Decimal('1')]

    def test_box_sale_deducts_pieces(self, sql_catalog, seeded):
        sales = entry_session(sql_catalog)
        line_id = sales.lines[0].id
        sales.select_by_code(line_id, '8900012')
        assert sales.line(line_id).unit_price == Decimal('150.00')
        sales.commit_quantity(line_id, '2')
        sales.save()

        assert stock_of(sql_catalog, seeded['soap']) == Decimal('96')

    def test_store_rejects_overdraw(self, session, sql_catalog, seeded):
        pen = seeded['pen']
        payload = {
            'kind': 'SALES_INVOICE',
            'header': {'tax_type': 'Vat', 'tax_mode': 'inclusive'},
            'items': [{
                'product_id': str(pen.id), 'product_code': 'PEN', 'description': 'Blue Pen',
                'quantity': Decimal('11'), 'unit_price': Decimal('12'), 'total': Decimal('132'),
            }],
        }
        with pytest.raises(PersistenceConflict):
            sql_catalog.create(payload)

        assert session.query(EntryDocument).count() == 0
        assert stock_of(sql_catalog, pen) == Decimal('10')

    def test_unknown_document(self, sql_catalog, seeded):
        with pytest.raises(NotFoundError):
            sql_catalog.load('SI-99999')
        with pytest.raises(NotFoundError):
            sql_catalog.delete('SI-99999')

    def test_session_from_context(self, context, seeded):
        sales = open_session(context)
        line_id = sales.lines[0].id
        sales.select_by_code(line_id, 'PEN')
        assert sales.line(line_id).unit_price == Decimal('12.00')
        assert sales.vat_rate == Decimal('5')


class TestOpeningStockDocuments:
    """Tests for opening-stock entries creating batches."""

    def test_save_update_delete(self, session, sql_catalog, seeded):
        soap = seeded['soap']
        entry = entry_session(sql_catalog, DocumentKind.OPENING_STOCK)
        line_id = entry.lines[0].id
        entry.select_by_code(line_id, '8900012')
        assert entry.line(line_id).unit_price == Decimal('120.00')
        entry.commit_quantity(line_id, '2')

        document_no = entry.save()
        assert document_no == 'OS-00001'
        assert stock_of(sql_catalog, soap) == Decimal('144')
        created = session.query(StockBatch).filter(StockBatch.document_id.isnot(None)).all()
        assert len(created) == 1
        assert created[0].batch_number == 'OS-00001-1'
        assert created[0].quantity == Decimal('24')
        assert created[0].purchase_price == Decimal('10.00')

        entry.load_document(document_no)
        line_id = entry.lines[0].id
        assert entry.line(line_id).unit_name == 'BOX'
        entry.commit_quantity(line_id, '3')
        entry.update()
        assert stock_of(sql_catalog, soap) == Decimal('156')
        assert session.query(StockBatch).filter(StockBatch.document_id.isnot(None)).count() == 1

        entry.delete()
        assert stock_of(sql_catalog, soap) == Decimal('120')
        assert session.query(StockBatch).filter(StockBatch.document_id.isnot(None)).count() == 0

    def test_batch_details_are_stored(self, sql_catalog, seeded):
        entry = entry_session(sql_catalog, DocumentKind.OPENING_STOCK)
        line_id = entry.lines[0].id
        entry.select_by_code(line_id, 'RICE')
        entry.commit_quantity(line_id, '4')
        entry.set_batch_details(line_id, 'LOT-9', '2027-03-31')
        entry.save()

        rice_id = str(seeded['rice'].id)
        assert sql_catalog.get_stock(rice_id) == Decimal('14')
        lot = sql_catalog.list_batches(rice_id)[-1]
        assert lot.batch_number == 'LOT-9'
        assert lot.expiry_date == date(2027, 3, 31).isoformat()
        assert lot.purchase_price == Decimal('30.00')


class TestMergedBatchSales:
    """Tests for sales of products whose batches are merged into one pool."""

    @pytest.fixture
    def pen_lots(self, session, seeded):
        pen = seeded['pen']
        session.add_all([
            StockBatch(product_id=pen.id, batch_number='P-1', purchase_price=Decimal('10'),
                       quantity=Decimal('5'), retail=Decimal('15'), wholesale=Decimal('12')),
            StockBatch(product_id=pen.id, batch_number='P-2', purchase_price=Decimal('10'),
                       quantity=Decimal('5'), retail=Decimal('15'), wholesale=Decimal('12')),
        ])
        session.commit()
        return str(pen.id)

    def lots(self, sql_catalog, product_id):
        return {b.batch_number: b.quantity for b in sql_catalog.list_batches(product_id)}

    def sell(self, sql_catalog, quantity):
        sales = entry_session(sql_catalog)
        line_id = sales.lines[0].id
        sales.select_by_code(line_id, 'PEN')
        assert sales.line(line_id).batch_number == 'MERGED'
        sales.commit_quantity(line_id, quantity)
        sales.save()
        return sales

    def test_sale_draws_batches_oldest_first(self, sql_catalog, pen_lots):
        self.sell(sql_catalog, '7')

        assert sql_catalog.get_stock(pen_lots) == Decimal('3')
        assert self.lots(sql_catalog, pen_lots) == {'P-1': Decimal('0'), 'P-2': Decimal('3')}

    def test_sold_out_product_cannot_be_selected(self, sql_catalog, pen_lots):
        self.sell(sql_catalog, '10')
        assert self.lots(sql_catalog, pen_lots) == {'P-1': Decimal('0'), 'P-2': Decimal('0')}

        again = entry_session(sql_catalog)
        with pytest.raises(StockExhaustedError):
            again.select_by_code(again.lines[0].id, 'PEN')

    def test_edit_credits_only_the_original_pieces(self, sql_catalog, pen_lots):
        sales = self.sell(sql_catalog, '10')

        sales.load_document(sales.document_no)
        assert sales.line(sales.lines[0].id).base_stock_pieces == Decimal('10')
        with pytest.raises(StockExhaustedError):
            sales.select_by_code(sales.new_line().id, 'PEN')

    def test_update_and_delete_restore_the_drawn_batches(self, sql_catalog, pen_lots):
        sales = self.sell(sql_catalog, '7')

        sales.load_document(sales.document_no)
        sales.commit_quantity(sales.lines[0].id, '2')
        sales.update()
        assert sql_catalog.get_stock(pen_lots) == Decimal('8')
        assert self.lots(sql_catalog, pen_lots) == {'P-1': Decimal('3'), 'P-2': Decimal('5')}

        sales.delete()
        assert sql_catalog.get_stock(pen_lots) == Decimal('10')
        assert self.lots(sql_catalog, pen_lots) == {'P-1': Decimal('5'), 'P-2': Decimal('5')}
