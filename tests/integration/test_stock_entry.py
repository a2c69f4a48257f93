"""
Integration tests for opening-stock entry sessions.
"""

from decimal import Decimal

import pytest

from stockline.domain.entities import LineField
from stockline.exceptions import ValidationError
from stockline.services.entry_session_service import SelectionStatus


class TestStockEntryRows:
    """Tests for purchase pricing and linked selling prices."""

    def test_selection_uses_purchase_price(self, stock_entry):
        line_id = stock_entry.lines[0].id
        stock_entry.select_by_code(line_id, 'SOAP')

        line = stock_entry.line(line_id)
        assert line.quantity == Decimal('1')
        assert line.unit_price == Decimal('10.00')
        assert line.retail == Decimal('14')
        assert line.profit_percent == Decimal('40.00')
        assert stock_entry.header.rate_tier is None

    def test_batch_tracked_product_does_not_ask_for_a_batch(self, stock_entry, rice):
        result = stock_entry.select_product(stock_entry.lines[0].id, rice)
        assert result.status == SelectionStatus.SELECTED

    def test_unit_change_reprices(self, stock_entry):
        line_id = stock_entry.lines[0].id
        stock_entry.select_by_code(line_id, 'SOAP')
        stock_entry.commit_quantity(line_id, '5')

        line = stock_entry.change_unit(line_id, 'u-box')
        assert line.quantity == Decimal('1')
        assert line.unit_price == Decimal('120.00')
        assert line.retail == Decimal('160')
        assert line.wholesale == Decimal('150')
        assert line.profit_percent == Decimal('33.33')

    def test_profit_retail_and_price_stay_linked(self, stock_entry):
        line_id = stock_entry.lines[0].id
        stock_entry.select_by_code(line_id, '8900012')

        line = stock_entry.edit_line(line_id, LineField.PROFIT_PERCENT, 50)
        assert line.retail == Decimal('180.00')
        assert line.wholesale == Decimal('180.00')

        line = stock_entry.edit_line(line_id, LineField.UNIT_PRICE, 100)
        assert line.profit_percent == Decimal('80.00')

        line = stock_entry.edit_line(line_id, LineField.RETAIL, 150)
        assert line.profit_percent == Decimal('50.00')

    def test_quantity_is_not_capped_by_stock(self, stock_entry):
        line_id = stock_entry.lines[0].id
        stock_entry.select_by_code(line_id, 'PEN')
        assert stock_entry.commit_quantity(line_id, '1000') is None
        assert stock_entry.line(line_id).quantity == Decimal('1000')

    def test_rate_tier_is_sales_only(self, stock_entry):
        with pytest.raises(ValidationError):
            stock_entry.set_rate_tier('Retail')

    def test_batch_details_are_stock_entry_only(self, sales):
        with pytest.raises(ValidationError):
            sales.set_batch_details(sales.lines[0].id, 'LOT-1')


class TestStockEntryPayload:
    """Tests for the batches a stock entry creates."""

    def test_rows_group_into_batches_by_piece_cost(self, stock_entry, rice):
        box = stock_entry.lines[0].id
        stock_entry.select_by_code(box, '8900012')
        stock_entry.commit_quantity(box, '2')

        pieces = stock_entry.new_line().id
        stock_entry.select_by_code(pieces, 'SOAP')
        stock_entry.commit_quantity(pieces, '6')

        lot = stock_entry.new_line().id
        stock_entry.select_product(lot, rice)
        stock_entry.edit_line(lot, LineField.UNIT_PRICE, 30)
        stock_entry.commit_quantity(lot, '4')
        stock_entry.set_batch_details(lot, ' LOT-1 ', '2027-03-31')

        payload = stock_entry.build_payload(stock_entry.validate())
        assert payload['kind'] == 'OPENING_STOCK'
        assert payload['header']['rate_tier'] is None

        soap_batch, rice_batch = payload['batches']
        assert soap_batch['quantity'] == Decimal('30')
        assert soap_batch['purchase_price'] == Decimal('10.00')
        assert rice_batch['batch_number'] == 'LOT-1'
        assert rice_batch['expiry_date'] == '2027-03-31'
        assert rice_batch['quantity'] == Decimal('4')

    def test_save_skips_live_stock_check(self, stock_entry, catalog):
        line_id = stock_entry.lines[0].id
        stock_entry.select_by_code(line_id, 'PEN')
        stock_entry.commit_quantity(line_id, '500')

        assert stock_entry.save()
        assert catalog.stock_calls == []
