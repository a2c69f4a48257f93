"""
Unit tests for batch resolution, merging and stock-entry grouping.
"""

from decimal import Decimal

import pytest

from stockline.domain.entities import Batch, LineItem, MERGED_BATCH, UnitOption
from stockline.services.batch_service import (
    BatchOutcome, group_into_batches, merge_batches, resolve_batches
)


def batch(number, purchase, quantity, retail='0', wholesale='0'):
    return Batch(number, Decimal(purchase), Decimal(quantity), Decimal(retail), Decimal(wholesale))


class TestMergeBatches:
    """Tests for merging open batches into one pool."""

    def test_means_over_batches_in_stock(self):
        merged = merge_batches([batch('A', '10', '5', '14', '12'), batch('B', '20', '5', '24', '22')])
        assert merged.batch_number == MERGED_BATCH
        assert merged.purchase_price == Decimal('15')
        assert merged.retail == Decimal('19')
        assert merged.wholesale == Decimal('17')
        assert merged.quantity == Decimal('10')

    def test_empty_batches_are_left_out(self):
        merged = merge_batches([batch('A', '10', '5'), batch('B', '99', '0'), batch('C', '20', '3')])
        assert merged.purchase_price == Decimal('15')
        assert merged.quantity == Decimal('8')

    def test_no_batch_in_stock_keeps_first_prices(self):
        merged = merge_batches([batch('A', '10', '0', '12'), batch('B', '20', '0', '22')])
        assert merged.purchase_price == Decimal('10')
        assert merged.retail == Decimal('12')
        assert merged.quantity == Decimal('0')

    def test_empty_list_is_rejected(self):
        with pytest.raises(ValueError):
            merge_batches([])


class TestResolveBatches:
    """Tests for the zero / one / many batch rules."""

    def test_no_batches(self, pen):
        assert resolve_batches(pen, []).outcome == BatchOutcome.NONE

    def test_single_batch_caps_row(self, rice, rice_batches):
        resolution = resolve_batches(rice, rice_batches[:1])
        assert resolution.outcome == BatchOutcome.SINGLE
        assert resolution.batch.batch_number == '00001'
        assert resolution.caps_row

    def test_batch_tracked_product_needs_choice(self, rice, rice_batches):
        resolution = resolve_batches(rice, rice_batches)
        assert resolution.outcome == BatchOutcome.CHOICE_REQUIRED
        assert [b.batch_number for b in resolution.choices] == ['00001', '00002']
        assert not resolution.caps_row

    def test_untracked_product_merges(self, pen, rice_batches):
        resolution = resolve_batches(pen, rice_batches)
        assert resolution.outcome == BatchOutcome.MERGED
        assert resolution.batch.quantity == Decimal('10')
        assert not resolution.caps_row


def entry_line(product, price, quantity, conversion='1', expiry=None, batch_number=None):
    unit = UnitOption(id='u', name='U', is_multi_unit=conversion != '1', conversion=Decimal(conversion))
    return LineItem(
        product_id=product.id, product_code=product.code, name=product.name,
        unit_id='u', available_units=[unit],
        unit_price=Decimal(price), quantity=Decimal(quantity),
        expiry_date=expiry, batch_number=batch_number,
        gross=Decimal(price) * Decimal(quantity), total=Decimal(price) * Decimal(quantity),
    )


class TestGroupIntoBatches:
    """Tests for grouping stock-entry rows into new batches."""

    def test_same_piece_cost_and_expiry_share_a_batch(self, rice):
        products = {rice.id: rice}
        groups = group_into_batches([
            entry_line(rice, '30', '2', expiry='2027-01-31', batch_number='LOT-7'),
            entry_line(rice, '30', '3', expiry='2027-01-31'),
        ], products)
        assert len(groups) == 1
        assert groups[0]['quantity'] == Decimal('5')
        assert groups[0]['purchase_price'] == Decimal('30.00')
        assert groups[0]['batch_number'] == 'LOT-7'
        assert groups[0]['gross'] == Decimal('150')

    def test_different_expiry_splits(self, rice):
        groups = group_into_batches([
            entry_line(rice, '30', '2', expiry='2027-01-31'),
            entry_line(rice, '30', '2', expiry='2027-06-30'),
        ], {rice.id: rice})
        assert len(groups) == 2

    def test_box_rows_group_in_pieces(self, soap):
        groups = group_into_batches([
            entry_line(soap, '120', '2', conversion='12'),
            entry_line(soap, '10', '6'),
        ], {soap.id: soap})
        assert len(groups) == 1
        assert groups[0]['quantity'] == Decimal('30')
        assert groups[0]['purchase_price'] == Decimal('10.00')
        assert groups[0]['expiry_date'] is None

    def test_untracked_product_averages_piece_cost(self, pen):
        groups = group_into_batches([
            entry_line(pen, '10', '1'),
            entry_line(pen, '13', '2'),
        ], {pen.id: pen})
        assert len(groups) == 1
        assert groups[0]['quantity'] == Decimal('3')
        assert groups[0]['purchase_price'] == Decimal('12.00')
        assert '_weighted_cost' not in groups[0]
