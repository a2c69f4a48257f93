"""Models package - exports all SQLAlchemy models."""
from stockline.models.uom import UOM
from stockline.models.product import Product
from stockline.models.product_unit import ProductUnit
from stockline.models.product_stock import ProductStock
from stockline.models.stock_batch import StockBatch
from stockline.models.entry_document import EntryDocument
from stockline.models.entry_document_line import EntryDocumentLine
from stockline.models.held_document import HeldDocument

__all__ = [
    'UOM', 'Product', 'ProductUnit', 'ProductStock', 'StockBatch',
    'EntryDocument', 'EntryDocumentLine', 'HeldDocument',
]
