"""Stock Batch model."""
from sqlalchemy import Column, String, Numeric, Date, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from stockline.database import Base, IdType


class StockBatch(Base):
    """Purchase lot of a product. Quantity is in base-unit pieces."""

    __tablename__ = 'stock_batch'

    id = Column(IdType, primary_key=True, autoincrement=True)
    product_id = Column(IdType, ForeignKey('product.id'), nullable=False, index=True)
    document_id = Column(IdType, ForeignKey('entry_document.id'), nullable=True, index=True)  # opening-stock entry that created it
    batch_number = Column(String(64), nullable=False)
    purchase_price = Column(Numeric(12, 2), nullable=False, default=0)
    quantity = Column(Numeric(12, 4), nullable=False, default=0)
    retail = Column(Numeric(12, 2), nullable=False, default=0)
    wholesale = Column(Numeric(12, 2), nullable=False, default=0)
    expiry_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    product = relationship('Product', back_populates='batches')

    def to_record(self):
        return {
            'batchNumber': self.batch_number,
            'purchasePrice': self.purchase_price,
            'quantity': self.quantity,
            'retail': self.retail,
            'wholesale': self.wholesale,
            'expiryDate': self.expiry_date.isoformat() if self.expiry_date else None,
        }

    def __repr__(self):
        return f"<StockBatch(id={self.id}, batch_number='{self.batch_number}', quantity={self.quantity})>"
