"""Entry Document Line model."""
from sqlalchemy import Column, Integer, String, Numeric, Date, ForeignKey, JSON
from sqlalchemy.orm import relationship
from stockline.database import Base, IdType


class EntryDocumentLine(Base):
    """Entry Document Line. Quantity is in the line's own unit."""

    __tablename__ = 'entry_document_line'

    id = Column(IdType, primary_key=True, autoincrement=True)
    document_id = Column(IdType, ForeignKey('entry_document.id'), nullable=False, index=True)
    line_no = Column(Integer, nullable=False)
    product_id = Column(IdType, ForeignKey('product.id'), nullable=False)
    product_code = Column(String, nullable=False)
    serial_tag = Column(String, nullable=True)
    description = Column(String, nullable=False)
    unit_id = Column(String(32), nullable=True)
    unit_name = Column(String(64), nullable=True)
    multi_unit_id = Column(String(32), nullable=True)
    conversion = Column(Numeric(12, 3), nullable=False, default=1)
    quantity = Column(Numeric(12, 4), nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    discount_percent = Column(Numeric(6, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    vat_rate = Column(Numeric(5, 2), nullable=False, default=0)
    vat_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False)
    batch_number = Column(String(64), nullable=True)
    expiry_date = Column(Date, nullable=True)
    batch_draws = Column(JSON, nullable=True)  # [{'batch_id', 'pieces'}] taken from stock_batch by the sale

    # Relationships
    document = relationship('EntryDocument', back_populates='lines')
    product = relationship('Product')

    @property
    def pieces(self):
        return self.quantity * self.conversion

    def __repr__(self):
        return f"<EntryDocumentLine(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"
