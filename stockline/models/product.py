"""Product model."""
from sqlalchemy import Column, String, Boolean, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from stockline.database import Base, IdType


class Product(Base):
    """Product model."""

    __tablename__ = 'product'

    id = Column(IdType, primary_key=True, autoincrement=True)
    company_id = Column(IdType, nullable=False, index=True)
    code = Column(String, nullable=False)
    barcode = Column(String, nullable=True)  # serial / IMEI tag of the base unit
    name = Column(String, nullable=False)
    uom_id = Column(IdType, ForeignKey('uom.id'), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    allow_batches = Column(Boolean, nullable=False, default=False, server_default='false')
    purchase_price = Column(Numeric(12, 2), nullable=False, default=0, server_default='0.00')  # per base piece
    retail_price = Column(Numeric(12, 2), nullable=True)
    wholesale_price = Column(Numeric(12, 2), nullable=True)
    special1_price = Column(Numeric(12, 2), nullable=True)
    special2_price = Column(Numeric(12, 2), nullable=True)
    last_vendor = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    uom = relationship('UOM', foreign_keys=[uom_id])
    stock = relationship('ProductStock', uselist=False, back_populates='product', cascade="all, delete-orphan")
    units = relationship('ProductUnit', back_populates='product', cascade="all, delete-orphan")
    batches = relationship(
        'StockBatch', back_populates='product', cascade="all, delete-orphan",
        order_by='StockBatch.id'
    )

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', code='{self.code}')>"

    @property
    def on_hand_qty(self):
        """Get on hand quantity (base pieces) from stock."""
        if self.stock:
            return self.stock.on_hand_qty
        return 0

    def to_record(self):
        """Serialize in the shape the product service returns."""
        return {
            '_id': str(self.id),
            'code': self.code,
            'name': self.name,
            'imei': self.barcode,
            'unitOfMeasureId': self.uom.to_record() if self.uom else self.uom_id,
            'purchasePrice': self.purchase_price,
            'retailPrice': self.retail_price,
            'wholesalePrice': self.wholesale_price,
            'specialPrice': self.special1_price,
            'specialPrice2': self.special2_price,
            'allowBatches': bool(self.allow_batches),
            'multiUnits': [unit.to_record() for unit in self.units if unit.is_active],
            'lastVendor': self.last_vendor,
        }
