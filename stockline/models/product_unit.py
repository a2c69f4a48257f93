"""Product Unit model."""
from sqlalchemy import Column, String, Numeric, ForeignKey, Boolean
from sqlalchemy.orm import relationship
from stockline.database import Base, IdType


class ProductUnit(Base):
    """
    Alternate unit of sale for a product (e.g., Box of 12, Case of 24).
    `conversion` is the number of base-unit pieces in one unit.
    """
    __tablename__ = 'product_unit'

    id = Column(IdType, primary_key=True, autoincrement=True)
    product_id = Column(IdType, ForeignKey('product.id'), nullable=False, index=True)
    uom_id = Column(IdType, ForeignKey('uom.id'), nullable=False)
    conversion = Column(Numeric(12, 3), nullable=False)  # e.g., 12
    barcode = Column(String(50), nullable=True)
    retail = Column(Numeric(12, 2), nullable=False, default=0)
    wholesale = Column(Numeric(12, 2), nullable=False, default=0)
    special1 = Column(Numeric(12, 2), nullable=False, default=0)
    special2 = Column(Numeric(12, 2), nullable=False, default=0)
    is_active = Column(Boolean, default=True)

    # Relationships
    product = relationship('Product', back_populates='units')
    uom = relationship('UOM')

    def to_record(self):
        return {
            'multiUnitId': str(self.id),
            'unitId': self.uom.to_record() if self.uom else self.uom_id,
            'conversion': self.conversion,
            'imei': self.barcode,
            'retail': self.retail,
            'wholesale': self.wholesale,
            'specialPrice1': self.special1,
            'specialPrice2': self.special2,
        }

    def __repr__(self):
        return f"<ProductUnit(id={self.id}, product_id={self.product_id}, conversion={self.conversion})>"
