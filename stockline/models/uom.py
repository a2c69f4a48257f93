"""Unit of Measure model."""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from stockline.database import Base, IdType


class UOM(Base):
    """Unit of Measure."""

    __tablename__ = 'uom'

    id = Column(IdType, primary_key=True, autoincrement=True)
    company_id = Column(IdType, nullable=False, index=True)
    name = Column(String, nullable=False)
    short_code = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def to_record(self):
        return {'_id': str(self.id), 'name': self.name, 'shortCode': self.short_code}

    def __repr__(self):
        return f"<UOM(id={self.id}, name='{self.name}', short_code='{self.short_code}')>"
