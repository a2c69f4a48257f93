"""Held Document model."""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Enum, JSON
from sqlalchemy.sql import func
from stockline.database import Base, IdType
from stockline.domain.entities import DocumentKind


class HeldDocument(Base):
    """
    A parked, unsaved draft.

    The payload holds the header and the filled lines as JSON so the draft
    can be restored into a fresh editing session later.
    """

    __tablename__ = 'held_document'

    id = Column(IdType, primary_key=True, autoincrement=True)
    company_id = Column(IdType, nullable=False, index=True)
    kind = Column(Enum(DocumentKind, name='document_kind'), nullable=False)
    label = Column(String(100), nullable=True)
    item_count = Column(Integer, nullable=False, default=0)
    grand_total = Column(Numeric(12, 2), nullable=False, default=0)
    payload = Column(JSON, nullable=False)
    held_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<HeldDocument(id={self.id}, kind={self.kind.value}, items={self.item_count})>"
