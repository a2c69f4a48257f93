"""Entry Document model (sales invoice / opening stock)."""
from sqlalchemy import Column, String, Numeric, DateTime, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from stockline.database import Base, IdType
from stockline.domain.entities import DocumentKind


class EntryDocument(Base):
    """A saved entry-grid document with its header figures."""

    __tablename__ = 'entry_document'

    id = Column(IdType, primary_key=True, autoincrement=True)
    company_id = Column(IdType, nullable=False, index=True)
    kind = Column(Enum(DocumentKind, name='document_kind'), nullable=False)
    document_no = Column(String(32), nullable=True, unique=True)
    datetime = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    tax_type = Column(String(10), nullable=False)
    tax_mode = Column(String(10), nullable=False)
    rate_tier = Column(String(10), nullable=True)

    # Header adjustments
    other_disc_percent = Column(Numeric(6, 2), nullable=False, default=0)
    other_discount = Column(Numeric(12, 2), nullable=False, default=0)
    other_charges = Column(Numeric(12, 2), nullable=False, default=0)
    freight = Column(Numeric(12, 2), nullable=False, default=0)
    misc_charge = Column(Numeric(12, 2), nullable=False, default=0)
    round_off = Column(Numeric(12, 2), nullable=False, default=0)

    # Payment
    cash_received = Column(Numeric(12, 2), nullable=False, default=0)
    card_amount = Column(Numeric(12, 2), nullable=False, default=0)

    sub_total = Column(Numeric(12, 2), nullable=False, default=0)
    total_vat = Column(Numeric(12, 2), nullable=False, default=0)
    grand_total = Column(Numeric(12, 2), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    lines = relationship(
        'EntryDocumentLine', back_populates='document', cascade='all, delete-orphan',
        order_by='EntryDocumentLine.line_no'
    )

    def __repr__(self):
        return f"<EntryDocument(id={self.id}, kind={self.kind.value}, no='{self.document_no}')>"
