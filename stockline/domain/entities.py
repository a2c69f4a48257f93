"""
Engine value types for the document entry grids.

Products and batches arrive from external lookups as loosely typed records;
``from_record`` is the only place those records are read, and it applies the
defaulting rules explicitly. Everything past this module works on typed
values with Decimal money and quantities.
"""
import copy
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from stockline.exceptions import ValidationError
from stockline.utils.number_format import to_decimal, ZERO

ONE = Decimal('1')
MERGED_BATCH = 'MERGED'


class TaxType(str, Enum):
    TAXED = 'Vat'
    UNTAXED = 'NonVat'


class TaxMode(str, Enum):
    INCLUSIVE = 'inclusive'
    EXCLUSIVE = 'exclusive'


class RateTier(str, Enum):
    RETAIL = 'Retail'
    WHOLESALE = 'WSale'
    SPECIAL1 = 'Special1'
    SPECIAL2 = 'Special2'


class DocumentKind(str, Enum):
    SALES_INVOICE = 'SALES_INVOICE'
    OPENING_STOCK = 'OPENING_STOCK'


class LineField(str, Enum):
    """Editable numeric cells of a grid row."""
    QUANTITY = 'quantity'
    UNIT_PRICE = 'unit_price'
    DISCOUNT_PERCENT = 'discount_percent'
    DISCOUNT_AMOUNT = 'discount_amount'
    RETAIL = 'retail'
    WHOLESALE = 'wholesale'
    PROFIT_PERCENT = 'profit_percent'


# =====================================================
# RECORD HELPERS
# =====================================================

def _ref_id(ref) -> Optional[str]:
    """A reference is either a bare id or a populated {'_id', 'name', 'shortCode'} record."""
    if ref is None:
        return None
    if isinstance(ref, dict):
        value = ref.get('_id') or ref.get('id')
        return str(value) if value else None
    return str(ref) or None


def _ref_name(ref, fallback: str) -> str:
    if isinstance(ref, dict):
        return ref.get('shortCode') or ref.get('name') or fallback
    return fallback


def _money(record: Dict[str, Any], key: str, default=ZERO) -> Optional[Decimal]:
    try:
        return to_decimal(record.get(key), default)
    except ValueError:
        raise ValidationError(f'Invalid number in field "{key}": {record.get(key)!r}')


def _text(record: Dict[str, Any], key: str) -> str:
    value = record.get(key)
    return str(value).strip() if value is not None else ''


# =====================================================
# CATALOG RECORDS
# =====================================================

@dataclass
class AlternateUnit:
    """A secondary unit of sale: `conversion` base-unit pieces per one unit."""
    multi_unit_id: str
    unit_id: str
    unit_name: str
    conversion: Decimal = ONE
    serial_tag: str = ''
    retail: Decimal = ZERO
    wholesale: Decimal = ZERO
    special1: Decimal = ZERO
    special2: Decimal = ZERO

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> Optional['AlternateUnit']:
        """Build from a raw record; records without a unit reference are skipped (None)."""
        unit_ref = record.get('unitId')
        unit_id = _ref_id(unit_ref)
        if not unit_id:
            return None
        conversion = _money(record, 'conversion', ONE)
        if conversion <= 0:
            conversion = ONE
        return cls(
            multi_unit_id=_text(record, 'multiUnitId') or unit_id,
            unit_id=unit_id,
            unit_name=_ref_name(unit_ref, 'Unit'),
            conversion=conversion,
            serial_tag=_text(record, 'imei'),
            retail=_money(record, 'retail'),
            wholesale=_money(record, 'wholesale'),
            special1=_money(record, 'specialPrice1'),
            special2=_money(record, 'specialPrice2'),
        )


@dataclass
class Product:
    """Product as seen by the entry grids. Tier prices are None when absent."""
    id: str
    code: str
    name: str
    base_unit_id: Optional[str] = None
    base_unit_name: str = 'Main'
    serial_tag: str = ''
    purchase_price: Decimal = ZERO
    retail_price: Optional[Decimal] = None
    wholesale_price: Optional[Decimal] = None
    special1_price: Optional[Decimal] = None
    special2_price: Optional[Decimal] = None
    allow_batches: bool = False
    alternate_units: List[AlternateUnit] = field(default_factory=list)
    last_vendor: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'Product':
        """
        Deserialize a product record from the product service.

        Defaults:
        - missing tier prices stay None (tier fallback decides later)
        - missing purchase price is 0
        - `allowBatches` is False unless explicitly true
        - alternate units without a unit reference are dropped
        """
        if not isinstance(record, dict):
            raise ValidationError('Product record must be a mapping')
        product_id = record.get('_id') or record.get('id')
        name = _text(record, 'name')
        if not product_id or not name:
            raise ValidationError('Product record requires an id and a name')

        unit_ref = record.get('unitOfMeasureId')
        alternates = []
        for raw in record.get('multiUnits') or []:
            unit = AlternateUnit.from_record(raw)
            if unit is not None:
                alternates.append(unit)

        return cls(
            id=str(product_id),
            code=_text(record, 'code'),
            name=name,
            base_unit_id=_ref_id(unit_ref),
            base_unit_name=_ref_name(unit_ref, 'Main'),
            serial_tag=_text(record, 'imei'),
            purchase_price=_money(record, 'purchasePrice'),
            retail_price=_money(record, 'retailPrice', None),
            wholesale_price=_money(record, 'wholesalePrice', None),
            special1_price=_money(record, 'specialPrice', None),
            special2_price=_money(record, 'specialPrice2', None),
            allow_batches=record.get('allowBatches') is True,
            alternate_units=alternates,
            last_vendor=record.get('lastVendor'),
        )


@dataclass(frozen=True)
class Batch:
    """A purchase lot. Quantity is in base-unit pieces."""
    batch_number: str
    purchase_price: Decimal = ZERO
    quantity: Decimal = ZERO
    retail: Decimal = ZERO
    wholesale: Decimal = ZERO
    expiry_date: Optional[str] = None

    @property
    def is_merged(self) -> bool:
        return self.batch_number == MERGED_BATCH

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'Batch':
        if not isinstance(record, dict):
            raise ValidationError('Batch record must be a mapping')
        return cls(
            batch_number=_text(record, 'batchNumber'),
            purchase_price=_money(record, 'purchasePrice'),
            quantity=_money(record, 'quantity'),
            retail=_money(record, 'retail'),
            wholesale=_money(record, 'wholesale'),
            expiry_date=_text(record, 'expiryDate') or None,
        )


# =====================================================
# GRID VALUES
# =====================================================

@dataclass
class UnitOption:
    """One selectable unit for a row, resolved for the active rate tier."""
    id: str
    name: str
    is_multi_unit: bool = False
    conversion: Decimal = ONE
    price: Decimal = ZERO
    multi_unit_id: Optional[str] = None
    serial_tag: str = ''
    retail: Decimal = ZERO
    wholesale: Decimal = ZERO
    special1: Decimal = ZERO
    special2: Decimal = ZERO

    @property
    def effective_conversion(self) -> Decimal:
        if self.is_multi_unit and self.conversion and self.conversion > 0:
            return self.conversion
        return ONE


@dataclass
class LineItem:
    """One grid row."""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    product_id: str = ''
    product_code: str = ''
    serial_tag: str = ''
    name: str = ''
    unit_id: str = ''
    unit_name: str = ''
    available_units: List[UnitOption] = field(default_factory=list)
    quantity: Decimal = ZERO
    unit_price: Decimal = ZERO
    purchase_price: Decimal = ZERO
    gross: Decimal = ZERO
    discount_percent: Decimal = ZERO
    discount_amount: Decimal = ZERO
    vat_amount: Decimal = ZERO
    total: Decimal = ZERO
    base_stock_pieces: Decimal = ZERO
    batch_max_pieces: Optional[Decimal] = None
    batch_number: Optional[str] = None
    expiry_date: Optional[str] = None
    # Stock-entry pricing
    retail: Decimal = ZERO
    wholesale: Decimal = ZERO
    special1: Decimal = ZERO
    special2: Decimal = ZERO
    profit_percent: Decimal = ZERO

    @property
    def is_empty(self) -> bool:
        return not self.product_id

    @property
    def selected_unit(self) -> Optional[UnitOption]:
        for unit in self.available_units:
            if unit.id == self.unit_id:
                return unit
        return None

    @property
    def conversion(self) -> Decimal:
        unit = self.selected_unit
        return unit.effective_conversion if unit else ONE

    @property
    def multi_unit_id(self) -> Optional[str]:
        unit = self.selected_unit
        return unit.multi_unit_id if unit and unit.is_multi_unit else None

    @property
    def pieces(self) -> Decimal:
        """Quantity expressed in base-unit pieces."""
        return self.quantity * self.conversion

    @property
    def has_batch_cap(self) -> bool:
        return self.batch_max_pieces is not None and self.batch_max_pieces > 0

    def snapshot(self) -> 'LineItem':
        """Independent copy, including the unit list."""
        return copy.deepcopy(self)


@dataclass(frozen=True)
class LineFigures:
    gross: Decimal
    discount_percent: Decimal
    discount_amount: Decimal
    net: Decimal
    vat_amount: Decimal
    total: Decimal


@dataclass
class DocumentHeader:
    kind: DocumentKind = DocumentKind.SALES_INVOICE
    tax_type: TaxType = TaxType.TAXED
    tax_mode: TaxMode = TaxMode.INCLUSIVE
    rate_tier: Optional[RateTier] = RateTier.WHOLESALE
    other_disc_percent: Decimal = ZERO
    other_discount: Decimal = ZERO
    other_charges: Decimal = ZERO
    freight: Decimal = ZERO
    misc_charge: Decimal = ZERO
    round_off: Decimal = ZERO
    cash_received: Decimal = ZERO
    card_amount: Decimal = ZERO
    old_balance: Decimal = ZERO

    @property
    def is_taxed(self) -> bool:
        return self.tax_type == TaxType.TAXED

    @property
    def caps_stock(self) -> bool:
        """Only documents that consume stock are capped by it."""
        return self.kind == DocumentKind.SALES_INVOICE


@dataclass(frozen=True)
class OriginalLine:
    """A line of the persisted document being edited, already deducted from stock."""
    product_id: str
    quantity: Decimal
    conversion: Decimal = ONE

    @property
    def pieces(self) -> Decimal:
        return self.quantity * self.conversion
