import fnmatch
from decimal import Decimal

import pytest

from stockline import create_context
from stockline.database import create_all, drop_all, get_session
from stockline.domain.entities import AlternateUnit, Batch, DocumentKind, Product
from stockline.exceptions import NotFoundError
from stockline.models import UOM, Product as ProductRow, ProductStock, ProductUnit, StockBatch
from stockline.services.catalog_service import SqlCatalog
from stockline.services.entry_session_service import EntrySession


# =====================================================
# TEST DOUBLES
# =====================================================

class FakeRedis:
    """In-process stand-in for a redis client: just the calls the cache makes."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    def ping(self):
        return True

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    def delete(self, key):
        self.store.pop(key, None)
        self.ttls.pop(key, None)

    def scan(self, cursor, match='*', count=100):
        return 0, [key for key in list(self.store) if fnmatch.fnmatch(key, match)]

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.ops = []

    def delete(self, key):
        self.ops.append(key)

    def execute(self):
        for key in self.ops:
            self.client.delete(key)
        self.ops = []


class FakeCatalog:
    """In-memory product/batch/stock/document collaborator."""

    def __init__(self):
        self.products = {}
        self.batches = {}
        self.stock = {}
        self.codes = {}
        self.documents = {}
        self.stock_calls = []
        self.fail_next_save = None

    def add(self, product, stock=0, batches=(), codes=()):
        self.products[product.id] = product
        self.stock[product.id] = Decimal(str(stock))
        self.batches[product.id] = list(batches)
        self.codes[product.code] = (product.id, None)
        for code, multi_unit_id in codes:
            self.codes[code] = (product.id, multi_unit_id)
        return product

    def get_product(self, product_id):
        if product_id not in self.products:
            raise NotFoundError(f'Product {product_id} not found')
        return self.products[product_id]

    def find_by_code(self, code):
        if code not in self.codes:
            raise NotFoundError(f'No product for code "{code}"')
        product_id, multi_unit_id = self.codes[code]
        return self.products[product_id], multi_unit_id

    def list_batches(self, product_id):
        return list(self.batches.get(product_id, []))

    def get_stock(self, product_id):
        self.stock_calls.append(product_id)
        return self.stock.get(product_id, Decimal('0'))

    def create(self, payload):
        if self.fail_next_save:
            error, self.fail_next_save = self.fail_next_save, None
            raise error
        document_no = f"SI-{len(self.documents) + 1:05d}"
        self.documents[document_no] = payload
        return document_no

    def update(self, document_no, payload):
        self.documents[document_no] = payload
        return document_no

    def delete(self, document_no):
        del self.documents[document_no]

    def load(self, document_no):
        payload = self.documents[document_no]
        return {
            'document_no': document_no,
            'kind': payload['kind'],
            'header': payload['header'],
            'items': payload['items'],
        }


def make_session(catalog, kind=DocumentKind.SALES_INVOICE, **kwargs):
    return EntrySession(catalog, catalog, catalog, catalog, kind, **kwargs)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def session_factory(catalog):
    """Build an EntrySession over the fake catalog with custom options."""
    def factory(kind=DocumentKind.SALES_INVOICE, **kwargs):
        return make_session(catalog, kind, **kwargs)
    return factory


# =====================================================
# DOMAIN FIXTURES
# =====================================================

@pytest.fixture
def pen():
    """Base-unit only product."""
    return Product(
        id='p-pen', code='PEN', name='Blue Pen', base_unit_id='u-pcs', base_unit_name='PCS',
        serial_tag='8900001', purchase_price=Decimal('10'), retail_price=Decimal('15'),
        wholesale_price=Decimal('12'),
    )


@pytest.fixture
def soap():
    """Product sold by the piece or by the box of 12."""
    return Product(
        id='p-soap', code='SOAP', name='Soap', base_unit_id='u-pcs', base_unit_name='PCS',
        serial_tag='8900002', purchase_price=Decimal('10'), retail_price=Decimal('14'),
        wholesale_price=Decimal('13'),
        alternate_units=[AlternateUnit(
            multi_unit_id='mu-box', unit_id='u-box', unit_name='BOX', conversion=Decimal('12'),
            serial_tag='8900012', retail=Decimal('160'), wholesale=Decimal('150'),
        )],
    )


@pytest.fixture
def rice():
    """Batch-tracked product."""
    return Product(
        id='p-rice', code='RICE', name='Rice 5kg', base_unit_id='u-bag', base_unit_name='BAG',
        purchase_price=Decimal('0'), retail_price=Decimal('40'), wholesale_price=Decimal('35'),
        allow_batches=True,
    )


@pytest.fixture
def rice_batches():
    return [
        Batch(batch_number='00001', purchase_price=Decimal('30'), quantity=Decimal('4'),
              retail=Decimal('42'), wholesale=Decimal('36'), expiry_date='2027-01-31'),
        Batch(batch_number='00002', purchase_price=Decimal('32'), quantity=Decimal('6'),
              retail=Decimal('44'), wholesale=Decimal('38'), expiry_date='2027-06-30'),
    ]


@pytest.fixture
def catalog(pen, soap, rice, rice_batches):
    catalog = FakeCatalog()
    catalog.add(pen, stock=10)
    catalog.add(soap, stock=120, codes=[('8900012', 'mu-box')])
    catalog.add(rice, stock=10, batches=rice_batches)
    return catalog


@pytest.fixture
def sales(catalog):
    return make_session(catalog, rate_tier='Retail')


@pytest.fixture
def stock_entry(catalog):
    return make_session(catalog, DocumentKind.OPENING_STOCK)


# =====================================================
# DATABASE FIXTURES
# =====================================================

@pytest.fixture(scope='session')
def context():
    """Runtime context over an in-memory SQLite database."""
    return create_context('config.TestConfig')


@pytest.fixture(scope='function')
def session(context):
    """Fresh tables for each test."""
    create_all()
    session = get_session()
    yield session
    session.rollback()
    session.remove()
    drop_all()


@pytest.fixture(scope='function')
def sql_catalog(session):
    return SqlCatalog(session, company_id=1)


@pytest.fixture(scope='function')
def seeded(session):
    """Units, a plain product, a multi-unit product and a batch-tracked product."""
    pcs = UOM(company_id=1, name='Pieces', short_code='PCS')
    box = UOM(company_id=1, name='Box', short_code='BOX')
    session.add_all([pcs, box])
    session.flush()

    pen = ProductRow(
        company_id=1, code='PEN', barcode='8900001', name='Blue Pen', uom_id=pcs.id,
        purchase_price=Decimal('10'), retail_price=Decimal('15'), wholesale_price=Decimal('12'),
        last_vendor='Acme Supplies',
    )
    soap = ProductRow(
        company_id=1, code='SOAP', barcode='8900002', name='Soap', uom_id=pcs.id,
        purchase_price=Decimal('10'), retail_price=Decimal('14'), wholesale_price=Decimal('13'),
    )
    rice = ProductRow(
        company_id=1, code='RICE', name='Rice 5kg', uom_id=pcs.id, allow_batches=True,
        purchase_price=Decimal('30'), retail_price=Decimal('40'), wholesale_price=Decimal('35'),
    )
    session.add_all([pen, soap, rice])
    session.flush()

    session.add(ProductUnit(
        product_id=soap.id, uom_id=box.id, conversion=Decimal('12'), barcode='8900012',
        retail=Decimal('160'), wholesale=Decimal('150'),
    ))
    session.add_all([
        ProductStock(product_id=pen.id, on_hand_qty=Decimal('10')),
        ProductStock(product_id=soap.id, on_hand_qty=Decimal('120')),
        ProductStock(product_id=rice.id, on_hand_qty=Decimal('10')),
    ])
    session.add_all([
        StockBatch(product_id=rice.id, batch_number='R-1', purchase_price=Decimal('30'),
                   quantity=Decimal('4'), retail=Decimal('42'), wholesale=Decimal('36')),
        StockBatch(product_id=rice.id, batch_number='R-2', purchase_price=Decimal('32'),
                   quantity=Decimal('6'), retail=Decimal('44'), wholesale=Decimal('38')),
    ])
    session.commit()
    return {'pcs': pcs, 'box': box, 'pen': pen, 'soap': soap, 'rice': rice}
