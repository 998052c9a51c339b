"""Shared pytest fixtures for storefront tests."""

import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TEST_DIR, 'app.db')}")
os.environ.setdefault("DEVICE_STORAGE_DIR", os.path.join(_TEST_DIR, "devices"))
os.environ.setdefault("SYNC_INTERVAL_SECONDS", "3600")
os.environ.setdefault("CONTENT_STORE_RETRY_BASE_DELAY", "0")

import pytest
from sqlmodel import Session, create_engine

from storefront.db.session import create_db_and_tables
from storefront.models import User
from storefront.services.cart_store import CartStore
from storefront.services.favorites_store import FavoritesStore
from storefront.services.local_storage import MemoryStorage, cart_list_store, favorites_list_store
from storefront.services.remote_repository import CartRepository, FavoritesRepository
from storefront.services.synced_store import SessionContext
from storefront.services.validation import ValidationGate


class FakeContentStore:
    """In-memory catalog answering the lookups the services make."""

    def __init__(self):
        self.products = {}
        self.variants = {}
        self.fail = False
        self.batch_fail = False
        self.calls = []

    def add_product(self, product_id, name, variants=()):
        self.products[product_id] = {"_id": product_id, "name": name}
        for variant in variants:
            self.variants[variant["_id"]] = {"productId": product_id, **variant}
        return self.products[product_id]

    async def get_product_variant(self, product_id, variant_id):
        self.calls.append(("product_variant", product_id, variant_id))
        if self.fail:
            return None
        return {"product": self.products.get(product_id), "variant": self.variants.get(variant_id)}

    async def get_variant(self, variant_id):
        self.calls.append(("variant", variant_id))
        if self.fail:
            return None
        return {"variant": self.variants.get(variant_id)}

    async def get_products_and_variants(self, product_ids, variant_ids):
        self.calls.append(("batch", tuple(product_ids), tuple(variant_ids)))
        if self.fail or self.batch_fail:
            return None
        return {
            "products": [self.products[p] for p in product_ids if p in self.products],
            "variants": [self.variants[v] for v in variant_ids if v in self.variants],
        }

    async def product_exists(self, product_id):
        self.calls.append(("exists", product_id))
        if self.fail:
            return None
        return product_id in self.products

    async def get_product(self, product_id):
        if self.fail:
            return None
        return self.products.get(product_id)

    async def list_products(self, start=0, end=24, category_id=None, search=None):
        return list(self.products.values())[start:end]

    async def featured_products(self):
        return []

    async def categories(self):
        return [{"_id": "cat-shirts", "name": "Shirts"}]


class FakeOrders:
    def __init__(self):
        self.created = []
        self.error = None

    def create(self, data=None):
        if self.error:
            raise self.error
        self.created.append(data)
        return {"id": f"order_{len(self.created)}", "amount": data["amount"]}


class FakePaymentClient:
    def __init__(self):
        self.order = FakeOrders()


class Clock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, days=0, seconds=0):
        self.now += days * 86400 + seconds


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def profile_id(engine):
    with Session(engine) as session:
        user = User(email="shopper@example.com", name="Shopper", password_hash="x")
        session.add(user)
        session.commit()
        session.refresh(user)
        return user.id


@pytest.fixture
def catalog():
    catalog = FakeContentStore()
    catalog.add_product("prod-tee", "Classic Tee", [
        {"_id": "var-tee-m", "sku": "TEE-M", "price": 20.00, "stock": 10, "color": {"name": "Black"}, "size": {"name": "M"}},
        {"_id": "var-tee-l", "sku": "TEE-L", "price": 20.00, "stock": 2},
    ])
    catalog.add_product("prod-cap", "Logo Cap", [
        {"_id": "var-cap", "sku": "CAP", "price": 15.50, "stock": 5},
    ])
    catalog.add_product("prod-sold-out", "Sold Out Hoodie", [
        {"_id": "var-sold-out", "sku": "HOOD", "price": 55.00, "stock": 0},
    ])
    return catalog


@pytest.fixture
def gate(catalog):
    return ValidationGate(catalog)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def context():
    return SessionContext()


@pytest.fixture
def cart_store(context, storage, clock, engine, gate):
    return CartStore(context, cart_list_store(storage, 30, clock=clock), CartRepository(engine), gate, sync_interval=3600)


@pytest.fixture
def favorites_store(context, storage, clock, engine, gate):
    return FavoritesStore(context, favorites_list_store(storage, 90, clock=clock), FavoritesRepository(engine), gate, sync_interval=3600)


@pytest.fixture
def payment_client():
    return FakePaymentClient()
