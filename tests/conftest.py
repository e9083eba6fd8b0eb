# tests/conftest.py
import sys
import os

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT_DIR)

import json
from bson import ObjectId
import pytest
from typing import List, Dict, Any
from httpx import ASGITransport, AsyncClient
from fastapi import Request, HTTPException
from pymongo.errors import DuplicateKeyError

from api.main import app, get_api_key, get_importer, get_registry, get_store
from api.rate_limit import limiter
from importer.db import ProductStore
from importer.orchestrator import BulkImporter
from importer.providers.alibaba import AlibabaProvider
from importer.providers.temu import TemuProvider
from importer.registry import ProviderRegistry

FIXTURES_DIR = os.path.join(os.path.dirname(__file__), "fixtures")

API_KEY = "testapikey"

LAMP_URL = "https://www.alibaba.com/product-detail/LED-Desk-Lamp_1600123456789.html"
SPEAKER_URL = "https://www.alibaba.com/product-detail/Bluetooth-Speaker_1600555000111.html"
UTENSILS_URL = "https://www.temu.com/silicone-utensil-set-g-601099512345678.html?goods_id=601099512345678"


def load_fixture(name):
    with open(os.path.join(FIXTURES_DIR, name), encoding="utf-8") as f:
        return f.read()


def product_page(title, price, images=()):
    """Minimal product page carrying a JSON-LD Product."""
    data = {
        "@context": "https://schema.org",
        "@type": "Product",
        "name": title,
        "image": list(images),
        "offers": {"@type": "Offer", "price": price, "priceCurrency": "USD"},
    }
    return (
        "<html><head><script type=\"application/ld+json\">"
        f"{json.dumps(data)}"
        "</script></head><body></body></html>"
    )


class FakeFetcher:
    """Serves canned HTML per URL; an Exception value is raised instead."""

    def __init__(self, pages=None):
        self.pages = dict(pages or {})
        self.calls = []
        self.closed = False

    async def fetch(self, url):
        self.calls.append(url)
        page = self.pages[url]
        if isinstance(page, Exception):
            raise page
        return page

    async def close(self):
        self.closed = True


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = list(docs)
        self._skip = 0
        self._limit = None

    def sort(self, order):
        """
        Sort the documents in the cursor by a specified field and direction.

        Simulates MongoDB/Motor's sort() functionality on an in-memory
        list of documents. Only the first (field, direction) pair is used.
        """
        field, direction = order[0]
        self._docs.sort(key=lambda d: d.get(field, None), reverse=(direction < 0))
        return self

    def skip(self, n: int):
        self._skip = n
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    async def to_list(self, length: int):
        start = self._skip
        end = None if self._limit is None else start + self._limit
        return [dict(d) for d in self._docs[start:end]]


def _matches(doc, q):
    for k, v in (q or {}).items():
        if isinstance(v, dict):
            docv = doc.get(k)
            if docv is None:
                return False
            if "$gte" in v and docv < v["$gte"]:
                return False
            if "$lte" in v and docv > v["$lte"]:
                return False
        elif doc.get(k) != v:
            return False
    return True


class FakeCollection:
    """
    In-memory stand-in for a Motor collection.

    Fields passed in ``unique`` behave like unique indexes: inserting a second
    document with the same value raises DuplicateKeyError, as MongoDB does.
    """

    def __init__(self, docs=None, unique=("supplier_url", "slug")):
        self.docs = list(docs or [])
        self.unique = unique
        self.indexes = []
        for d in self.docs:
            if "_id" not in d:
                d["_id"] = str(ObjectId())

    async def create_index(self, key, unique=False):
        self.indexes.append((key, unique))
        return f"{key}_1"

    async def find_one(self, q):
        for d in self.docs:
            if _matches(d, q):
                return dict(d)
        return None

    def find(self, q=None):
        return FakeCursor([d for d in self.docs if _matches(d, q)])

    async def insert_one(self, doc):
        doc = dict(doc)
        if "_id" not in doc:
            doc["_id"] = str(ObjectId())
        for field in self.unique:
            if doc.get(field) is not None and any(d.get(field) == doc[field] for d in self.docs):
                raise DuplicateKeyError(
                    f"E11000 duplicate key error dup key: {{ {field}: {doc[field]!r} }}",
                    11000,
                    {"keyPattern": {field: 1}},
                )
        self.docs.append(doc)

        class R:
            inserted_id = doc["_id"]

        return R()

    async def count_documents(self, q=None):
        return sum(1 for d in self.docs if _matches(d, q))


class FakeDB:
    def __init__(self, products=None):
        self.products = FakeCollection(products or [])


@pytest.fixture
def sample_products():
    return [
        {
            "_id": "p1",
            "slug": "led-desk-lamp-ab12",
            "sku": "ALIBABA-AAA",
            "name": "LED Desk Lamp",
            "price": 262,
            "compare_at_price": 341,
            "supplier_price": 131,
            "category": "Hjem & Fritid",
            "images": json.dumps(["https://s.alicdn.com/kf/lamp-main.jpg"]),
            "tags": json.dumps(["Material"]),
            "is_active": True,
            "supplier_url": "https://www.alibaba.com/product-detail/lamp_1.html",
            "supplier_name": "alibaba",
            "store_id": "default-store",
            "created_at": "2025-01-01T00:00:00+00:00",
            "variants": [
                {"id": "v1", "name": "Standard", "sku": "ALIBABA-AAA-V1", "price": 262,
                 "supplier_price": 131, "is_active": True, "sort_order": 0},
            ],
        },
        {
            "_id": "p2",
            "slug": "gaming-mouse-cd34",
            "sku": "TEMU-BBB",
            "name": "Gaming Mouse",
            "price": 150,
            "compare_at_price": 195,
            "supplier_price": 75,
            "category": "Gaming",
            "images": json.dumps([]),
            "tags": json.dumps([]),
            "is_active": True,
            "supplier_url": "https://www.temu.com/mouse.html?goods_id=2",
            "supplier_name": "temu",
            "store_id": "default-store",
            "created_at": "2025-01-03T00:00:00+00:00",
            "variants": [],
        },
        {
            "_id": "p3",
            "slug": "bluetooth-speaker-ef56",
            "sku": "ALIBABA-CCC",
            "name": "Bluetooth Speaker",
            "price": 74,
            "compare_at_price": 96,
            "supplier_price": 37,
            "category": "TV & Lyd",
            "images": json.dumps(["https://s.alicdn.com/kf/speaker-1.jpg"]),
            "tags": json.dumps([]),
            "is_active": True,
            "supplier_url": "https://www.alibaba.com/product-detail/speaker_3.html",
            "supplier_name": "alibaba",
            "store_id": "default-store",
            "created_at": "2025-01-02T00:00:00+00:00",
            "variants": [],
        },
        {
            "_id": "p4",
            "slug": "hidden-product-gh78",
            "name": "Hidden Product",
            "price": 100,
            "category": "Gaming",
            "is_active": False,
            "supplier_url": "https://www.temu.com/hidden.html?goods_id=4",
            "created_at": "2025-01-04T00:00:00+00:00",
        },
    ]


@pytest.fixture
def fake_db(sample_products):
    return FakeDB(products=sample_products)


@pytest.fixture
def store(fake_db):
    return ProductStore(fake_db)


@pytest.fixture
def fetcher():
    return FakeFetcher(
        {
            LAMP_URL: load_fixture("alibaba_jsonld.html"),
            SPEAKER_URL: load_fixture("alibaba_init_data.html"),
            UTENSILS_URL: load_fixture("temu_next_data.html"),
        }
    )


@pytest.fixture
def registry(fetcher):
    return ProviderRegistry([TemuProvider(fetcher), AlibabaProvider(fetcher)])


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def importer(registry, store, sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return BulkImporter(registry, store, delay=2, sleep=fake_sleep)


@pytest.fixture
async def client(registry, store, importer):
    # Override API key dependency
    async def fake_get_api_key(request: Request):
        key = request.headers.get("x-api-key") or request.headers.get("X-API-Key")
        if key != API_KEY:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return key

    app.dependency_overrides[get_api_key] = fake_get_api_key
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_importer] = lambda: importer
    limiter.reset()

    # Use AsyncClient with FastAPI app using ASGITransport
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
