# importer/db.py
import logging
import os

from dotenv import load_dotenv
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from importer.errors import DuplicateProductError, StorageError

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "bookbright")

logger = logging.getLogger("importer.db")

_client = None
_db = None

SORT_OPTIONS = {
    "price": [("price", ASCENDING)],
    "newest": [("created_at", DESCENDING)],
    "name": [("name", ASCENDING)],
}


def get_client():
    """Initialize and return the MongoDB AsyncIOMotorClient singleton."""
    global _client, _db
    if _client is None:
        _client = AsyncIOMotorClient(MONGO_URI)
        _db = _client[MONGO_DB]
    return _client


def get_db():
    """Return the MongoDB database instance, initializing if needed."""
    global _db
    if _db is None:
        get_client()
    return _db


async def safe_query(fn, fallback, label=None):
    """
    Await a query without letting a storage failure escape.

    Args:
        fn (callable): Zero-argument callable returning an awaitable
        fallback: Value returned when the query raises
        label (str, optional): Tag for the log line

    Returns:
        The query result, or ``fallback`` on any exception.
    """
    try:
        return await fn()
    except Exception as e:
        suffix = f" ({label})" if label else ""
        logger.error(f"Failed to run query{suffix}: {type(e).__name__}: {e}")
        return fallback


def build_product_query(category=None, min_price=None, max_price=None):
    q = {"is_active": True}
    if category:
        q["category"] = category
    if min_price is not None or max_price is not None:
        psub = {}
        if min_price is not None:
            psub["$gte"] = min_price
        if max_price is not None:
            psub["$lte"] = max_price
        q["price"] = psub
    return q


class ProductStore:
    """Catalog products, stored with their variants embedded."""

    def __init__(self, db=None):
        self.db = db if db is not None else get_db()

    @property
    def products(self):
        return self.db.products

    async def ensure_indexes(self):
        await self.products.create_index("supplier_url", unique=True)
        await self.products.create_index("slug", unique=True)

    async def find_by_supplier_url(self, url):
        return await self.products.find_one({"supplier_url": url})

    async def create_product(self, doc):
        """
        Insert a product document with its variants in one write.

        Returns:
            str: The inserted id

        Raises:
            DuplicateProductError: supplier_url already stored
            StorageError: any other database failure
        """
        try:
            res = await self.products.insert_one(doc)
        except DuplicateKeyError as e:
            if "slug" in ((e.details or {}).get("keyPattern") or {}):
                raise StorageError(f"Slug collision for {doc.get('slug')}") from e
            raise DuplicateProductError(f"Duplicate key for {doc.get('supplier_url')}") from e
        except PyMongoError as e:
            raise StorageError(f"Insert failed for {doc.get('supplier_url')}: {e}") from e
        return str(res.inserted_id)

    async def list_products(self, filters=None, sort_by=None, page=1, page_size=20):
        cursor = self.products.find(filters or {})
        if sort_by in SORT_OPTIONS:
            cursor = cursor.sort(SORT_OPTIONS[sort_by])
        skip = (page - 1) * page_size
        return await cursor.skip(skip).limit(page_size).to_list(length=page_size)

    async def count_products(self, filters=None):
        return await self.products.count_documents(filters or {})

    async def get_by_slug(self, slug):
        return await self.products.find_one({"slug": slug, "is_active": True})
