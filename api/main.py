# api/main.py
import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from importer.db import ProductStore, build_product_query, get_db, safe_query
from importer.errors import ImportErrorKind, ImportFailure, user_message
from importer.orchestrator import BulkImporter
from importer.registry import build_default_registry
from importer.transform import (
    base_price_usd,
    collect_images,
    detect_category,
    improve_title,
    nok_prices,
    short_description,
)

from .auth import get_api_key
from .rate_limit import limiter, register_rate_limit
from .schemas import BadRequest, validate_bulk_import, validate_scrape

load_dotenv()
API_PORT = int(os.getenv("API_PORT", "8000"))
BULK_IMPORT_RATE_LIMIT = os.getenv("BULK_IMPORT_RATE_LIMIT", "10/minute")

logger = logging.getLogger("api")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
logger.addHandler(handler)

_registry = None


def get_registry():
    """Return the process-wide provider registry, building it on first use."""
    global _registry
    if _registry is None:
        _registry = build_default_registry()
    return _registry


def get_store():
    return ProductStore(get_db())


def get_importer(registry=Depends(get_registry), store=Depends(get_store)):
    return BulkImporter(registry, store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await safe_query(lambda: get_store().ensure_indexes(), None, "startup:indexes")
    yield
    if _registry is not None:
        await _registry.close()


app = FastAPI(title="BookBright Product Import API", version="1.0", lifespan=lifespan)

register_rate_limit(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

PUBLIC_FIELDS = [
    "_id",
    "slug",
    "sku",
    "name",
    "description",
    "short_description",
    "price",
    "compare_at_price",
    "category",
    "images",
    "tags",
    "supplier_name",
    "created_at",
    "variants",
]

VARIANT_FIELDS = ["id", "name", "sku", "price", "compare_at_price", "image", "attributes", "stock"]


def _decode_list(value):
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return []
    return value or []


def product_doc_to_resp(doc):
    """
    Transform a catalog product document into a public API response dict.

    Drops supplier-side fields (supplier_url, supplier_price, store_id) and
    decodes the JSON-encoded ``images`` and ``tags`` columns. Inactive
    variants are left out.

    Args:
        doc (dict): Stored product document

    Returns:
        dict: Public product fields, with ``_id`` as a string
    """
    resp = {k: doc.get(k) for k in PUBLIC_FIELDS}
    resp["_id"] = str(resp["_id"])
    resp["images"] = _decode_list(doc.get("images"))
    resp["tags"] = _decode_list(doc.get("tags"))
    resp["variants"] = [
        {k: v.get(k) for k in VARIANT_FIELDS}
        for v in sorted(doc.get("variants") or [], key=lambda v: v.get("sort_order", 0))
        if v.get("is_active", True)
    ]
    return resp


async def _read_json(request):
    try:
        return await request.json()
    except ValueError:
        raise BadRequest("Ugyldig JSON i forespørselen")


@app.post("/products/bulk-import", dependencies=[Depends(get_api_key)])
@limiter.limit(BULK_IMPORT_RATE_LIMIT)
async def bulk_import(
    request: Request,
    registry=Depends(get_registry),
    importer=Depends(get_importer),
):
    """
    Import a list of product URLs into the catalog.

    Body:
        {"urls": ["https://..."], "provider": "temu" | "alibaba" (optional)}

    Returns:
        JSONResponse:
            - 200 {"results": [...]} with one camelCase result per URL, in order
            - 400 {"error": ...} for a malformed body, missing/empty urls,
              non-http(s) entries (first three listed) or an unknown provider
            - 500 {"error": ...} if the batch itself fails

    Rate Limit:
        BULK_IMPORT_RATE_LIMIT per client (default 10/minute)

    Security:
        Requires valid API key via X-API-Key header

    Note:
        URLs are processed one at a time with a fixed delay in between, so the
        response time grows with the batch size. A failing URL never aborts the
        batch; it is reported as an ``error`` result.
    """
    try:
        body = validate_bulk_import(await _read_json(request), registry.supported_names())
    except BadRequest as e:
        return JSONResponse({"error": str(e)}, status_code=400)

    try:
        results = await importer.run(body.urls, body.provider)
    except Exception as e:
        logger.exception(f"[Bulk Import] Fatal error: {e}")
        return JSONResponse({"error": "Ukjent feil ved bulk import"}, status_code=500)

    return JSONResponse({"results": [r.to_response() for r in results]})


def _scrape_hint(provider_name):
    if provider_name == "temu":
        return "Temu kan være vanskelig å scrape. Prøv å kopiere URL direkte fra produktets side."
    return "Prøv å oppdatere siden og sjekk at URL-en er korrekt."


def mapped_to_preview(mapped, normalized_url):
    """Storefront preview of a mapped product with suggested NOK prices."""
    base, substituted = base_price_usd(mapped)
    images = collect_images(mapped)
    variants = []
    for v in mapped.variants:
        prices = nok_prices(v.price if v.price > 0 else base, v.compare_at_price)
        variants.append(
            {
                "name": v.name,
                "image": v.image or (images[0] if images else None),
                "attributes": v.attributes,
                "stock": v.stock,
                **prices,
            }
        )
    description = mapped.description or ""
    return {
        "name": improve_title(mapped.title) or mapped.title,
        "supplier": mapped.supplier,
        "url": normalized_url,
        "description": description,
        "short_description": short_description(description),
        "category": detect_category(mapped.title),
        "images": images[:10],
        "tags": list(mapped.specs)[:5],
        "specs": mapped.specs,
        "shipping_estimate": mapped.shipping_estimate,
        "source_price": {"amount": mapped.price.amount, "currency": mapped.price.currency},
        "price_substituted": substituted,
        "variants": variants,
        **nok_prices(base),
    }


@app.post("/products/scrape", dependencies=[Depends(get_api_key)])
@limiter.limit(BULK_IMPORT_RATE_LIMIT)
async def scrape_product(request: Request, registry=Depends(get_registry)):
    """
    Fetch and map one product URL without saving it.

    Body:
        {"url": "https://...", "provider": "temu" | "alibaba" (optional)}

    Returns:
        JSONResponse:
            - 200 preview with improved title, category, images and
              suggested NOK prices (supplier_price, price, compare_at_price)
            - 400 {"error": ...} for a bad URL or unsupported provider
            - 502 {"error", "hint"} when the page could not be fetched or read

    Security:
        Requires valid API key via X-API-Key header
    """
    try:
        body = validate_scrape(await _read_json(request), registry.supported_names())
    except BadRequest as e:
        return JSONResponse({"error": str(e)}, status_code=400)

    provider = registry.get_provider_for_url(body.url, body.provider)
    if provider is None:
        supported = ", ".join(registry.supported_names())
        return JSONResponse(
            {"error": user_message(ImportErrorKind.UNSUPPORTED_PROVIDER, supported=supported)},
            status_code=400,
        )

    normalized_url = provider.normalize_url(body.url)
    try:
        raw = await provider.fetch_product(normalized_url)
        mapped = provider.map_to_product(raw, normalized_url)
    except ImportFailure as e:
        logger.warning(f"[Scrape] {e.kind.value} for {normalized_url}: {e}")
        return JSONResponse(
            {"error": user_message(e.kind), "hint": _scrape_hint(provider.name)},
            status_code=502,
        )

    preview = mapped_to_preview(mapped, normalized_url)
    preview["warnings"] = raw.warnings
    return JSONResponse(preview)


@app.get("/products", dependencies=[Depends(get_api_key)])
@limiter.limit("100/hour")
async def list_products(
    request: Request,
    category: Optional[str] = Query(None),
    min_price: Optional[float] = Query(None),
    max_price: Optional[float] = Query(None),
    sort_by: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    store=Depends(get_store),
):
    """
    List active catalog products with filtering, sorting and pagination.

    Args:
        request (Request): FastAPI request object (required for rate limiting)
        category (str, optional): Exact category match
        min_price (float, optional): Minimum selling price in NOK (inclusive)
        max_price (float, optional): Maximum selling price in NOK (inclusive)
        sort_by (str, optional): 'price' (asc), 'newest' (created_at desc) or
            'name' (asc). Other values leave the store order.
        page (int): Page number, >= 1
        page_size (int): Items per page, 1-200

    Returns:
        JSONResponse: page, page_size, total and results
    """
    q = build_product_query(category, min_price, max_price)
    total = await store.count_products(q)
    docs = await store.list_products(q, sort_by, page, page_size)
    return JSONResponse(
        {
            "page": page,
            "page_size": page_size,
            "total": total,
            "results": [product_doc_to_resp(d) for d in docs],
        }
    )


@app.get("/products/{slug}", dependencies=[Depends(get_api_key)])
@limiter.limit("100/hour")
async def get_product(request: Request, slug: str, store=Depends(get_store)):
    """
    Retrieve a single active product by slug.

    Raises:
        HTTPException: 404 if no active product has the slug
    """
    doc = await store.get_by_slug(slug)
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    return product_doc_to_resp(doc)


# Run uvicorn externally or here
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=API_PORT, reload=True)
