# importer/transform.py
"""
Turns a MappedProduct into a catalog document: image collection, category
detection, USD -> NOK pricing, title clean-up, SKU and slug generation.
"""
import json
import os
import re
from datetime import datetime, timezone

from dotenv import load_dotenv

from importer.utils import generate_id, round_half_up, slugify

load_dotenv()
USD_TO_NOK_RATE = float(os.getenv("USD_TO_NOK_RATE", "10.5"))
PROFIT_MARGIN = float(os.getenv("PROFIT_MARGIN", "2.0"))
COMPARE_AT_PRICE_MULTIPLIER = float(os.getenv("COMPARE_AT_PRICE_MULTIPLIER", "1.3"))
DEFAULT_SOURCE_PRICE_USD = float(os.getenv("DEFAULT_SOURCE_PRICE_USD", "9.99"))
DEFAULT_STORE_ID = os.getenv("DEFAULT_STORE_ID", "default-store")

DEFAULT_CATEGORY = "Elektronikk"

# First match wins.
CATEGORY_RULES = [
    ("Mobil & Tilbehør", ("phone", "iphone", "mobil")),
    ("Datamaskiner", ("computer", "laptop", "pc", "tastatur", "keyboard")),
    ("TV & Lyd", ("tv", "speaker", "høyttaler")),
    ("Gaming", ("game", "gaming")),
    ("Hjem & Fritid", ("home", "hjem")),
]

PLACEHOLDER_MARKERS = ("placeholder", "placehold.co")

SHORT_DESCRIPTION_LENGTH = 150
MAX_TITLE_LENGTH = 120

PRICE_WARNING = "Pris ser ut til å være ugyldig eller manglende"
NO_IMAGES_WARNING = "Ingen bilder funnet for produktet"

_TITLE_NOISE_RE = re.compile(
    r"\b(?:20\d\d\s+)?(?:new arrival|hot sale|free shipping|best seller|"
    r"factory direct|wholesale|high quality|top quality)\b",
    re.IGNORECASE,
)
_MARKETPLACE_SUFFIX_RE = re.compile(
    r"\s*[|\-]\s*(?:temu|alibaba(?:\.com)?|1688(?:\.com)?)\s*$", re.IGNORECASE
)


def improve_title(title):
    """
    Tidy a supplier title for the storefront.

    Removes marketplace suffixes and promotional filler, collapses whitespace
    and separators, trims to MAX_TITLE_LENGTH on a word boundary and upper-cases
    the first letter.
    """
    if not title:
        return ""
    t = _MARKETPLACE_SUFFIX_RE.sub("", title)
    t = _TITLE_NOISE_RE.sub(" ", t)
    t = re.sub(r"\s*([,/|])\s*(?=[,/|]|$)", " ", t)
    t = re.sub(r"\s+", " ", t).strip(" ,-|/")
    if not t:
        return title.strip()
    if len(t) > MAX_TITLE_LENGTH:
        cut = t[:MAX_TITLE_LENGTH]
        t = cut.rsplit(" ", 1)[0] if " " in cut else cut
        t = t.rstrip(" ,-|/")
    return t[0].upper() + t[1:]


def _usable_image(url):
    return (
        isinstance(url, str)
        and url.startswith("http")
        and not any(m in url for m in PLACEHOLDER_MARKERS)
    )


def collect_images(mapped):
    """Variant images first (in variant order), then product images; no duplicates."""
    images = []
    for url in [v.image for v in mapped.variants] + list(mapped.images):
        if _usable_image(url) and url not in images:
            images.append(url)
    return images


def detect_category(title):
    lowered = (title or "").lower()
    for category, keywords in CATEGORY_RULES:
        if any(k in lowered for k in keywords):
            return category
    return DEFAULT_CATEGORY


def base_price_usd(mapped):
    """
    Lowest variant price, else the product amount.

    Returns:
        tuple: (price, substituted) where substituted is True when the
            DEFAULT_SOURCE_PRICE_USD fallback was used.
    """
    prices = [v.price for v in mapped.variants if v.price]
    base = min(prices) if prices else mapped.price.amount
    if not base or base <= 0:
        return DEFAULT_SOURCE_PRICE_USD, True
    return base, False


def nok_prices(usd, compare_at_usd=None):
    """
    Convert a USD supplier price to NOK supplier / selling / compare-at prices.

    Returns:
        dict: supplier_price, price, compare_at_price (integers)
    """
    supplier = round_half_up(usd * USD_TO_NOK_RATE)
    selling = round_half_up(supplier * PROFIT_MARGIN)
    if compare_at_usd:
        compare_at = round_half_up(compare_at_usd * USD_TO_NOK_RATE * PROFIT_MARGIN)
    else:
        compare_at = round_half_up(selling * COMPARE_AT_PRICE_MULTIPLIER)
    return {"supplier_price": supplier, "price": selling, "compare_at_price": compare_at}


def short_description(description):
    if len(description) > SHORT_DESCRIPTION_LENGTH:
        return description[:SHORT_DESCRIPTION_LENGTH] + "..."
    return description


def build_catalog_document(mapped, normalized_url, provider_name, store_id=DEFAULT_STORE_ID):
    """
    Build the product document stored in the catalog.

    Args:
        mapped (MappedProduct): Provider output
        normalized_url (str): Stored as supplier_url; the duplicate key
        provider_name (str): Stored as supplier_name and used as SKU prefix
        store_id (str): Owning store

    Returns:
        tuple: (document, warnings). warnings holds the price substitution
            notice when the source price was missing or zero.
    """
    warnings = []
    base, substituted = base_price_usd(mapped)
    if substituted:
        warnings.append(PRICE_WARNING)

    images = collect_images(mapped)
    title = improve_title(mapped.title) or mapped.title
    sku = f"{provider_name.upper()}-{generate_id().upper()}"
    slug_base = slugify(title) or provider_name
    slug = f"{slug_base}-{generate_id()[:4]}"
    description = mapped.description or ""
    short = short_description(description)

    variants = []
    for index, v in enumerate(mapped.variants):
        variant_usd = v.price if v.price and v.price > 0 else base
        prices = nok_prices(variant_usd, v.compare_at_price)
        variants.append(
            {
                "id": generate_id(),
                "name": v.name or "Standard",
                "sku": f"{sku}-V{index + 1}",
                "image": v.image if _usable_image(v.image) else None,
                "attributes": dict(v.attributes),
                "stock": v.stock or 0,
                "is_active": True,
                "sort_order": index,
                **prices,
            }
        )

    doc = {
        "_id": generate_id(),
        "slug": slug,
        "sku": sku,
        "name": title,
        "description": description or short,
        "short_description": short,
        "images": json.dumps(images),
        "tags": json.dumps(list(mapped.specs)[:10]),
        "category": detect_category(mapped.title),
        "is_active": True,
        "supplier_url": normalized_url,
        "supplier_name": provider_name,
        "store_id": store_id,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "variants": variants,
        **nok_prices(base),
    }
    return doc, warnings


def post_import_warnings(doc):
    warnings = []
    if not json.loads(doc["images"]):
        warnings.append(NO_IMAGES_WARNING)
    if doc["supplier_price"] < round_half_up(USD_TO_NOK_RATE):
        warnings.append(PRICE_WARNING)
    return warnings
