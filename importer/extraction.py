# importer/extraction.py
"""
Product extraction strategies for marketplace product pages.

Three strategies run in order, each one a fallback for the previous:

1. JSON-LD ``Product`` schema
2. Embedded hydration JSON (``window.__INIT_DATA__``, ``__NEXT_DATA__``, ...)
3. CSS selector scraping with several alternative selectors per field

Every strategy returns an extraction outcome (see ``importer.models``):
a hit carrying a ``RawProduct`` or ``Insufficient`` with a reason. Fields
are merged independently, so a later strategy only fills what an earlier
one left empty.
"""
import json
import logging
import re
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from pydantic import ValidationError

from importer.errors import InsufficientDataError
from importer.models import (
    EmbeddedJsonHit,
    HtmlFallbackHit,
    Insufficient,
    JsonLdHit,
    RawPrice,
    RawProduct,
    RawVariant,
)

logger = logging.getLogger("importer.extraction")

_DECODER = json.JSONDecoder()

MAX_NESTED_DEPTH = 5

# Keys worth descending into when hunting for the product node.
DEFAULT_HINT_KEYS = ("product", "goods", "item", "props", "pageprops", "detail")

EMBEDDED_PATTERNS = [
    ("window.__NEXT_DATA__", re.compile(r"window\.__NEXT_DATA__\s*=\s*")),
    ("productData", re.compile(r"(?:window\.|var\s+|let\s+|const\s+)productData\s*=\s*")),
    ("rawData", re.compile(r"window\.rawData\s*=\s*")),
    ("__PRELOADED_STATE__", re.compile(r"window\.__PRELOADED_STATE__\s*=\s*")),
]
INIT_DATA_PATTERN = re.compile(r"window\.__INIT_DATA__\s*=\s*")

TITLE_SELECTORS = [
    ".module-pc-detail-heading .title",
    ".product-title",
    ".detail-title",
    "h1.product-title",
    "h1.detail-title",
    "h1",
    'meta[property="og:title"]',
    'meta[name="title"]',
    ".title",
    "[class*='title']",
]

PRICE_SELECTORS = [
    ".price .price-text",
    ".price-range",
    ".product-price",
    ".detail-price",
    ".unit-price",
    '[class*="price"]',
    "[data-price]",
]

IMAGE_SELECTORS = [
    ".product-image-gallery img",
    ".gallery img",
    ".product-images img",
    ".detail-images img",
    "[class*='image-gallery'] img",
    "[class*='product-image'] img",
    "[class*='gallery'] img",
    "[class*='image'] img",
    ".swiper-slide img",
    ".carousel img",
]
IMAGE_ATTRS = ("src", "data-src", "data-lazy-src", "data-original", "data-img")
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg")

DESCRIPTION_SELECTORS = [
    "#J-rich-text-description",
    ".product-description",
    ".detail-description",
    "[class*='description']",
    'meta[property="og:description"]',
    'meta[name="description"]',
]

SPEC_SELECTORS = [
    ".do-entry-list li",
    ".spec-list li",
    ".product-specs li",
    "[class*='spec'] li",
    ".attributes li",
    "table.specs tr",
]
SPEC_KEY_SELECTOR = ".do-entry-item, .spec-key, .spec-name, [class*='key']"
SPEC_VALUE_SELECTOR = ".do-entry-value, .spec-value, .spec-val, [class*='value']"

MOQ_ATTR_SELECTORS = [("[data-moq]", "data-moq"), ("[data-min-order]", "data-min-order")]
MOQ_TEXT_SELECTORS = ['[class*="moq"]', '[class*="MOQ"]', '[class*="min"]']

SHIPPING_SELECTORS = [
    ".trade-detail-main-wrap .module-pc-ship .text",
    '[class*="shipping"]',
    '[class*="delivery"]',
    '[class*="ship"]',
]

_RANGE_RE = re.compile(
    r"(?:USD|US\$|\$)?\s*(\d[\d,]*\.?\d*)\s*[-–—]\s*(?:USD|US\$|\$)?\s*(\d[\d,]*\.?\d*)",
    re.IGNORECASE,
)
_SINGLE_RE = re.compile(r"(?:USD|US\$|\$)?\s*(\d[\d,]*\.?\d*)", re.IGNORECASE)
_MOQ_RE = re.compile(r"(?:MOQ|Min\.?\s*Order|Minimum)[^\d:]*:?\s*(\d+)", re.IGNORECASE)
_BG_URL_RE = re.compile(r"url\(['\"]?([^'\")]+)['\"]?\)")


# ---------------------------------------------------------------------------
# small value helpers
# ---------------------------------------------------------------------------


def _to_float(value):
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = re.sub(r"[^0-9.]", "", value.replace(",", ""))
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def _to_int(value):
    f = _to_float(value)
    return int(f) if f is not None else None


def _as_list(value):
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _first(mapping, *keys):
    for k in keys:
        v = mapping.get(k)
        if v not in (None, "", [], {}):
            return v
    return None


def _text(value):
    """String out of a str, the first string of a list, or a JSON-LD ``{"@value": ...}`` node."""
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, list):
        for item in value:
            text = _text(item)
            if text:
                return text
        return None
    if isinstance(value, dict):
        return _text(value.get("@value"))
    return None


def _absolute_image(url):
    if not isinstance(url, str):
        return None
    url = url.strip()
    if url.startswith("//"):
        url = f"https:{url}"
    return url if url.startswith("http") else None


def _spec_map(value):
    """Coerce dict or [{name, value}] shaped specs into dict[str, str]."""
    specs = {}
    if isinstance(value, dict):
        for k, v in value.items():
            if v not in (None, "") and not isinstance(v, (dict, list)):
                specs[str(k)] = str(v)
    elif isinstance(value, list):
        for item in value:
            if not isinstance(item, dict):
                continue
            k = _first(item, "name", "key", "specKey", "attrName")
            v = _first(item, "value", "specValue", "attrValue")
            if k and v is not None and not isinstance(v, (dict, list)):
                specs[str(k)] = str(v)
    return specs


def parse_price_range(price_text):
    """
    Parse a price or price range out of free text.

    Args:
        price_text (str): e.g. "$10.00 - $20.00", "USD 15.50", "$1,000.00"

    Returns:
        RawPrice or None: For a range, from_price/to_price are set and the
            nominal amount is the lower bound. None if no number is found.
    """
    if not price_text or not isinstance(price_text, str):
        return None

    m = _RANGE_RE.search(price_text)
    if m:
        from_price = float(m.group(1).replace(",", ""))
        to_price = float(m.group(2).replace(",", ""))
        return RawPrice(
            from_price=from_price, to_price=to_price, amount=from_price, currency="USD"
        )

    m = _SINGLE_RE.search(price_text)
    if m:
        return RawPrice(amount=float(m.group(1).replace(",", "")), currency="USD")
    return None


def extract_moq(text):
    if not text:
        return None
    m = _MOQ_RE.search(text)
    return int(m.group(1)) if m else None


def is_valid_image_url(url):
    try:
        path = urlparse(url).path.lower()
    except ValueError:
        return False
    if path.endswith(IMAGE_EXTENSIONS):
        return True
    return any(word in url for word in ("image", "img", "photo", "picture"))


# ---------------------------------------------------------------------------
# 1. JSON-LD
# ---------------------------------------------------------------------------


def _is_product_type(node):
    types = _as_list(node.get("@type"))
    return any(t in ("Product", "http://schema.org/Product", "https://schema.org/Product") for t in types)


def _iter_json_ld_nodes(data):
    for node in _as_list(data):
        if not isinstance(node, dict):
            continue
        yield node
        for child in _as_list(node.get("@graph")):
            if isinstance(child, dict):
                yield child


def _json_ld_images(node):
    images = []
    for img in _as_list(node.get("image")):
        url = img if isinstance(img, str) else None
        if isinstance(img, dict):
            url = _first(img, "url", "@id", "contentUrl")
        url = _absolute_image(url)
        if url:
            images.append(url)
    return images


def _json_ld_price(offers):
    if not offers:
        return None
    offer = offers[0]
    if not isinstance(offer, dict):
        return None
    currency = _text(offer.get("priceCurrency")) or "USD"
    low = _to_float(offer.get("lowPrice"))
    high = _to_float(offer.get("highPrice"))
    if low is not None:
        return RawPrice(amount=low, from_price=low, to_price=high, currency=currency)
    amount = _to_float(offer.get("price"))
    if amount is None:
        return None
    return RawPrice(amount=amount, currency=currency)


def _json_ld_moq(offers):
    for offer in offers:
        if not isinstance(offer, dict):
            continue
        qty = offer.get("eligibleQuantity")
        if isinstance(qty, dict) and qty.get("minValue") is not None:
            return _to_int(qty["minValue"])
    return None


def extract_json_ld(soup):
    """
    Read the first schema.org Product found in a JSON-LD script tag.

    Args:
        soup (BeautifulSoup): Parsed product page.

    Returns:
        JsonLdHit or Insufficient
    """
    for el in soup.select('script[type="application/ld+json"]'):
        try:
            data = json.loads(el.get_text())
        except ValueError:
            continue
        for node in _iter_json_ld_nodes(data):
            if not _is_product_type(node):
                continue
            try:
                product = _product_from_json_ld(node)
            except ValidationError as e:
                logger.warning(f"Skipping malformed JSON-LD Product: {e.error_count()} invalid field(s)")
                continue
            return JsonLdHit(product=product)
    return Insufficient(reason="no JSON-LD Product schema")


def _product_from_json_ld(node):
    offers = [o for o in _as_list(node.get("offers")) if isinstance(o, dict)]
    variants = []
    if len(offers) > 1:
        variants = [
            RawVariant(
                name=_text(o.get("name")) or "Variant",
                price=_to_float(o.get("price")) or 0.0,
                image=_absolute_image(o.get("image")),
            )
            for o in offers
        ]
    return RawProduct(
        title=_text(node.get("name")) or _text(node.get("title")),
        description=_text(node.get("description")),
        images=_json_ld_images(node),
        price=_json_ld_price(offers),
        specs=_spec_map(node.get("additionalProperty")),
        variants=variants,
        moq=_json_ld_moq(offers),
        extracted_by=["json_ld"],
    )


# ---------------------------------------------------------------------------
# 2. Embedded JSON
# ---------------------------------------------------------------------------


def _decode_at(text, pos):
    start = text.find("{", pos)
    if start < 0:
        return None
    try:
        obj, _ = _DECODER.raw_decode(text, start)
    except ValueError:
        return None
    return obj


def _nested_images(node):
    for field in ("images", "imageList", "gallery", "productImages", "thumbnails", "goodsGallery"):
        images = []
        for img in _as_list(node.get(field)):
            url = img
            if isinstance(img, dict):
                url = _first(img, "url", "src", "original", "thumbnail", "imageUrl")
            url = _absolute_image(url)
            if url:
                images.append(url)
        if images:
            return images
    return []


def _nested_price(node):
    currency = node.get("currency") if isinstance(node.get("currency"), str) else "USD"
    for field in ("price", "productPrice", "unitPrice", "salePrice", "minPrice", "priceRange"):
        value = node.get(field)
        if value in (None, "", 0):
            continue
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return RawPrice(amount=float(value), currency=currency)
        if isinstance(value, dict):
            from_price = _to_float(_first(value, "from", "min", "fromPrice", "minPrice"))
            to_price = _to_float(_first(value, "to", "max", "toPrice", "maxPrice"))
            amount = from_price if from_price is not None else _to_float(value.get("amount"))
            return RawPrice(
                amount=amount,
                from_price=from_price,
                to_price=to_price,
                currency=_text(value.get("currency")) or currency,
            )
        if isinstance(value, str):
            parsed = parse_price_range(value)
            if parsed:
                return parsed
    return None


def _nested_variants(node):
    for field in ("variants", "options", "skuList", "skus", "productOptions"):
        entries = node.get(field)
        if not isinstance(entries, list):
            continue
        variants = []
        for v in entries:
            if not isinstance(v, dict):
                continue
            variants.append(
                RawVariant(
                    name=_text(_first(v, "name", "label", "title", "specName")) or "Variant",
                    price=_to_float(_first(v, "price", "unitPrice", "salePrice")) or 0.0,
                    attributes=_spec_map(_first(v, "attributes", "specs")),
                    image=_absolute_image(_first(v, "image", "thumbnail", "thumbUrl")),
                    stock=_to_int(_first(v, "stock", "quantity")) or 0,
                )
            )
        if variants:
            return variants
    return []


def find_product_node(data, hint_keys=DEFAULT_HINT_KEYS, depth=0):
    """
    Depth-limited search for the dict that looks like the product.

    A node qualifies when it carries a title-like string field. Only keys that
    contain one of ``hint_keys`` (case-insensitive) are descended into.
    """
    if depth > MAX_NESTED_DEPTH:
        return None

    if isinstance(data, list):
        for item in data:
            found = find_product_node(item, hint_keys, depth + 1)
            if found is not None:
                return found
        return None

    if not isinstance(data, dict):
        return None

    title = _first(data, "title", "name", "productName", "goodsName", "subject")
    if isinstance(title, str):
        return data

    for key, value in data.items():
        if any(h in key.lower() for h in hint_keys):
            found = find_product_node(value, hint_keys, depth + 1)
            if found is not None:
                return found
    return None


def product_from_node(node):
    return RawProduct(
        title=_text(_first(node, "title", "name", "productName", "goodsName", "subject")),
        description=_text(_first(node, "description", "desc", "productDescription")),
        images=_nested_images(node),
        price=_nested_price(node),
        variants=_nested_variants(node),
        moq=_to_int(_first(node, "moq", "minOrderQuantity", "minimumOrderQuantity")),
        specs=_spec_map(_first(node, "specs", "specifications", "attributes")),
    )


def _embedded_candidates(soup, html):
    m = INIT_DATA_PATTERN.search(html)
    if m:
        yield "__INIT_DATA__", _decode_at(html, m.end())

    tag = soup.select_one('script#__NEXT_DATA__[type="application/json"]')
    if tag is not None:
        try:
            yield "__NEXT_DATA__", json.loads(tag.get_text())
        except ValueError:
            logger.warning("Failed to parse __NEXT_DATA__ script tag")

    for name, pattern in EMBEDDED_PATTERNS:
        m = pattern.search(html)
        if m:
            yield name, _decode_at(html, m.end())

    for script in soup.select("script"):
        if script.get("type") not in (None, "text/javascript"):
            continue
        text = script.get_text()
        if len(text) > 100 and any(w in text for w in ("product", "price", "title")):
            yield "inline-script", _decode_at(text, 0)


def extract_embedded_json(soup, html, hint_keys=()):
    """
    Look for product data in framework hydration state embedded in the page.

    Args:
        soup (BeautifulSoup): Parsed page.
        html (str): Raw page source (regex patterns run on it).
        hint_keys (tuple): Extra keys to descend into, per marketplace.

    Returns:
        EmbeddedJsonHit or Insufficient
    """
    keys = DEFAULT_HINT_KEYS + tuple(k.lower() for k in hint_keys)
    for name, data in _embedded_candidates(soup, html):
        if data is None:
            continue
        node = find_product_node(data, keys)
        if node is None:
            continue
        try:
            product = product_from_node(node)
        except ValidationError as e:
            logger.warning(f"Skipping malformed product JSON in {name}: {e.error_count()} invalid field(s)")
            continue
        product.extracted_by = ["embedded_json"]
        logger.info(f"Found product data in {name}")
        return EmbeddedJsonHit(product=product, pattern=name)
    return Insufficient(reason="no embedded product JSON")


# ---------------------------------------------------------------------------
# 3. HTML fallback
# ---------------------------------------------------------------------------


def _meta_content(soup, selector):
    el = soup.select_one(selector)
    content = el.get("content") if el is not None else None
    return content.strip() if content and content.strip() else None


def extract_title(soup):
    for selector in TITLE_SELECTORS:
        if selector.startswith("meta"):
            content = _meta_content(soup, selector)
            if content:
                return content
            continue
        el = soup.select_one(selector)
        if el is not None:
            text = el.get_text(strip=True)
            if len(text) > 3:
                return text
    return ""


def extract_price(soup):
    for selector in PRICE_SELECTORS:
        el = soup.select_one(selector)
        if el is None:
            continue
        price = parse_price_range(el.get_text(" ", strip=True))
        if price:
            return price
    el = soup.select_one("[data-price]")
    if el is not None:
        return parse_price_range(el.get("data-price"))
    return None


def extract_images(soup, base_url):
    """
    Collect product images from gallery selectors, og:image and inline
    background-image styles. og:image is placed first.
    """
    images = []
    seen = set()

    def add(src, front=False):
        if not src:
            return
        url = urljoin(base_url, src.strip())
        if url in seen or not is_valid_image_url(url):
            return
        seen.add(url)
        if front:
            images.insert(0, url)
        else:
            images.append(url)

    for selector in IMAGE_SELECTORS:
        for img in soup.select(selector):
            src = next((img.get(a) for a in IMAGE_ATTRS if img.get(a)), None)
            add(src)

    add(_meta_content(soup, 'meta[property="og:image"]'), front=True)

    for el in soup.select('[style*="background-image"]'):
        m = _BG_URL_RE.search(el.get("style", ""))
        if m:
            add(m.group(1))

    return images


def extract_description(soup):
    for selector in DESCRIPTION_SELECTORS:
        if selector.startswith("meta"):
            content = _meta_content(soup, selector)
            if content:
                return content
            continue
        el = soup.select_one(selector)
        if el is not None:
            text = el.get_text(" ", strip=True)
            if len(text) > 10:
                return text
    return ""


def extract_specs(soup):
    specs = {}
    for selector in SPEC_SELECTORS:
        for el in soup.select(selector):
            key = value = ""
            if selector.startswith("table"):
                cells = el.select("th, td")
                if len(cells) >= 2:
                    key = cells[0].get_text(strip=True)
                    value = cells[-1].get_text(strip=True)
            else:
                key_el = el.select_one(SPEC_KEY_SELECTOR)
                value_el = el.select_one(SPEC_VALUE_SELECTOR)
                key = key_el.get_text(strip=True) if key_el else ""
                value = value_el.get_text(strip=True) if value_el else ""
                if not key or not value:
                    text = el.get_text(" ", strip=True)
                    if ":" in text and text.index(":") > 0:
                        key, value = (part.strip() for part in text.split(":", 1))
            if key and value and len(key) < 100 and len(value) < 500:
                specs[key] = value
    return specs


def extract_moq_from_html(soup):
    for selector, attr in MOQ_ATTR_SELECTORS:
        el = soup.select_one(selector)
        moq = _to_int(el.get(attr)) if el is not None else None
        if moq and moq > 0:
            return moq
    for selector in MOQ_TEXT_SELECTORS:
        for el in soup.select(selector):
            moq = extract_moq(el.get_text(" ", strip=True))
            if moq:
                return moq
    return None


def extract_shipping(soup):
    for selector in SHIPPING_SELECTORS:
        el = soup.select_one(selector)
        if el is not None:
            text = el.get_text(" ", strip=True)
            if text:
                return text
    return ""


def extract_from_html(soup, base_url):
    product = RawProduct(
        title=extract_title(soup) or None,
        description=extract_description(soup) or None,
        images=extract_images(soup, base_url),
        price=extract_price(soup),
        specs=extract_specs(soup),
        moq=extract_moq_from_html(soup),
        shipping_estimate=extract_shipping(soup) or None,
        extracted_by=["html_fallback"],
    )
    if not (product.title or product.price or product.images):
        return Insufficient(reason="no title, price or images in HTML")
    return HtmlFallbackHit(product=product)


# ---------------------------------------------------------------------------
# chain
# ---------------------------------------------------------------------------


def merge_missing(base, extra):
    """
    Fill the empty fields of ``base`` from ``extra``. Present values win.

    Args:
        base (RawProduct or None)
        extra (RawProduct)

    Returns:
        RawProduct: a new record; neither input is modified.
    """
    if base is None:
        return extra.model_copy(deep=True)

    merged = base.model_copy(deep=True)
    for field in ("title", "description", "price", "moq", "shipping_estimate", "availability"):
        if getattr(merged, field) in (None, ""):
            setattr(merged, field, getattr(extra, field))
    if not merged.images:
        merged.images = list(extra.images)
    if not merged.variants:
        merged.variants = [v.model_copy() for v in extra.variants]
    for key, value in extra.specs.items():
        merged.specs.setdefault(key, value)
    merged.warnings = merged.warnings + [w for w in extra.warnings if w not in merged.warnings]
    merged.extracted_by = merged.extracted_by + [
        k for k in extra.extracted_by if k not in merged.extracted_by
    ]
    return merged


def missing_critical_fields(product):
    if product is None:
        return ["title", "images", "price"]
    missing = []
    if not product.has_enough_data():
        missing.append("title")
    if not product.images:
        missing.append("images")
    if not product.price:
        missing.append("price")
    return missing


def run_extraction_chain(html, url, hint_keys=()):
    """
    Run JSON-LD, embedded JSON and HTML extraction against a page.

    Args:
        html (str): Page source.
        url (str): Page URL, used to resolve relative image paths.
        hint_keys (tuple): Provider-specific keys for the embedded JSON search.

    Returns:
        RawProduct: merged record; ``extracted_by`` lists contributing strategies.

    Raises:
        InsufficientDataError: if no strategy yields a title, or the merged
            record does not validate.
    """
    try:
        return _run_chain(html, url, hint_keys)
    except ValidationError as e:
        raise InsufficientDataError(f"Invalid product data on {url}: {e.error_count()} field(s)") from e


def _run_chain(html, url, hint_keys):
    soup = BeautifulSoup(html, "lxml")
    product = None

    outcome = extract_json_ld(soup)
    if not isinstance(outcome, Insufficient):
        product = outcome.product

    if product is None or not product.has_enough_data():
        logger.info(f"JSON-LD insufficient for {url}, trying embedded JSON")
        outcome = extract_embedded_json(soup, html, hint_keys)
        if not isinstance(outcome, Insufficient):
            product = merge_missing(product, outcome.product)

    missing = missing_critical_fields(product)
    if missing:
        logger.info(f"Missing {missing} for {url}, using HTML fallback")
        outcome = extract_from_html(soup, url)
        if not isinstance(outcome, Insufficient):
            product = merge_missing(product, outcome.product)

    if product is None or not product.has_enough_data():
        raise InsufficientDataError(f"No usable product data found on {url}")
    return product
