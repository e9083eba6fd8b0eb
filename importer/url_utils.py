# importer/url_utils.py
import logging
import re
from urllib.parse import parse_qs, quote, unquote_plus, urlsplit

logger = logging.getLogger("importer.url_utils")

_WHITESPACE_RE = re.compile(r"\s")

# Removed from every supplier URL before lookup or storage.
TRACKING_PARAMS = {
    "ref",
    "referrer",
    "affiliate_id",
    "aff_id",
    "click_id",
    "gclid",
    "fbclid",
    "twclid",
    "li_fat_id",
    "mc_cid",
    "mc_eid",
    "_ga",
    "_gid",
    "spm",
    "scm",
    "trace",
    "tracelog",
}

# Identify the product on Temu; never stripped.
TEMU_ESSENTIAL_PARAMS = ("goods_id", "top_gallery_url", "spec_gallery_id")

CANONICAL_HOSTS = [
    ("temu", "www.temu.com"),
    ("alibaba.com", "www.alibaba.com"),
    ("1688.com", "www.1688.com"),
]


def _with_scheme(url):
    if url.lower().startswith(("http://", "https://")):
        return url
    return f"https://{url}"


def _split(url):
    """
    Split a URL and check that it has a usable hostname.

    Raises:
        ValueError: if the URL cannot be parsed, has an invalid port, or its
            hostname has no dot in it (e.g. "not-a-valid-url").
    """
    parts = urlsplit(url)
    hostname = parts.hostname
    if not hostname or "." not in hostname:
        raise ValueError(f"no usable hostname in {url!r}")
    port = parts.port  # raises ValueError on garbage ports
    return parts, hostname, port


def _is_tracking_param(key):
    k = unquote_plus(key).strip().lower()
    if k in TEMU_ESSENTIAL_PARAMS:
        return False
    return k.startswith("utm_") or k in TRACKING_PARAMS


def _clean_query(query):
    # Work on the raw pairs so kept parameters survive byte-for-byte.
    kept = []
    for pair in query.split("&"):
        if not pair:
            continue
        key = pair.split("=", 1)[0]
        if _is_tracking_param(key):
            continue
        kept.append(pair)
    return "&".join(kept)


def _encode_whitespace(s):
    # A raw trailing space would be trimmed on the next pass.
    return _WHITESPACE_RE.sub(lambda m: quote(m.group(0)), s)


def _canonical_host(hostname):
    for needle, canonical in CANONICAL_HOSTS:
        if needle in hostname:
            return canonical
    return hostname


def normalize_url(url):
    """
    Canonicalize a supplier URL.

    Trims whitespace, adds https:// when no scheme is present, removes
    tracking parameters, forces https and rewrites known marketplace hosts to
    their canonical form. All other query parameters are kept verbatim and in
    their original order.

    Args:
        url (str): Raw URL as pasted by an operator.

    Returns:
        str: The normalized URL, or the trimmed input when it cannot be parsed.
            Non-string input is returned unchanged.

    Note:
        normalize_url(normalize_url(u)) == normalize_url(u) for every string u.
    """
    if not isinstance(url, str):
        return url

    trimmed = url.strip()
    if not trimmed:
        return trimmed

    try:
        parts, hostname, port = _split(_with_scheme(trimmed))
    except ValueError as e:
        logger.warning(f"Failed to normalize URL {trimmed!r}: {e}")
        return trimmed

    host = _canonical_host(hostname)
    netloc = f"{host}:{port}" if port is not None else host
    path = _encode_whitespace(parts.path or "/")
    query = _encode_whitespace(_clean_query(parts.query))
    fragment = _encode_whitespace(parts.fragment)

    normalized = f"https://{netloc}{path}"
    if query:
        normalized += f"?{query}"
    if fragment:
        normalized += f"#{fragment}"
    return normalized


def hostname_of(url):
    """Lowercased hostname of a URL (scheme optional), or None."""
    if not isinstance(url, str) or not url.strip():
        return None
    try:
        return urlsplit(_with_scheme(url.strip())).hostname
    except ValueError:
        return None


def _host_or_text(url):
    # Fall back to a plain substring check on unparsable input.
    host = hostname_of(url)
    return host if host is not None else url.strip().lower()


def is_valid_temu_url(url):
    if not isinstance(url, str) or not url.strip():
        return False
    return "temu." in _host_or_text(url)


def is_valid_alibaba_url(url):
    """Hostname check only; see is_alibaba_product_url for the path shape."""
    if not isinstance(url, str) or not url.strip():
        return False
    host = _host_or_text(url)
    return "alibaba.com" in host or "1688.com" in host


def is_alibaba_product_url(url):
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        path = urlsplit(_with_scheme(url.strip())).path.lower()
    except ValueError:
        path = url.lower()
    return "/product-detail/" in path


def validate_and_normalize_url(url, provider):
    """
    Validate a URL against a provider and normalize it.

    Args:
        url (str): Raw URL.
        provider (str): "temu" or "alibaba".

    Returns:
        str or None: Normalized URL, or None when the URL is empty or does not
            belong to the provider.
    """
    if not isinstance(url, str) or not url.strip():
        return None
    trimmed = url.strip()
    if provider == "temu" and not is_valid_temu_url(trimmed):
        return None
    if provider == "alibaba" and not is_valid_alibaba_url(trimmed):
        return None
    return normalize_url(trimmed)


def extract_temu_params(url):
    try:
        parts, _, _ = _split(normalize_url(url))
    except (ValueError, TypeError, AttributeError):
        return {}
    qs = parse_qs(parts.query)
    return {k: qs[k][0] for k in TEMU_ESSENTIAL_PARAMS if qs.get(k)}


_ALIBABA_ID_RE = re.compile(r"/product-detail/(?:[^/]*_)?(\d+)")


def extract_alibaba_product_id(url):
    """Product id from /product-detail/123.html or /product-detail/Name_123.html."""
    try:
        parts, _, _ = _split(normalize_url(url))
    except (ValueError, TypeError, AttributeError):
        return None
    m = _ALIBABA_ID_RE.search(parts.path)
    return m.group(1) if m else None
