# api/schemas.py
from typing import List, Optional

from pydantic import BaseModel


class BadRequest(ValueError):
    """Request body rejected; the message is returned to the client as-is."""


class BulkImportRequest(BaseModel):
    urls: List[str]
    provider: Optional[str] = None


class ScrapeRequest(BaseModel):
    url: str
    provider: Optional[str] = None


def _is_http(url):
    return isinstance(url, str) and url.startswith(("http://", "https://"))


def _check_provider(provider, supported):
    if provider is None or provider == "":
        return None
    if not isinstance(provider, str):
        raise BadRequest("Provider må være en string")
    name = provider.strip().lower()
    if name not in supported:
        raise BadRequest(f"Ustøttet provider: {provider}. Støttede: {', '.join(supported)}")
    return name


def validate_bulk_import(payload, supported):
    """
    Validate a bulk import body.

    Args:
        payload: Decoded JSON body
        supported (list[str]): Registered provider names

    Returns:
        BulkImportRequest

    Raises:
        BadRequest: urls missing, empty or not a list; an entry that is not an
            http(s) string (the first three are listed); unknown provider
    """
    if not isinstance(payload, dict):
        raise BadRequest("Forespørselen må være et JSON-objekt")

    urls = payload.get("urls")
    if not isinstance(urls, list) or not urls:
        raise BadRequest("URL-er er påkrevd (array)")

    provider = _check_provider(payload.get("provider"), supported)

    invalid = [u for u in urls if not _is_http(u)]
    if invalid:
        listed = ", ".join(str(u) for u in invalid[:3])
        more = "..." if len(invalid) > 3 else ""
        raise BadRequest(f"Ugyldige URL-er funnet: {listed}{more}")

    return BulkImportRequest(urls=urls, provider=provider)


def validate_scrape(payload, supported):
    if not isinstance(payload, dict):
        raise BadRequest("Forespørselen må være et JSON-objekt")
    url = payload.get("url")
    if not url or not isinstance(url, str):
        raise BadRequest("URL er påkrevd")
    if not _is_http(url.strip()):
        raise BadRequest("Ugyldig URL format")
    provider = _check_provider(payload.get("provider"), supported)
    return ScrapeRequest(url=url.strip(), provider=provider)
