# importer/providers/fetch.py
import logging
import os

import httpx
from dotenv import load_dotenv

from importer.errors import BlockedError, FetchError
from importer.utils import network_retry

load_dotenv()
FETCH_RETRIES = int(os.getenv("FETCH_RETRIES", "3"))
FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT", "30"))

logger = logging.getLogger("providers")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
logger.addHandler(handler)

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}

BLOCKED_INDICATORS = (
    "captcha",
    "/punish",
    "access denied",
    "unusual traffic",
    "security check",
    "verify you are human",
    "slide to verify",
)


class _ServerError(Exception):
    def __init__(self, status_code):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


def _is_transient(exc):
    return isinstance(exc, (httpx.TransportError, _ServerError))


def looks_blocked(html):
    lowered = html.lower()
    return any(marker in lowered for marker in BLOCKED_INDICATORS)


class PageFetcher:
    """
    Fetches marketplace product pages with browser-like headers.

    Transport errors and 5xx responses are retried with exponential backoff.
    A 4xx response fails at once with FetchError, an anti-bot page with
    BlockedError.
    """

    def __init__(
        self, retries=FETCH_RETRIES, timeout=FETCH_TIMEOUT, transport=None, max_wait=5
    ):
        self.retries = retries
        self.max_wait = max_wait
        self.client = httpx.AsyncClient(
            headers=DEFAULT_HEADERS,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    async def close(self):
        await self.client.aclose()

    async def _get(self, url):
        resp = await self.client.get(url)
        if resp.status_code >= 500:
            logger.warning(f"Fetch error {url}: HTTP {resp.status_code}")
            raise _ServerError(resp.status_code)
        return resp

    async def fetch(self, url):
        """
        Fetch a page and return its HTML.

        Args:
            url (str): Normalized product URL

        Returns:
            str: Response body

        Raises:
            FetchError: on 4xx, or when every attempt failed
            BlockedError: when the body is a captcha / verification page
        """
        get = network_retry(
            attempts=self.retries, retry_on=_is_transient, max_wait=self.max_wait
        )(self._get)
        try:
            resp = await get(url)
        except (httpx.HTTPError, _ServerError) as e:
            raise FetchError(f"Failed to fetch {url} after {self.retries} tries: {e}") from e

        if resp.status_code >= 400:
            raise FetchError(f"HTTP {resp.status_code} for {url}")

        html = resp.text
        if looks_blocked(html):
            raise BlockedError(f"Anti-bot page returned for {url}")
        return html
