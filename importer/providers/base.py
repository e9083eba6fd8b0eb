# importer/providers/base.py
import logging
from abc import ABC, abstractmethod

from importer.extraction import run_extraction_chain
from importer.models import MappedProduct, Price, ProductVariant
from importer.url_utils import hostname_of, normalize_url
from importer.providers.fetch import PageFetcher

logger = logging.getLogger("providers")


def _format_amount(value):
    return f"{value:g}"


class ImportProvider(ABC):
    """
    One marketplace import source.

    Subclasses set ``name``, ``default_title`` and ``host_markers`` and may
    override ``fetch_product`` / ``clean_title`` for marketplace quirks.
    """

    name = None
    default_title = "Produkt"
    host_markers = ()
    hint_keys = ()

    def __init__(self, fetcher=None):
        self.fetcher = fetcher or PageFetcher()

    def can_handle(self, url):
        """Case-insensitive hostname test; the path is never consulted."""
        host = hostname_of(url)
        if host is None:
            return False
        return any(marker in host for marker in self.host_markers)

    def normalize_url(self, url):
        return normalize_url(url)

    async def close(self):
        await self.fetcher.close()

    async def fetch_html(self, url):
        logger.info(f"[{self.name}] Fetching product from: {url}")
        return await self.fetcher.fetch(url)

    @abstractmethod
    async def fetch_product(self, url):
        """Fetch and extract a RawProduct for a normalized URL."""

    async def extract(self, url):
        html = await self.fetch_html(url)
        raw = run_extraction_chain(html, url, hint_keys=self.hint_keys)
        logger.info(f"[{self.name}] Extracted {url} via {', '.join(raw.extracted_by)}")
        return raw

    def clean_title(self, title):
        return title.strip() if title else ""

    def map_to_product(self, raw, url):
        """
        Map a RawProduct to the canonical MappedProduct.

        Args:
            raw (RawProduct): Output of fetch_product for the same provider
            url (str): Normalized product URL

        Returns:
            MappedProduct: Always has at least one variant. A missing price maps
                to amount 0; the import step substitutes the default price.

        Specs:
            - "MOQ" is set from the raw minimum order quantity
            - "Prisintervall" is set when the raw price is a real range
        """
        raw_price = raw.price
        extra_range = (raw.model_extra or {}).get("price_range") or {}
        amount = raw_price.lowest() if raw_price else 0.0
        currency = raw_price.currency if raw_price else "USD"
        if not amount and extra_range:
            amount = extra_range.get("from_price") or extra_range.get("min_price") or 0.0
        price = Price(amount=amount or 0.0, currency=currency)

        variants = [
            ProductVariant(
                name=v.name or "Standard",
                price=v.price or price.amount,
                compare_at_price=v.compare_at_price,
                attributes=v.attributes,
                image=v.image,
                stock=v.stock or 0,
            )
            for v in raw.variants
        ]
        if not variants:
            variants = [ProductVariant(name="Standard", price=price.amount)]

        specs = dict(raw.specs)
        if raw.moq:
            specs["MOQ"] = str(raw.moq)

        from_price = raw_price.from_price if raw_price else None
        to_price = raw_price.to_price if raw_price else None
        if extra_range and not (from_price and to_price):
            from_price = extra_range.get("from_price")
            to_price = extra_range.get("to_price")
        if from_price and to_price and from_price != to_price:
            specs["Prisintervall"] = (
                f"{_format_amount(from_price)} - {_format_amount(to_price)} {currency}"
            )

        return MappedProduct(
            supplier=self.name,
            url=url,
            title=self.clean_title(raw.title) or self.default_title,
            description=raw.description or "",
            price=price,
            images=list(raw.images),
            specs=specs,
            variants=variants,
            shipping_estimate=raw.shipping_estimate,
            availability=raw.availability is not False,
        )
