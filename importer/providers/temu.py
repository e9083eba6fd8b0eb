# importer/providers/temu.py
import logging
import re

from importer.url_utils import extract_temu_params
from importer.providers.base import ImportProvider

logger = logging.getLogger("providers")

_TITLE_SUFFIX_RE = re.compile(r"\s*[|\-]\s*Temu\s*$", re.IGNORECASE)


class TemuProvider(ImportProvider):
    name = "temu"
    default_title = "Temu Produkt"
    host_markers = ("temu.",)
    hint_keys = ("store", "goods", "data")

    async def fetch_product(self, url):
        """
        Fetch a Temu product page.

        The ``top_gallery_url`` query parameter, when present, is the main
        product image and is placed first. A URL without ``goods_id`` is still
        fetched but carries a warning.
        """
        normalized = self.normalize_url(url)
        params = extract_temu_params(normalized)

        raw = await self.extract(normalized)

        gallery = params.get("top_gallery_url")
        if gallery:
            raw.images = [gallery] + [img for img in raw.images if img != gallery]

        if not params.get("goods_id"):
            logger.warning(f"[temu] No goods_id in {normalized}")
            raw.warnings.append("URL mangler goods_id; produktet kan være feil identifisert")

        return raw

    def clean_title(self, title):
        return _TITLE_SUFFIX_RE.sub("", super().clean_title(title))
