# importer/providers/alibaba.py
import logging

from importer.url_utils import is_alibaba_product_url
from importer.providers.base import ImportProvider

logger = logging.getLogger("providers")


class AlibabaProvider(ImportProvider):
    """
    Alibaba / 1688 import source.

    Alibaba product pages usually carry the product in ``window.__INIT_DATA__``
    or a ``productData`` assignment, so the embedded JSON step does most of
    the work. MOQ and tiered price ranges are folded into specs on mapping.
    """

    name = "alibaba"
    default_title = "Alibaba Produkt"
    host_markers = ("alibaba.com", "1688.com")
    hint_keys = ("globaldata", "module", "data")

    async def fetch_product(self, url):
        normalized = self.normalize_url(url)
        raw = await self.extract(normalized)
        if not is_alibaba_product_url(normalized):
            logger.info(f"[alibaba] {normalized} is not a /product-detail/ page")
            raw.warnings.append("URL ser ikke ut som en Alibaba-produktside (/product-detail/)")
        return raw
