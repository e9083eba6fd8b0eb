# importer/orchestrator.py
import asyncio
import logging
import os

from dotenv import load_dotenv

from importer.db import safe_query
from importer.errors import (
    LOG_LEVELS,
    DuplicateProductError,
    ImportErrorKind,
    ImportFailure,
    user_message,
)
from importer.models import BulkImportResult, ImportStatus
from importer.transform import DEFAULT_STORE_ID, build_catalog_document, post_import_warnings

load_dotenv()
IMPORT_DELAY_SECONDS = float(os.getenv("IMPORT_DELAY_SECONDS", "2"))

ALREADY_EXISTS_WARNING = "Produktet ble ikke opprettet fordi det allerede finnes i databasen"

logger = logging.getLogger("importer")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
logger.addHandler(handler)


class BulkImporter:
    """
    Imports product URLs one at a time into the catalog.

    Every URL yields exactly one BulkImportResult; failures become ``error``
    results and never abort the batch. Requests are spaced by ``delay``
    seconds to stay polite to the marketplaces.
    """

    def __init__(
        self,
        registry,
        store,
        delay=IMPORT_DELAY_SECONDS,
        sleep=asyncio.sleep,
        store_id=DEFAULT_STORE_ID,
    ):
        self.registry = registry
        self.store = store
        self.delay = delay
        self.sleep = sleep
        self.store_id = store_id

    def _result(self, input_url, normalized_url, provider_used, status, message, **kwargs):
        warnings = kwargs.get("warnings") or None
        return BulkImportResult(
            input_url=input_url,
            normalized_url=normalized_url,
            provider_used=provider_used,
            status=status,
            message=message,
            created_product_id=kwargs.get("created_product_id"),
            warnings=warnings,
        )

    def _failed(self, kind, detail, input_url, normalized_url, provider_used, warnings=None, **params):
        logger.log(
            LOG_LEVELS[kind],
            f"[Bulk Import] {kind.value} for {normalized_url} ({provider_used}): {detail}",
        )
        return self._result(
            input_url,
            normalized_url,
            provider_used,
            ImportStatus.ERROR,
            user_message(kind, **params),
            warnings=warnings,
        )

    def _duplicate(self, input_url, normalized_url, provider_used, name, warnings):
        logger.info(f"[Bulk Import] Already imported: {normalized_url}")
        return self._result(
            input_url,
            normalized_url,
            provider_used,
            ImportStatus.WARNING,
            user_message(ImportErrorKind.DUPLICATE, name=name),
            warnings=warnings + [ALREADY_EXISTS_WARNING],
        )

    async def import_one(self, input_url, provider_name=None):
        """
        Import a single product URL.

        Args:
            input_url (str): URL as entered by the operator
            provider_name (str, optional): Force a provider; it must also
                claim the URL

        Returns:
            BulkImportResult

        Steps:
            1. Resolve the provider (unsupported -> error)
            2. Normalize the URL
            3. Fetch and map (failure -> error with the kind's message)
            4. Skip if the normalized URL is already in the catalog (warning)
            5. Build the catalog document (pricing, images, category, slug)
            6. Insert product and variants in one write
            7. Attach post-import warnings (no images, suspicious price)
        """
        provider = self.registry.get_provider_for_url(input_url, provider_name)
        if provider is None:
            return self._failed(
                ImportErrorKind.UNSUPPORTED_PROVIDER,
                f"no provider claims {input_url!r} (requested: {provider_name})",
                input_url,
                input_url,
                "none",
                supported=", ".join(self.registry.supported_names()),
            )

        provider_used = provider.name
        normalized_url = provider.normalize_url(input_url)

        try:
            raw = await provider.fetch_product(normalized_url)
            mapped = provider.map_to_product(raw, normalized_url)
        except ImportFailure as e:
            return self._failed(e.kind, e, input_url, normalized_url, provider_used)

        warnings = list(raw.warnings)

        existing = await safe_query(
            lambda: self.store.find_by_supplier_url(normalized_url),
            None,
            "bulk-import:existing",
        )
        if existing:
            return self._duplicate(
                input_url, normalized_url, provider_used, existing.get("name"), warnings
            )

        doc, price_warnings = build_catalog_document(
            mapped, normalized_url, provider_used, store_id=self.store_id
        )
        warnings.extend(price_warnings)

        try:
            product_id = await self.store.create_product(doc)
        except DuplicateProductError:
            return self._duplicate(input_url, normalized_url, provider_used, doc["name"], warnings)
        except ImportFailure as e:
            return self._failed(e.kind, e, input_url, normalized_url, provider_used, warnings)

        for w in post_import_warnings(doc):
            if w not in warnings:
                warnings.append(w)

        logger.info(f"[Bulk Import] Created {product_id} from {normalized_url}")
        return self._result(
            input_url,
            normalized_url,
            provider_used,
            ImportStatus.WARNING if warnings else ImportStatus.SUCCESS,
            f"Produkt importert: {doc['name']}",
            created_product_id=product_id,
            warnings=warnings,
        )

    async def run(self, urls, provider_name=None):
        """
        Import URLs sequentially.

        Args:
            urls (list[str]): Product URLs, processed in order
            provider_name (str, optional): Provider applied to every URL

        Returns:
            list[BulkImportResult]: One result per input URL, same order.

        Note:
            Waits ``delay`` seconds between URLs, not after the last one.
        """
        results = []
        for i, url in enumerate(urls):
            try:
                result = await self.import_one(url, provider_name)
            except Exception as e:
                logger.exception(f"[Bulk Import] Unexpected error for {url}: {e}")
                result = self._result(
                    url,
                    url,
                    "unknown",
                    ImportStatus.ERROR,
                    user_message(ImportErrorKind.UNEXPECTED),
                )
            results.append(result)

            if i < len(urls) - 1 and self.delay > 0:
                await self.sleep(self.delay)

        ok = sum(1 for r in results if r.status != ImportStatus.ERROR)
        logger.info(f"[Bulk Import] Finished: {ok}/{len(results)} imported or skipped")
        return results
