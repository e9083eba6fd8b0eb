# importer/cli.py
"""
Bulk import from a file of product URLs.

    python -m importer.cli urls.txt [--provider temu] [--report-dir ./reports]
"""
import argparse
import asyncio
import logging

from importer.db import ProductStore, get_db
from importer.orchestrator import BulkImporter
from importer.registry import build_default_registry
from importer.report import REPORT_DIR, summarize, write_import_report

logger = logging.getLogger("importer")


def read_urls(path):
    """One URL per line; blank and non-http lines are skipped."""
    urls = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line.lower().startswith(("http://", "https://")):
                urls.append(line)
    return urls


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Import products from Temu/Alibaba URLs")
    parser.add_argument("urls_file", help="Text file with one product URL per line")
    parser.add_argument("--provider", choices=["temu", "alibaba"], default=None)
    parser.add_argument("--report-dir", default=REPORT_DIR)
    return parser.parse_args(argv)


async def run_import(urls, provider=None, report_dir=REPORT_DIR, registry=None, store=None):
    registry = registry or build_default_registry()
    store = store or ProductStore(get_db())
    await store.ensure_indexes()
    try:
        results = await BulkImporter(registry, store).run(urls, provider)
    finally:
        await registry.close()
    write_import_report(results, report_dir)
    return results


def main(argv=None):
    args = parse_args(argv)
    urls = read_urls(args.urls_file)
    if not urls:
        logger.warning(f"No http(s) URLs found in {args.urls_file}")
        return 1
    logger.info(f"Importing {len(urls)} URL(s) from {args.urls_file}")
    results = asyncio.run(run_import(urls, args.provider, args.report_dir))
    counts = summarize(results)
    logger.info(
        f"Import done: {counts['success']} success, {counts['warning']} warning, "
        f"{counts['error']} error"
    )
    return 1 if counts["error"] == counts["total"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
