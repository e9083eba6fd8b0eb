# importer/report.py
import json
import logging
import os
from datetime import datetime, timezone

import pandas as pd

logger = logging.getLogger("reporter")
logger.setLevel(logging.INFO)

REPORT_DIR = os.getenv("REPORT_DIR", "./reports")

REPORT_COLUMNS = [
    "inputUrl",
    "normalizedUrl",
    "providerUsed",
    "status",
    "message",
    "createdProductId",
    "warnings",
]


def summarize(results):
    counts = {"success": 0, "warning": 0, "error": 0}
    for r in results:
        counts[r.status.value] += 1
    counts["total"] = len(results)
    return counts


def write_import_report(results, report_dir=REPORT_DIR):
    """
    Write a bulk import run to timestamped JSON and CSV files.

    Args:
        results (list[BulkImportResult]): Output of BulkImporter.run
        report_dir (str): Target directory, created if missing

    Returns:
        tuple: (json_path, csv_path)

    Output Files:
        - {report_dir}/import_{YYYYmmddTHHMMSS}.json
        - {report_dir}/import_{YYYYmmddTHHMMSS}.csv

    Note:
        The CSV joins multiple warnings with "; " so each URL stays one row.
        Uses UTC for the timestamp.
    """
    os.makedirs(report_dir, exist_ok=True)

    rows = [r.to_response() for r in results]
    filename_base = f"import_{datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%S')}"
    json_path = os.path.join(report_dir, f"{filename_base}.json")
    csv_path = os.path.join(report_dir, f"{filename_base}.csv")

    with open(json_path, "w", encoding="utf-8") as f:
        json.dump({"summary": summarize(results), "results": rows}, f, indent=2, ensure_ascii=False)

    flat = [{**row, "warnings": "; ".join(row.get("warnings", []))} for row in rows]
    pd.DataFrame(flat, columns=REPORT_COLUMNS).to_csv(csv_path, index=False)

    logger.info(f"Generated import report: {json_path}, {csv_path}")
    return json_path, csv_path
