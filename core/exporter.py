"""
Data Exporter - writes scraped business records to CSV, JSON or Excel.

Every export returns True on success and False on failure; failures are
logged, never raised.
"""

import csv
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

import pandas as pd

from .models import BusinessRecord

logger = logging.getLogger(__name__)

# Column order and headings shared by CSV and Excel
COLUMNS = [
    ("name", "Name"),
    ("address", "Address"),
    ("phone", "Phone Number"),
    ("website", "Website"),
    ("latitude", "Latitude"),
    ("longitude", "Longitude"),
    ("rating", "Rating"),
    ("review_count", "Review Count"),
    ("categories", "Categories"),
    ("hours", "Operating Hours"),
    ("additional_details", "Additional Details"),
    ("scraped_at", "Scraped At"),
]

FORMATS = {
    "csv": ".csv",
    "json": ".json",
    "excel": ".xlsx",
}


def flatten_pairs(values: Dict[str, str]) -> str:
    """{"Monday": "9AM-5PM", ...} -> "Monday: 9AM-5PM; ..." """
    return "; ".join(f"{key}: {value}" for key, value in values.items())


def to_row(record: BusinessRecord) -> Dict[str, Any]:
    """One flat row keyed by column heading."""
    data = record.to_dict()
    data["categories"] = ", ".join(record.categories)
    data["hours"] = flatten_pairs(record.hours)
    data["additional_details"] = flatten_pairs(record.additional_details)
    data["scraped_at"] = record.scraped_at.strftime("%Y-%m-%d %H:%M:%S")
    return {heading: data[key] for key, heading in COLUMNS}


class DataExporter:
    """Exports record lists to files."""

    @staticmethod
    def _prepare(path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def export_csv(self, records: Sequence[BusinessRecord], path: Union[str, Path]) -> bool:
        try:
            path = self._prepare(path)
            with open(path, "w", newline="", encoding="utf-8") as f:
                writer = csv.DictWriter(f, fieldnames=[heading for _, heading in COLUMNS])
                writer.writeheader()
                for record in records:
                    writer.writerow(to_row(record))
            logger.info(f"[Exporter] Exported {len(records)} records to CSV: {path}")
            return True
        except (OSError, csv.Error) as e:
            logger.error(f"[Exporter] Error exporting to CSV: {e}")
            return False

    def export_json(self, records: Sequence[BusinessRecord], path: Union[str, Path]) -> bool:
        try:
            path = self._prepare(path)
            with open(path, "w", encoding="utf-8") as f:
                json.dump([record.to_dict() for record in records], f, indent=2, default=str)
            logger.info(f"[Exporter] Exported {len(records)} records to JSON: {path}")
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"[Exporter] Error exporting to JSON: {e}")
            return False

    def export_excel(self, records: Sequence[BusinessRecord], path: Union[str, Path]) -> bool:
        """Write one sheet, one row per record (requires openpyxl)."""
        try:
            path = self._prepare(path)
            df = pd.DataFrame([to_row(record) for record in records], columns=[heading for _, heading in COLUMNS])
            df.to_excel(path, sheet_name="Business Data", index=False, engine="openpyxl")
            logger.info(f"[Exporter] Exported {len(records)} records to Excel: {path}")
            return True
        except (OSError, ImportError, ValueError) as e:
            logger.error(f"[Exporter] Error exporting to Excel: {e}")
            return False

    def export(self, records: Sequence[BusinessRecord], path: Union[str, Path], fmt: str) -> bool:
        """
        Export in the named format ("csv", "json" or "excel").

        A path without a suffix gets the format's default extension.
        """
        fmt = fmt.lower()
        if fmt not in FORMATS:
            logger.error(f"[Exporter] Unsupported export format: {fmt}")
            return False
        path = Path(path)
        if not path.suffix:
            path = path.with_suffix(FORMATS[fmt])
        return getattr(self, f"export_{fmt}")(records, path)

    def export_all(self, records: Sequence[BusinessRecord], base_path: Union[str, Path]) -> List[Path]:
        """Export to every format next to base_path; returns the files written."""
        base_path = Path(base_path)
        written = []
        for fmt, suffix in FORMATS.items():
            target = base_path.with_suffix(suffix)
            if self.export(records, target, fmt):
                written.append(target)
        return written
