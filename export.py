"""Tabular export of stored extraction fields (CSV and XLSX via pandas)."""

import io
import logging
import math
from dataclasses import dataclass

import pandas as pd

from errors import SessionNotFound, UnsupportedFormat
from models import ExtractedField
from store import ExtractionStore

logger = logging.getLogger(__name__)

COLUMNS = ["Label", "Value", "Confidence"]
SHEET_NAME = "Extracted Data"

MEDIA_TYPES = {
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


@dataclass(frozen=True)
class ExportFile:
    content: bytes
    media_type: str
    filename: str


def format_confidence(confidence: float) -> str:
    """0.873 -> "87%" (half rounds up)."""
    return f"{math.floor(confidence * 100 + 0.5)}%"


def field_rows(fields: list[ExtractedField]) -> list[dict[str, str]]:
    return [
        {
            "Label": field.label,
            "Value": field.value,
            "Confidence": format_confidence(field.confidence),
        }
        for field in fields
    ]


def to_csv(rows: list[dict[str, str]]) -> bytes:
    df = pd.DataFrame(rows, columns=COLUMNS)
    return df.to_csv(index=False, lineterminator="\n").encode("utf-8")


def to_xlsx(rows: list[dict[str, str]]) -> bytes:
    df = pd.DataFrame(rows, columns=COLUMNS)
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=SHEET_NAME, index=False)
    return buf.getvalue()


WRITERS = {"csv": to_csv, "xlsx": to_xlsx}


def export_document(store: ExtractionStore, doc_id: str, fmt: str) -> ExportFile:
    """Render the stored fields of ``doc_id`` in ``fmt`` (csv or xlsx)."""
    result = store.get(doc_id)
    if result is None:
        raise SessionNotFound(doc_id)

    writer = WRITERS.get(fmt.lower())
    if writer is None:
        raise UnsupportedFormat(f"Invalid format: {fmt}")

    fmt = fmt.lower()
    content = writer(field_rows(result.extracted_fields))
    logger.info("Exported id=%s format=%s rows=%d", doc_id, fmt, len(result.extracted_fields))
    return ExportFile(
        content=content,
        media_type=MEDIA_TYPES[fmt],
        filename=f"extracted.{fmt}",
    )
