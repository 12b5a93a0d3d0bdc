"""
Row checksums and Notion page → row value vectors
"""

from typing import Any, Dict, List, Sequence
import hashlib
import json

from pipeline.transformers.property_transformer import CellValue, property_transformer
from schemas.mapping import ColumnMapping

CHECKSUM_LENGTH = 16


def _normalize_cell(value: Any) -> Any:
    # 3.0 and 3 must hash the same: Sheets hands integral numbers back as ints
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def compute_row_checksum(values: Sequence[Any]) -> str:
    """
    Deterministic checksum of a row's value vector.

    SHA-256 over the compact JSON encoding, truncated to 16 hex chars.
    """
    normalized = [_normalize_cell(value) for value in values]
    encoded = json.dumps(normalized, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:CHECKSUM_LENGTH]


def transform_page_to_row_values(page: Dict[str, Any], columns: List[ColumnMapping]) -> List[CellValue]:
    """Value vector of one page in mapping column order; missing properties become ""."""
    properties = page.get("properties") or {}
    row: List[CellValue] = []

    for column in columns:
        prop = properties.get(column.notion_property_name)
        if prop is None:
            row.append("")
            continue

        delimiter = column.transform_options.delimiter if column.transform_options else None
        row.append(property_transformer.transform(column.notion_property_type, prop, delimiter))

    return row


def normalize_row(row: Sequence[Any], width: int) -> List[Any]:
    """
    Pad or truncate a row read back from Sheets to ``width`` cells.

    The Sheets API drops trailing empty cells, so a row written as
    ["a", ""] comes back as ["a"].
    """
    values = list(row[:width])
    values.extend([""] * (width - len(values)))
    return values
