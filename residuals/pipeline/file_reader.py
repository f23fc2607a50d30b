"""
Processor file reading: CSV and XLSX into a header list plus row dicts.

All cells come back as stripped strings; numeric parsing happens later in
field extraction. Some processors put title lines above the header, so the
header is the row near the top with the most non-numeric cells.
"""

import csv
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import pandas as pd
import structlog

from residuals.errors import FileReadError
from residuals.models.enums import FileFormat
from residuals.pipeline.amount_parser import is_amount_like

logger = structlog.get_logger(__name__)

HEADER_SCAN_ROWS = 10

EXTENSION_FORMATS = {
    ".csv": FileFormat.CSV,
    ".xlsx": FileFormat.XLSX,
}


@dataclass
class RawTable:
    headers: list[str]
    rows: list[dict[str, str]]
    file_format: FileFormat
    # 1-based line/row number in the source file for each entry in rows
    row_numbers: list[int] = field(default_factory=list)
    skipped_title_rows: int = 0


def file_format_for(path: Union[str, Path]) -> FileFormat:
    suffix = Path(path).suffix.lower()
    if suffix not in EXTENSION_FORMATS:
        raise FileReadError(f"Unsupported file type '{suffix or '<none>'}': expected .csv or .xlsx")
    return EXTENSION_FORMATS[suffix]


def read_processor_file(path: Union[str, Path]) -> RawTable:
    path = Path(path)
    file_format = file_format_for(path)
    if not path.is_file():
        raise FileReadError(f"File not found: {path.name}")

    try:
        if file_format == FileFormat.CSV:
            frame = _read_csv(path)
        else:
            frame = _read_xlsx(path)
    except FileReadError:
        raise
    except Exception as e:
        logger.warning("file_read_failed", file_name=path.name, error=str(e))
        raise FileReadError(f"Could not read {path.name}: {e}") from e

    table = _to_table(frame, file_format)
    if not table.headers:
        raise FileReadError(f"No header row found in {path.name}")

    logger.info("file_read",
                file_name=path.name,
                file_format=file_format.value,
                columns=len(table.headers),
                rows=len(table.rows),
                skipped_title_rows=table.skipped_title_rows)
    return table


def _read_csv(path: Path) -> pd.DataFrame:
    # Title rows make CSVs ragged, so rows are read first and framed after
    try:
        text = path.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError:
        text = path.read_text(encoding="latin-1")
    records = list(csv.reader(text.splitlines()))
    if not records:
        raise FileReadError(f"{path.name} is empty")
    width = max(len(r) for r in records)
    return pd.DataFrame([r + [""] * (width - len(r)) for r in records], dtype=str)


def _read_xlsx(path: Path) -> pd.DataFrame:
    return pd.read_excel(
        path,
        sheet_name=0,
        header=None,
        dtype=str,
        engine="openpyxl",
    )


def _to_table(frame: pd.DataFrame, file_format: FileFormat) -> RawTable:
    frame = frame.fillna("").astype(str).apply(lambda col: col.str.strip())
    values = frame.values.tolist()

    header_idx = _find_header_row(values[:HEADER_SCAN_ROWS])
    if header_idx is None:
        return RawTable(headers=[], rows=[], file_format=file_format)

    headers = _unique_headers(values[header_idx])
    rows: list[dict[str, str]] = []
    row_numbers: list[int] = []
    for idx in range(header_idx + 1, len(values)):
        cells = values[idx]
        if not any(cells):
            continue
        rows.append({h: cells[i] if i < len(cells) else "" for i, h in enumerate(headers) if h})
        row_numbers.append(idx + 1)

    return RawTable(
        headers=[h for h in headers if h],
        rows=rows,
        file_format=file_format,
        row_numbers=row_numbers,
        skipped_title_rows=header_idx,
    )


def _find_header_row(rows: list[list[str]]) -> Optional[int]:
    """Index of the row with the most label cells; earliest wins ties."""
    best_idx, best_score = None, 0
    for idx, row in enumerate(rows):
        filled = [cell for cell in row if cell]
        if len(filled) < 2:
            continue
        score = sum(1 for cell in filled if not is_amount_like(cell))
        if best_idx is None or score > best_score:
            best_idx, best_score = idx, score
    return best_idx


def _unique_headers(cells: list[str]) -> list[str]:
    """Blank header cells stay blank (their column is dropped); repeats get a suffix."""
    seen: dict[str, int] = {}
    headers = []
    for cell in cells:
        name = cell.strip()
        if not name:
            headers.append("")
            continue
        if name in seen:
            seen[name] += 1
            name = f"{name}.{seen[name]}"
        else:
            seen[name] = 0
        headers.append(name)
    return headers
