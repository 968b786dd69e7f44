from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Tuple, Union

import pandas as pd

from .errors import DecodeError
from .models import RowRecord, UploadedFile

LOGGER = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = (".xlsx", ".xls")

SpreadsheetSource = Union[UploadedFile, bytes, bytearray, str, Path, BinaryIO]


def _open_source(source: SpreadsheetSource, filename: str | None) -> Tuple[Any, str]:
    if isinstance(source, UploadedFile):
        return _open_source(source.content, filename or source.filename)
    if isinstance(source, (bytes, bytearray)):
        if not source:
            raise DecodeError(f"Spreadsheet '{filename or '<upload>'}' is empty")
        return io.BytesIO(bytes(source)), filename or "<upload>"
    if isinstance(source, (str, Path)):
        path = Path(source).expanduser()
        if not path.exists():
            raise DecodeError(f"Spreadsheet not found: {path}")
        return path, filename or path.name
    return source, filename or getattr(source, "name", None) or "<upload>"


def _check_extension(name: str) -> None:
    suffix = Path(name).suffix.lower()
    if suffix and suffix not in ALLOWED_EXTENSIONS:
        allowed = ", ".join(ALLOWED_EXTENSIONS)
        raise DecodeError(f"Unsupported file type '{suffix}' for '{name}'; expected one of: {allowed}")


def _header_labels(raw_header: List[Any]) -> List[str]:
    """Use header cells verbatim; blank cells get a positional name, duplicates a suffix."""

    labels: List[str] = []
    seen: Dict[str, int] = {}
    for idx, value in enumerate(raw_header):
        label = f"Column {idx + 1}" if pd.isna(value) else str(value)
        if label in seen:
            base = label
            while label in seen:
                seen[base] += 1
                label = f"{base}_{seen[base]}"
        seen[label] = 0
        labels.append(label)
    return labels


def load_rows(
    source: SpreadsheetSource,
    *,
    sheet_index: int = 0,
    filename: str | None = None,
) -> List[RowRecord]:
    """Decode a spreadsheet upload into RowRecords, first row used as the header.

    Raises DecodeError when the content is not a spreadsheet, the sheet does not
    exist or the sheet holds no data rows.
    """

    handle, display_name = _open_source(source, filename)
    if filename or isinstance(source, (UploadedFile, str, Path)):
        _check_extension(display_name)

    try:
        with pd.ExcelFile(handle) as xls:
            sheet_names = list(xls.sheet_names)
            if sheet_index >= len(sheet_names):
                raise DecodeError(
                    f"Spreadsheet '{display_name}' has {len(sheet_names)} sheet(s); "
                    f"sheet index {sheet_index} does not exist"
                )
            sheet_name = sheet_names[sheet_index]
            df = xls.parse(sheet_name, header=None, dtype=object)
    except DecodeError:
        raise
    except Exception as exc:
        raise DecodeError(f"Could not read spreadsheet '{display_name}': {exc}") from exc

    if df.shape[0] < 2:
        raise DecodeError(f"Spreadsheet '{display_name}' contains no data rows")

    labels = _header_labels(df.iloc[0].tolist())
    rows: List[RowRecord] = []
    for raw in df.iloc[1:].itertuples(index=False, name=None):
        values = {label: val for label, val in zip(labels, raw) if not pd.isna(val)}
        record = RowRecord.from_raw(values)
        if len(record) == 0:
            continue
        rows.append(record)

    if not rows:
        raise DecodeError(f"Spreadsheet '{display_name}' contains no data rows")

    LOGGER.info(
        "Decoded %d rows from '%s' (sheet '%s', %d columns)",
        len(rows),
        display_name,
        sheet_name,
        len(labels),
    )
    return rows
