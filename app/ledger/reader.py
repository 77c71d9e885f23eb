"""Decoding of uploaded CSV files into RawRows."""

from __future__ import annotations

import csv
import io
from typing import List

from app.ledger.config import ImportConfig
from app.ledger.errors import MalformedUpload
from app.ledger.models import RawRow


def read_csv_rows(content: bytes, config: ImportConfig) -> List[RawRow]:
    """
    Parse an uploaded CSV into RawRows.

    Header names are trimmed before matching against the configured column
    names; extra columns are ignored; rows whose cells are all blank are
    skipped. Cell values stay strings, validation happens later.

    Raises:
        MalformedUpload: Not UTF-8, no header row, or a required column missing
    """
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise MalformedUpload("Upload is not valid UTF-8 text") from e

    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise MalformedUpload("Upload has no header row")

    reader.fieldnames = [name.strip() if name else "" for name in reader.fieldnames]
    missing = [
        header for header in config.headers.values() if header not in reader.fieldnames
    ]
    if missing:
        raise MalformedUpload(f"Upload is missing column(s): {', '.join(missing)}")

    rows: List[RawRow] = []
    for record in reader:
        values = {
            field_name: record.get(header)
            for field_name, header in config.headers.items()
        }
        if all(value is None or not str(value).strip() for value in values.values()):
            continue
        rows.append(RawRow(**values))

    return rows
