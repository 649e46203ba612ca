"""Read and write permission records as CSV (or Parquet) using pandas.

The CSV layout is one row per access rule with the columns in
`records.COLUMNS`. Files ending in ``.parquet`` go through pyarrow instead.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Tuple

import pandas as pd

from .errors import PermissionStoreError
from .records import COLUMNS, FOLDER_PATH, IDENTITY, PermissionRecord

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = COLUMNS


def _is_parquet(path: Path) -> bool:
    return path.suffix.lower() == ".parquet"


def load_frame(path: Path) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise PermissionStoreError(f"Input file does not exist: {path}")
    try:
        if _is_parquet(path):
            df = pd.read_parquet(path)
            # missing values would otherwise become the string "None"
            df = df.fillna("").astype(str)
        else:
            # utf-8-sig: Export-Csv output starts with a BOM
            df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
    except Exception as e:
        raise PermissionStoreError(f"Failed to read {path}: {e}") from e

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise PermissionStoreError(f"{path} is missing required column(s): {', '.join(missing)}")
    return df


def read_permission_rows(path: Path) -> Tuple[List[PermissionRecord], int]:
    """Return (records, skipped_row_count). Schema problems raise PermissionStoreError."""
    df = load_frame(Path(path))
    records: List[PermissionRecord] = []
    skipped = 0
    # header is line 1
    for lineno, row in enumerate(df.to_dict(orient="records"), start=2):
        folder = str(row.get(FOLDER_PATH) or "").strip()
        identity = str(row.get(IDENTITY) or "").strip()
        if not folder or folder.lower() == "nan":
            logger.warning("Row %d of %s has an empty %s; skipping", lineno, path, FOLDER_PATH)
            skipped += 1
            continue
        if not identity or identity.lower() == "nan":
            logger.warning("Row %d of %s (%s) has an empty %s; skipping", lineno, path, folder, IDENTITY)
            skipped += 1
            continue
        records.append(PermissionRecord.from_row(row))
    logger.debug("Read %d permission record(s) from %s", len(records), path)
    return records, skipped


def records_frame(records: Iterable[PermissionRecord]) -> pd.DataFrame:
    return pd.DataFrame([r.to_row() for r in records], columns=list(COLUMNS))


def write_permission_rows(records: Iterable[PermissionRecord], path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df = records_frame(records)
    if _is_parquet(path):
        df.to_parquet(path, index=False)
    else:
        df.to_csv(path, index=False, encoding="utf-8")
    logger.info("Wrote %d permission record(s) to %s", len(df), path)
    return path
