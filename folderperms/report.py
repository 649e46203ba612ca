"""Summaries of an exported permissions file, computed with DuckDB.

Usage:
  python run.py report --csv out/finance_acl.csv --out out/report

Each query in `SQL_QUERIES` is run against a table `perms` (the export plus a
`classification` column) and written to ``<out>/<query name>.csv``.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable

import duckdb
import pandas as pd

from .identity import explain
from .records import PermissionRecord
from .store_io import records_frame

logger = logging.getLogger(__name__)

SQL_QUERIES = {
    'identities_by_classification': '''
SELECT
  classification,
  IdentityReference AS identity,
  COUNT(DISTINCT FolderPath) AS folders,
  COUNT(*) AS rules
FROM perms
GROUP BY classification, IdentityReference
ORDER BY classification, folders DESC, identity;''',

    'explicit_vs_inherited': '''
SELECT
  FolderPath AS folder_path,
  SUM(CASE WHEN IsInherited THEN 0 ELSE 1 END) AS explicit_rules,
  SUM(CASE WHEN IsInherited THEN 1 ELSE 0 END) AS inherited_rules
FROM perms
GROUP BY FolderPath
ORDER BY FolderPath;''',

    'deny_rules': '''
SELECT FolderPath AS folder_path, IdentityReference AS identity, FileSystemRights AS rights, IsInherited AS inherited
FROM perms
WHERE AccessControlType = 'Deny'
ORDER BY FolderPath, IdentityReference;''',

    'default_import_skips': '''
SELECT FolderPath AS folder_path, IdentityReference AS identity, classification, decided_by
FROM perms
WHERE NOT IsInherited
  AND classification IN ('User', 'SecurityIdentifier')
ORDER BY FolderPath, IdentityReference;''',
}


def classified_frame(records: Iterable[PermissionRecord], assume_user_when_unsure: bool = True) -> pd.DataFrame:
    df = records_frame(records)
    decided = [explain(i, assume_user_when_unsure) for i in df["IdentityReference"]]
    df["classification"] = [c.value for c, _ in decided]
    df["decided_by"] = [rule for _, rule in decided]
    df["IsInherited"] = df["IsInherited"].astype(bool)
    return df


def summarize_permissions(
    records: Iterable[PermissionRecord],
    out_dir: Path,
    assume_user_when_unsure: bool = True,
) -> Dict[str, Path]:
    df = classified_frame(records, assume_user_when_unsure)
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    con = duckdb.connect(database=':memory:')
    con.register('perms', df)
    written: Dict[str, Path] = {}
    try:
        for name, sql in SQL_QUERIES.items():
            logger.debug('Running: %s', name)
            result = con.execute(sql).fetchdf()
            out_file = out_dir / (name + '.csv')
            result.to_csv(out_file, index=False)
            logger.info('Wrote %s (%d rows)', out_file, len(result))
            written[name] = out_file
    finally:
        con.close()
    return written
