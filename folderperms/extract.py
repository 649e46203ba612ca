"""Capture folder ACLs as PermissionRecord rows.

Usage (through the entrypoint):
  python run.py export --path D:\\Shares\\Finance --out out/finance_acl.csv [--include-children]

Only the folder itself, or the folder plus its immediate child folders, is
read. Deeper recursion is left to the caller.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from tqdm import tqdm

from .acl_store import AclStore
from .errors import AclReadError, TargetBaseMissingError
from .records import PermissionRecord, normalize_flags
from .store_io import write_permission_rows

logger = logging.getLogger(__name__)


@dataclass
class ExportSummary:
    folders: int = 0
    records: int = 0
    errors: int = 0
    failed_folders: List[str] = field(default_factory=list)
    output: Path | None = None


def _sort_key(r: PermissionRecord):
    return (r.identity.lower(), r.access_control_type, normalize_flags(r.rights).lower(), r.is_inherited)


def collect_folders(store: AclStore, root: str, include_children: bool = False) -> List[str]:
    if not store.folder_exists(root):
        raise TargetBaseMissingError(f"Folder does not exist: {root}")
    folders = [root]
    if include_children:
        try:
            folders.extend(store.list_child_folders(root))
        except AclReadError as e:
            logger.error("Cannot enumerate child folders of %s: %s", root, e)
    return folders


def extract(store: AclStore, folder: str, include_inherited: bool = True) -> List[PermissionRecord]:
    records = store.read_acl(folder)
    if not include_inherited:
        records = [r for r in records if not r.is_inherited]
    return sorted((r.with_folder(folder) for r in records), key=_sort_key)


def extract_many(
    store: AclStore,
    folders: List[str],
    include_inherited: bool = True,
    summary: ExportSummary | None = None,
) -> List[PermissionRecord]:
    summary = summary if summary is not None else ExportSummary()
    out: List[PermissionRecord] = []
    for folder in tqdm(folders, desc="reading ACLs", disable=len(folders) < 2):
        summary.folders += 1
        try:
            recs = extract(store, folder, include_inherited=include_inherited)
        except AclReadError as e:
            logger.error("Failed to read ACL of %s: %s", folder, e)
            summary.errors += 1
            summary.failed_folders.append(folder)
            continue
        logger.debug("%s: %d rule(s)", folder, len(recs))
        out.extend(recs)
    summary.records = len(out)
    return out


def export_permissions(
    store: AclStore,
    root: str,
    out_path: Path,
    include_children: bool = False,
    include_inherited: bool = True,
) -> ExportSummary:
    summary = ExportSummary()
    folders = collect_folders(store, root, include_children=include_children)
    records = extract_many(store, folders, include_inherited=include_inherited, summary=summary)
    summary.output = write_permission_rows(records, out_path)
    logger.info(
        "Exported %d rule(s) from %d folder(s) (%d error(s))", summary.records, summary.folders, summary.errors
    )
    return summary
