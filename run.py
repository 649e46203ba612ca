#!/usr/bin/env python3
"""Single entrypoint for folder permission export, import, removal and tests.

Usage:
  python run.py export --path D:\\Shares\\Finance --out out/finance_acl.csv --include-children
  python run.py import --csv out/finance_acl.csv --target-path E:\\Shares --dry-run
  python run.py remove --csv allowed.csv --target-path E:\\Shares\\Finance --include-children
  python run.py report --csv out/finance_acl.csv --out out/report
  python run.py test
"""
from __future__ import annotations

import argparse
import subprocess
import sys
from pathlib import Path


def _policy(args: argparse.Namespace):
    from folderperms.reconcile import ReconcilePolicy

    return ReconcilePolicy(
        skip_sids=args.skip_sids,
        skip_user_accounts=args.skip_user_accounts,
        skip_already_inherited=args.skip_already_inherited,
        use_local_principals=args.use_local_principals,
        create_missing_groups=args.create_missing_groups,
        dry_run=args.dry_run,
        assume_user_when_unsure=args.unclassified_as == 'user',
    )


def _print_summary(label: str, summary) -> None:
    counts = summary.as_dict()
    print(f"{label}: applied={counts['applied']} planned={counts['planned']} skipped={counts['skipped']} "
          f"errors={counts['errors']} groups_created={counts['groups_created']}")


def run_export(args: argparse.Namespace) -> int:
    from folderperms.extract import export_permissions
    from folderperms.windows_acl import PowerShellAclStore

    summary = export_permissions(
        PowerShellAclStore(),
        args.path,
        Path(args.out),
        include_children=args.include_children,
        include_inherited=not args.explicit_only,
    )
    print(f"Exported {summary.records} rules from {summary.folders} folders to {summary.output} ({summary.errors} errors)")
    return 1 if summary.errors else 0


def run_import(args: argparse.Namespace) -> int:
    from folderperms.reconcile import PermissionReconciler
    from folderperms.store_io import read_permission_rows
    from folderperms.windows_acl import PowerShellAclStore

    records, skipped_rows = read_permission_rows(Path(args.csv))
    print(f"Loaded {len(records)} records from {args.csv} ({skipped_rows} rows skipped)")
    reconciler = PermissionReconciler(PowerShellAclStore(), _policy(args))
    summary = reconciler.import_permissions(records, args.target_path)
    summary.skipped += skipped_rows
    _print_summary('Import' + (' (dry run)' if args.dry_run else ''), summary)
    return 1 if summary.errors else 0


def run_remove(args: argparse.Namespace) -> int:
    from folderperms.extract import collect_folders
    from folderperms.reconcile import PermissionReconciler
    from folderperms.store_io import read_permission_rows
    from folderperms.windows_acl import PowerShellAclStore

    store = PowerShellAclStore()
    records, skipped_rows = read_permission_rows(Path(args.csv))
    folders = collect_folders(store, args.target_path, include_children=args.include_children)
    reconciler = PermissionReconciler(store, _policy(args))
    summary = reconciler.remove_permissions(folders, records)
    summary.skipped += skipped_rows
    _print_summary('Remove' + (' (dry run)' if args.dry_run else ''), summary)
    return 1 if summary.errors else 0


def run_report(args: argparse.Namespace) -> int:
    from folderperms.report import summarize_permissions
    from folderperms.store_io import read_permission_rows

    records, _ = read_permission_rows(Path(args.csv))
    written = summarize_permissions(records, Path(args.out), assume_user_when_unsure=args.unclassified_as == 'user')
    for name, path in written.items():
        print(f"Wrote {name}: {path}")
    return 0


def run_tests(args: argparse.Namespace) -> int:
    # Run pytest using the same Python interpreter
    print("Running pytest...")
    res = subprocess.run([sys.executable, '-m', 'pytest', '-q'])
    py_res = res.returncode

    # Run pyright if available
    from shutil import which

    pr = which('pyright') or which(str(Path('.venv') / 'Scripts' / 'pyright'))
    if pr:
        print("Running pyright...")
        pr_res = subprocess.run([pr])
        return pr_res.returncode or py_res
    return py_res


def _add_policy_args(p: argparse.ArgumentParser) -> None:
    p.add_argument('--skip-sids', action=argparse.BooleanOptionalAction, default=True,
                   help='Skip raw SID identities (default: on)')
    p.add_argument('--skip-user-accounts', action=argparse.BooleanOptionalAction, default=True,
                   help='Skip identities that look like individual users (default: on)')
    p.add_argument('--skip-already-inherited', action=argparse.BooleanOptionalAction, default=True,
                   help='Do not add rules the target already inherits (default: on)')
    p.add_argument('--use-local-principals', action=argparse.BooleanOptionalAction, default=True,
                   help='Rewrite identities to MACHINE\\name on the target (default: on)')
    p.add_argument('--create-missing-groups', action=argparse.BooleanOptionalAction, default=True,
                   help='Create missing group-like identities as local groups (default: on)')
    p.add_argument('--unclassified-as', choices=['user', 'group'], default='user',
                   help='How to treat identities no heuristic recognises (default: user)')
    p.add_argument('--dry-run', action='store_true', help='Report actions without changing any ACL')


def main():
    p = argparse.ArgumentParser(prog='run.py')
    p.add_argument('--log-file', default=None, help='Also write a DEBUG log to this file')
    p.add_argument('--verbose', '-v', action='store_true')
    sp = p.add_subparsers(dest='cmd')

    e = sp.add_parser('export', help='Export folder ACLs to CSV')
    e.add_argument('--path', required=True, help='Folder to export')
    e.add_argument('--out', required=True, help='Output CSV (or .parquet) path')
    e.add_argument('--include-children', action='store_true', help='Also export immediate child folders')
    e.add_argument('--explicit-only', action='store_true', help='Leave inherited rules out of the export')

    i = sp.add_parser('import', help='Add exported permissions to folders under a target base path')
    i.add_argument('--csv', required=True, help='Exported permissions CSV')
    i.add_argument('--target-path', required=True, help='Target base path; records map onto it by folder name')
    _add_policy_args(i)

    r = sp.add_parser('remove', help='Remove explicit permissions not listed in an allow-list CSV')
    r.add_argument('--csv', required=True, help='Allowed permissions CSV')
    r.add_argument('--target-path', required=True, help='Target folder')
    r.add_argument('--include-children', action='store_true', help='Also process immediate child folders')
    _add_policy_args(r)

    rp = sp.add_parser('report', help='Summarise an exported permissions CSV with DuckDB')
    rp.add_argument('--csv', required=True)
    rp.add_argument('--out', default='out/report')
    rp.add_argument('--unclassified-as', choices=['user', 'group'], default='user')

    t = sp.add_parser('test')
    # no args for test yet

    args = p.parse_args()
    if args.cmd is None:
        p.print_help()
        return

    from folderperms.errors import FolderPermissionsError
    from folderperms.log_setup import setup_logging

    setup_logging(Path(args.log_file) if args.log_file else None, verbose=args.verbose)
    commands = {
        'export': run_export,
        'import': run_import,
        'remove': run_remove,
        'report': run_report,
        'test': run_tests,
    }
    try:
        return_code = commands[args.cmd](args)
    except FolderPermissionsError as exc:
        print(f"Error: {exc}")
        raise SystemExit(2)
    raise SystemExit(return_code)


if __name__ == '__main__':
    main()
