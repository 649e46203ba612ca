from pathlib import Path
import sys

import pandas as pd

# allow importing folderperms package
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from folderperms.records import PermissionRecord
from folderperms.report import SQL_QUERIES, summarize_permissions


def make_records():
    inh = 'ContainerInherit, ObjectInherit'
    return [
        PermissionRecord('D:\\Data\\Finance', 'CORP\\GRP_Finance', 'Allow', 'Modify, Synchronize', inh),
        PermissionRecord('D:\\Data\\Finance', 'CORP\\alice.jones', 'Allow', 'Modify, Synchronize', inh),
        PermissionRecord('D:\\Data\\Finance', 'S-1-5-21-111-222-333-1001', 'Allow', 'FullControl', inh),
        PermissionRecord('D:\\Data\\Finance', 'NT AUTHORITY\\SYSTEM', 'Allow', 'FullControl', inh, 'None', True),
        PermissionRecord('D:\\Data\\HR', 'CORP\\GRP_Temp', 'Deny', 'Delete', inh),
    ]


def test_summarize_writes_every_query(tmp_path: Path):
    written = summarize_permissions(make_records(), tmp_path / 'report')
    assert set(written) == set(SQL_QUERIES)
    assert all(p.exists() for p in written.values())


def test_classification_and_skip_candidates(tmp_path: Path):
    written = summarize_permissions(make_records(), tmp_path)

    ids = pd.read_csv(written['identities_by_classification'])
    by_identity = dict(zip(ids['identity'], ids['classification']))
    assert by_identity['CORP\\alice.jones'] == 'User'
    assert by_identity['CORP\\GRP_Finance'] == 'Group'
    assert by_identity['NT AUTHORITY\\SYSTEM'] == 'WellKnownPrincipal'

    skips = pd.read_csv(written['default_import_skips'])
    assert set(skips['identity']) == {'CORP\\alice.jones', 'S-1-5-21-111-222-333-1001'}

    counts = pd.read_csv(written['explicit_vs_inherited']).set_index('folder_path')
    assert counts.loc['D:\\Data\\Finance', 'explicit_rules'] == 3
    assert counts.loc['D:\\Data\\Finance', 'inherited_rules'] == 1

    deny = pd.read_csv(written['deny_rules'])
    assert list(deny['identity']) == ['CORP\\GRP_Temp']
