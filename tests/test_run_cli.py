import logging
from pathlib import Path
import sys

# allow importing run.py and folderperms
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

import run
from folderperms.records import PermissionRecord
from folderperms.store_io import write_permission_rows


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logger = logging.getLogger('folderperms')
    for h in list(logger.handlers):
        logger.removeHandler(h)
    logger.setLevel(logging.NOTSET)


def test_report_command(tmp_path: Path, monkeypatch):
    csv_path = write_permission_rows(
        [PermissionRecord('D:\\Data\\HR', 'CORP\\GRP_HR', 'Allow', 'Modify, Synchronize')], tmp_path / 'hr.csv')
    out = tmp_path / 'report'
    monkeypatch.setattr(sys, 'argv', ['run.py', 'report', '--csv', str(csv_path), '--out', str(out)])
    with pytest.raises(SystemExit) as exc:
        run.main()
    assert exc.value.code == 0
    assert (out / 'identities_by_classification.csv').exists()


def test_bad_input_exits_with_error(tmp_path: Path, monkeypatch, capsys):
    monkeypatch.setattr(sys, 'argv', ['run.py', 'report', '--csv', str(tmp_path / 'missing.csv')])
    with pytest.raises(SystemExit) as exc:
        run.main()
    assert exc.value.code == 2
    assert 'Error:' in capsys.readouterr().out


def test_policy_flags_map_to_policy():
    import argparse
    p = argparse.ArgumentParser()
    run._add_policy_args(p)
    args = p.parse_args(['--no-skip-user-accounts', '--no-create-missing-groups', '--dry-run', '--unclassified-as', 'group'])
    policy = run._policy(args)
    assert policy.skip_user_accounts is False
    assert policy.create_missing_groups is False
    assert policy.skip_sids is True
    assert policy.dry_run is True
    assert policy.assume_user_when_unsure is False
