import json
import subprocess
from pathlib import Path
import sys

# allow importing folderperms package
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from folderperms import windows_acl
from folderperms.errors import AclReadError, AclWriteError
from folderperms.records import PermissionRecord
from folderperms.windows_acl import PowerShellAclStore, parse_acl_json

GET_ACL_OUTPUT = json.dumps([
    {"IdentityReference": "BUILTIN\\Administrators", "AccessControlType": "Allow", "FileSystemRights": "FullControl",
     "InheritanceFlags": "ContainerInherit, ObjectInherit", "PropagationFlags": "None", "IsInherited": True},
    {"IdentityReference": "CORP\\GRP_Finance", "AccessControlType": "Allow", "FileSystemRights": "Modify, Synchronize",
     "InheritanceFlags": "ContainerInherit, ObjectInherit", "PropagationFlags": "None", "IsInherited": False},
])


class FakeRun:
    def __init__(self, returncode=0, stdout='', stderr=''):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.calls = []

    def __call__(self, args, **kwargs):
        self.calls.append((args, kwargs))
        return subprocess.CompletedProcess(args, self.returncode, self.stdout, self.stderr)


def test_parse_acl_json_list_and_single_object():
    records = parse_acl_json('D:\\Data', GET_ACL_OUTPUT)
    assert [r.identity for r in records] == ['BUILTIN\\Administrators', 'CORP\\GRP_Finance']
    assert records[0].is_inherited is True
    assert records[1].folder_path == 'D:\\Data'

    single = parse_acl_json('D:\\Data', json.dumps(json.loads(GET_ACL_OUTPUT)[1]))
    assert len(single) == 1
    assert parse_acl_json('D:\\Data', '') == []


def test_read_acl_passes_path_through_environment(monkeypatch):
    fake = FakeRun(stdout=GET_ACL_OUTPUT)
    monkeypatch.setattr(windows_acl.subprocess, 'run', fake)
    store = PowerShellAclStore(machine_name='HOST1')
    records = store.read_acl("D:\\Data\\O'Brien")
    assert len(records) == 2
    args, kwargs = fake.calls[0]
    assert args[:4] == ['powershell.exe', '-NoProfile', '-NonInteractive', '-Command']
    assert "O'Brien" not in args[4]
    assert kwargs['env']['FP_PATH'] == "D:\\Data\\O'Brien"


def test_read_acl_failure_raises(monkeypatch):
    monkeypatch.setattr(windows_acl.subprocess, 'run', FakeRun(returncode=1, stderr='Access is denied.'))
    with pytest.raises(AclReadError) as exc:
        PowerShellAclStore(machine_name='HOST1').read_acl('D:\\Secret')
    assert 'Access is denied' in str(exc.value)


def test_add_rule_environment_and_failure(monkeypatch):
    fake = FakeRun()
    monkeypatch.setattr(windows_acl.subprocess, 'run', fake)
    store = PowerShellAclStore(machine_name='HOST1')
    rule = PermissionRecord('D:\\Data', 'HOST1\\GRP_Finance', 'Allow', 'Modify, Synchronize',
                            'ContainerInherit, ObjectInherit', 'None')
    store.add_rule('D:\\Data', rule)
    env = fake.calls[0][1]['env']
    assert env['FP_IDENTITY'] == 'HOST1\\GRP_Finance'
    assert env['FP_RIGHTS'] == 'Modify, Synchronize'
    assert env['FP_TYPE'] == 'Allow'
    assert 'AddAccessRule' in fake.calls[0][0][4]

    monkeypatch.setattr(windows_acl.subprocess, 'run', FakeRun(returncode=1, stderr='boom'))
    with pytest.raises(AclWriteError):
        store.remove_rule('D:\\Data', rule)


def test_principal_exists_and_group_creation(monkeypatch):
    monkeypatch.setattr(windows_acl.subprocess, 'run', FakeRun(stdout='true\r\n'))
    store = PowerShellAclStore(machine_name='HOST1')
    assert store.principal_exists('HOST1\\GRP_Finance')

    monkeypatch.setattr(windows_acl.subprocess, 'run', FakeRun(stdout='false'))
    assert not store.principal_exists('HOST1\\Nobody')

    monkeypatch.setattr(windows_acl.subprocess, 'run', FakeRun(returncode=1, stderr='exists'))
    with pytest.raises(AclWriteError):
        store.create_local_group('GRP_Finance')


def test_machine_name_from_environment(monkeypatch):
    monkeypatch.setenv('COMPUTERNAME', 'FILESRV02')
    assert PowerShellAclStore().machine_name == 'FILESRV02'


def test_sid_identity_uses_security_identifier(monkeypatch):
    fake = FakeRun(stdout='true')
    monkeypatch.setattr(windows_acl.subprocess, 'run', fake)
    store = PowerShellAclStore(machine_name='HOST1')
    sid = 'S-1-5-21-1-2-3-500'
    assert store.principal_exists(sid)
    store.add_rule('D:\\Data', PermissionRecord('D:\\Data', sid, 'Allow', 'Modify', 'None', 'None'))

    for args, kwargs in fake.calls:
        assert 'SecurityIdentifier($env:FP_IDENTITY)' in args[4]
        assert 'NTAccount($env:FP_IDENTITY)' not in args[4]
        assert kwargs['env']['FP_IDENTITY'] == sid
    assert 'Translate($lookup)' in fake.calls[0][0][4]
    assert 'AddAccessRule' in fake.calls[1][0][4]


def test_account_identity_uses_nt_account(monkeypatch):
    fake = FakeRun(stdout='true')
    monkeypatch.setattr(windows_acl.subprocess, 'run', fake)
    assert PowerShellAclStore(machine_name='HOST1').principal_exists('HOST1\\GRP_Finance')
    script = fake.calls[0][0][4]
    assert 'NTAccount($env:FP_IDENTITY)' in script
    assert 'SecurityIdentifier($env:FP_IDENTITY)' not in script


def test_missing_powershell_raises_store_errors(monkeypatch):
    def no_powershell(args, **kwargs):
        raise FileNotFoundError(2, 'No such file or directory', args[0])

    monkeypatch.setattr(windows_acl.subprocess, 'run', no_powershell)
    store = PowerShellAclStore(machine_name='HOST1')
    with pytest.raises(AclReadError) as exc:
        store.read_acl('D:\\Data')
    assert exc.value.path == 'D:\\Data'
    with pytest.raises(AclWriteError):
        store.add_rule('D:\\Data', PermissionRecord('D:\\Data', 'Everyone', 'Allow', 'Read'))
    with pytest.raises(AclWriteError):
        store.create_local_group('GRP_Finance')
