from pathlib import Path
import sys

# allow importing folderperms package
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from folderperms.records import (
    PermissionRecord,
    identities_match,
    leaf_name,
    normalize_flags,
    rights_key,
)


def make_row(folder, identity, rights='Modify, Synchronize', type_='Allow', inh='ContainerInherit, ObjectInherit',
             prop='None', inherited='False'):
    return {
        'FolderPath': folder,
        'IdentityReference': identity,
        'AccessControlType': type_,
        'FileSystemRights': rights,
        'InheritanceFlags': inh,
        'PropagationFlags': prop,
        'IsInherited': inherited,
    }


def test_normalize_flags():
    assert normalize_flags('Synchronize, Modify') == 'Modify, Synchronize'
    assert normalize_flags('ObjectInherit,ContainerInherit') == 'ContainerInherit, ObjectInherit'
    assert normalize_flags('') == 'None'
    assert normalize_flags(None) == 'None'
    assert normalize_flags('None') == 'None'
    assert normalize_flags('Modify, modify') == 'Modify'


def test_from_row_parses_types_and_flags():
    r = PermissionRecord.from_row(make_row('D:\\Data\\Finance', 'CORP\\GRP_Finance', type_='deny', inherited='TRUE',
                                           rights='Synchronize, Modify'))
    assert r.access_control_type == 'Deny'
    assert r.is_inherited is True
    assert r.rights == 'Modify, Synchronize'
    assert PermissionRecord.from_row(make_row('D:\\x', 'a', inherited='0')).is_inherited is False


def test_to_row_uses_store_columns():
    r = PermissionRecord('D:\\Data', 'Everyone', 'Allow', 'ReadAndExecute, Synchronize')
    row = r.to_row()
    assert list(row) == ['FolderPath', 'IdentityReference', 'AccessControlType', 'FileSystemRights',
                         'InheritanceFlags', 'PropagationFlags', 'IsInherited']
    assert PermissionRecord.from_row(row) == r


def test_identities_match():
    assert identities_match('BUILTIN\\Users', 'Users')
    assert identities_match('corp\\grp_a', 'CORP\\GRP_A')
    assert not identities_match('CORP\\GRP_A', 'HOST\\GRP_A')
    assert not identities_match('GRP_A', 'GRP_B')


def test_same_rule_ignores_flag_order_and_folder():
    a = PermissionRecord('D:\\a', 'BUILTIN\\Users', 'Allow', 'Synchronize, ReadAndExecute', 'ObjectInherit, ContainerInherit')
    b = PermissionRecord('E:\\b', 'Users', 'allow', 'ReadAndExecute, Synchronize', 'ContainerInherit, ObjectInherit',
                         is_inherited=True)
    assert a.same_rule(b)
    assert not a.same_rule(PermissionRecord('D:\\a', 'Users', 'Deny', 'ReadAndExecute, Synchronize',
                                            'ContainerInherit, ObjectInherit'))


def test_leaf_name():
    assert leaf_name('D:\\Data\\Finance\\') == 'Finance'
    assert leaf_name('\\\\srv\\share\\Dept') == 'Dept'
    assert leaf_name('D:/Data/HR') == 'HR'


def test_rights_key_compares_flag_sets():
    # FileSystemAccessRule adds Synchronize to every Allow rule
    assert rights_key('Modify') == rights_key('Modify, Synchronize')
    assert rights_key('Synchronize, ReadAndExecute') == rights_key('ReadAndExecute')
    assert rights_key('ReadData, ReadExtendedAttributes, ReadAttributes, ReadPermissions') == rights_key('Read')
    assert rights_key('Read') != rights_key('ReadAndExecute')
    # Deny keeps Synchronize only for FullControl
    assert rights_key('Write, Synchronize', 'Deny') == rights_key('Write', 'Deny')
    assert rights_key('FullControl', 'Deny') != rights_key('Modify', 'Deny')


def test_rights_key_numeric_and_unknown_names():
    assert rights_key('2032127') == rights_key('FullControl')
    assert rights_key('268435456') == rights_key('FullControl')
    assert rights_key('-1610612736') == rights_key('ReadAndExecute')
    mask, unknown = rights_key('Modify, SomethingNew')
    assert unknown == frozenset({'somethingnew'})
    assert rights_key('Modify, somethingnew') == (mask, unknown)


def test_same_rule_matches_modify_with_and_without_synchronize():
    exported = PermissionRecord('E:\\b', 'LOCALHOST\\GRP_Finance', 'Allow', 'Modify, Synchronize',
                                'ContainerInherit, ObjectInherit', 'None', True)
    desired = PermissionRecord('D:\\a', 'GRP_Finance', 'Allow', 'Modify', 'ContainerInherit, ObjectInherit')
    assert exported.same_rule(desired)
    assert not exported.same_rule(desired.with_identity('GRP_HR'))
