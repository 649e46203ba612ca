"""PermissionRecord: one access rule of one folder, as exported or desired.

The store columns mirror the properties PowerShell reports for
FileSystemAccessRule objects so exports from either side line up.
"""
from __future__ import annotations

import ntpath
from dataclasses import dataclass, replace
from typing import Any, Dict, FrozenSet, Mapping, Tuple

FOLDER_PATH = "FolderPath"
IDENTITY = "IdentityReference"
ACCESS_CONTROL_TYPE = "AccessControlType"
RIGHTS = "FileSystemRights"
INHERITANCE_FLAGS = "InheritanceFlags"
PROPAGATION_FLAGS = "PropagationFlags"
IS_INHERITED = "IsInherited"

COLUMNS = (
    FOLDER_PATH,
    IDENTITY,
    ACCESS_CONTROL_TYPE,
    RIGHTS,
    INHERITANCE_FLAGS,
    PROPAGATION_FLAGS,
    IS_INHERITED,
)

_TRUE_STRINGS = {"true", "1", "yes", "y"}

# System.Security.AccessControl.FileSystemRights members, lower-cased
FILE_SYSTEM_RIGHTS: Dict[str, int] = {
    "readdata": 0x1,
    "listdirectory": 0x1,
    "writedata": 0x2,
    "createfiles": 0x2,
    "appenddata": 0x4,
    "createdirectories": 0x4,
    "readextendedattributes": 0x8,
    "writeextendedattributes": 0x10,
    "executefile": 0x20,
    "traverse": 0x20,
    "deletesubdirectoriesandfiles": 0x40,
    "readattributes": 0x80,
    "writeattributes": 0x100,
    "write": 0x116,
    "delete": 0x10000,
    "readpermissions": 0x20000,
    "read": 0x20089,
    "readandexecute": 0x200A9,
    "modify": 0x301BF,
    "changepermissions": 0x40000,
    "takeownership": 0x80000,
    "synchronize": 0x100000,
    "fullcontrol": 0x1F01FF,
}
SYNCHRONIZE = FILE_SYSTEM_RIGHTS["synchronize"]
FULL_CONTROL = FILE_SYSTEM_RIGHTS["fullcontrol"]

# generic bits Get-Acl reports as bare numbers (mostly on CREATOR OWNER entries)
_GENERIC_RIGHTS = {
    0x10000000: FULL_CONTROL,
    0x20000000: 0x1200A0,
    0x40000000: 0x120116,
    0x80000000: 0x120089,
}

RightsKey = Tuple[int, FrozenSet[str]]
RuleKey = Tuple[str, RightsKey, str, str, str]


def normalize_flags(text: Any) -> str:
    """Canonical form of a symbolic flag string: sorted, ", "-joined, "None" when empty."""
    if text is None:
        return "None"
    parts = [p.strip() for p in str(text).split(",")]
    parts = [p for p in parts if p and p.lower() != "none"]
    if not parts:
        return "None"
    # dedupe case-insensitively but keep the first spelling seen
    seen: Dict[str, str] = {}
    for p in parts:
        seen.setdefault(p.lower(), p)
    return ", ".join(sorted(seen.values(), key=str.lower))


def normalize_control_type(text: Any) -> str:
    s = str(text or "").strip().lower()
    if s == "deny":
        return "Deny"
    # blank type is treated as Allow, matching FileSystemAccessRule's default
    return "Allow"


def rights_key(rights: Any, access_control_type: Any = "Allow") -> RightsKey:
    """Rights as (access mask, unrecognised names) for comparing rules.

    Names and numeric masks are both accepted. FileSystemAccessRule always
    adds Synchronize to Allow rules and strips it from Deny rules other than
    FullControl, so the mask is adjusted the same way.
    """
    mask = 0
    unknown = set()
    for part in normalize_flags(rights).split(", "):
        if part == "None":
            continue
        name = part.lower()
        if name in FILE_SYSTEM_RIGHTS:
            mask |= FILE_SYSTEM_RIGHTS[name]
            continue
        try:
            value = int(name) & 0xFFFFFFFF
        except ValueError:
            unknown.add(name)
            continue
        for bit, expanded in _GENERIC_RIGHTS.items():
            if value & bit:
                value = (value & ~bit) | expanded
        mask |= value
    if normalize_control_type(access_control_type) == "Allow":
        mask |= SYNCHRONIZE
    elif mask != FULL_CONTROL:
        mask &= ~SYNCHRONIZE
    return mask, frozenset(unknown)


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_STRINGS


def leaf_name(path: str) -> str:
    """Last component of a Windows or UNC path, ignoring trailing separators."""
    return ntpath.basename(str(path or "").rstrip("\\/"))


def split_identity(identity: str) -> Tuple[str, str]:
    """Split ``scope\\name`` at the last backslash; scope is '' when unqualified."""
    s = (identity or "").strip()
    if "\\" in s:
        scope, name = s.rsplit("\\", 1)
        return scope, name
    return "", s


def identities_match(a: str, b: str) -> bool:
    a_scope, a_name = split_identity(a)
    b_scope, b_name = split_identity(b)
    if a_name.lower() != b_name.lower():
        return False
    if a_scope and b_scope:
        return a_scope.lower() == b_scope.lower()
    return True


@dataclass(frozen=True)
class PermissionRecord:
    folder_path: str
    identity: str
    access_control_type: str = "Allow"
    rights: str = "None"
    inheritance_flags: str = "None"
    propagation_flags: str = "None"
    is_inherited: bool = False

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PermissionRecord":
        def get(key: str) -> str:
            v = row.get(key)
            return "" if v is None else str(v).strip()

        return cls(
            folder_path=get(FOLDER_PATH),
            identity=get(IDENTITY),
            access_control_type=normalize_control_type(get(ACCESS_CONTROL_TYPE)),
            rights=normalize_flags(get(RIGHTS)),
            inheritance_flags=normalize_flags(get(INHERITANCE_FLAGS)),
            propagation_flags=normalize_flags(get(PROPAGATION_FLAGS)),
            is_inherited=parse_bool(row.get(IS_INHERITED)),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            FOLDER_PATH: self.folder_path,
            IDENTITY: self.identity,
            ACCESS_CONTROL_TYPE: self.access_control_type,
            RIGHTS: self.rights,
            INHERITANCE_FLAGS: self.inheritance_flags,
            PROPAGATION_FLAGS: self.propagation_flags,
            IS_INHERITED: self.is_inherited,
        }

    def rule_key(self) -> RuleKey:
        return (
            self.identity.lower(),
            rights_key(self.rights, self.access_control_type),
            normalize_control_type(self.access_control_type).lower(),
            normalize_flags(self.inheritance_flags).lower(),
            normalize_flags(self.propagation_flags).lower(),
        )

    def same_rule(self, other: "PermissionRecord") -> bool:
        """True when both describe the same access rule, ignoring folder and inheritance origin."""
        return identities_match(self.identity, other.identity) and self.rule_key()[1:] == other.rule_key()[1:]

    def with_identity(self, identity: str) -> "PermissionRecord":
        return replace(self, identity=identity)

    def with_folder(self, folder_path: str) -> "PermissionRecord":
        return replace(self, folder_path=folder_path)

    def describe(self) -> str:
        return f"{self.identity} {self.access_control_type} {self.rights}"
