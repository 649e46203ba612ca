"""Platform boundary for folder ACLs.

`AclStore` is what the extractor and reconciler talk to. `MemoryAclStore`
keeps everything in dictionaries; `windows_acl.PowerShellAclStore` is the
live Windows implementation.
"""
from __future__ import annotations

import abc
import ntpath
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Set, Union

from .errors import AclReadError, AclWriteError
from .identity import account_name_of, is_group_like, is_security_identifier, is_well_known_principal
from .records import PermissionRecord, identities_match


class AclStore(abc.ABC):
    @property
    @abc.abstractmethod
    def machine_name(self) -> str:
        ...

    @abc.abstractmethod
    def folder_exists(self, path: str) -> bool:
        ...

    @abc.abstractmethod
    def list_child_folders(self, path: str) -> List[str]:
        """Immediate child folders of `path`, sorted by name."""

    @abc.abstractmethod
    def read_acl(self, path: str) -> List[PermissionRecord]:
        """All access rules of `path` (explicit and inherited). Raises AclReadError."""

    @abc.abstractmethod
    def add_rule(self, path: str, record: PermissionRecord) -> None:
        ...

    @abc.abstractmethod
    def remove_rule(self, path: str, record: PermissionRecord) -> None:
        ...

    @abc.abstractmethod
    def principal_exists(self, name: str) -> bool:
        ...

    @abc.abstractmethod
    def create_local_group(self, name: str) -> None:
        ...


def _norm_path(path: str) -> str:
    return ntpath.normcase(ntpath.normpath(str(path).rstrip("\\/") or str(path)))


class MemoryAclStore(AclStore):
    """ACLs held in memory, keyed by Windows-style folder path.

    Principals are resolvable when listed in `principals` (case-insensitive,
    qualified or bare) or when they are well-known built-ins.
    """

    def __init__(
        self,
        machine_name: str = "LOCALHOST",
        folders: Optional[Dict[str, Iterable[PermissionRecord]]] = None,
        principals: Optional[Iterable[str]] = None,
    ):
        self._machine_name = machine_name
        self._paths: Dict[str, str] = {}
        self._acls: Dict[str, List[PermissionRecord]] = {}
        self.principals: Set[str] = {p.lower() for p in (principals or [])}
        self.unreadable: Set[str] = set()
        self.failing_identities: Set[str] = set()
        self.created_groups: List[str] = []
        for path, records in (folders or {}).items():
            self.add_folder(path, records)

    @property
    def machine_name(self) -> str:
        return self._machine_name

    def add_folder(self, path: str, records: Iterable[PermissionRecord] = ()) -> None:
        key = _norm_path(path)
        self._paths[key] = str(path).rstrip("\\/")
        self._acls[key] = [r.with_folder(self._paths[key]) for r in records]

    def mark_unreadable(self, path: str) -> None:
        self.unreadable.add(_norm_path(path))

    def folder_exists(self, path: str) -> bool:
        return _norm_path(path) in self._acls

    def list_child_folders(self, path: str) -> List[str]:
        parent = _norm_path(path)
        children = [self._paths[k] for k in self._acls if ntpath.dirname(k) == parent and k != parent]
        return sorted(children, key=lambda p: ntpath.basename(p).lower())

    def _acl(self, path: str) -> List[PermissionRecord]:
        key = _norm_path(path)
        if key not in self._acls:
            raise AclReadError(path, "folder does not exist")
        if key in self.unreadable:
            raise AclReadError(path, "access denied")
        return self._acls[key]

    def read_acl(self, path: str) -> List[PermissionRecord]:
        return list(self._acl(path))

    def add_rule(self, path: str, record: PermissionRecord) -> None:
        acl = self._acl(path)
        if record.identity.lower() in self.failing_identities:
            raise AclWriteError(f"cannot add rule for {record.identity} on {path}")
        if not self.principal_exists(record.identity):
            raise AclWriteError(f"identity {record.identity} could not be translated")
        acl.append(replace(record, folder_path=self._paths[_norm_path(path)], is_inherited=False))

    def remove_rule(self, path: str, record: PermissionRecord) -> None:
        acl = self._acl(path)
        for i, existing in enumerate(acl):
            if not existing.is_inherited and existing.same_rule(record):
                del acl[i]
                return
        raise AclWriteError(f"no explicit rule {record.describe()} on {path}")

    def principal_exists(self, name: str) -> bool:
        if is_well_known_principal(name):
            return True
        return any(identities_match(name, p) for p in self.principals)

    def create_local_group(self, name: str) -> None:
        qualified = f"{self.machine_name}\\{name}"
        if qualified.lower() in self.principals:
            raise AclWriteError(f"group {qualified} already exists")
        self.principals.add(qualified.lower())
        self.created_groups.append(name)


@dataclass(frozen=True)
class Resolved:
    principal: str


@dataclass(frozen=True)
class NeedsCreation:
    name: str


@dataclass(frozen=True)
class Unresolvable:
    principal: str
    reason: str


Resolution = Union[Resolved, NeedsCreation, Unresolvable]


def target_principal(identity: str, machine_name: str, use_local_principals: bool) -> str:
    """The identity as it should be written on the target machine."""
    if is_well_known_principal(identity):
        return account_name_of(identity)
    if use_local_principals and not is_security_identifier(identity):
        return f"{machine_name}\\{account_name_of(identity)}"
    return identity


def try_resolve_identity(
    store: AclStore,
    identity: str,
    use_local_principals: bool = True,
    assume_user_when_unsure: bool = True,
) -> Resolution:
    principal = target_principal(identity, store.machine_name, use_local_principals)
    if store.principal_exists(principal):
        return Resolved(principal)
    if is_security_identifier(identity):
        return Unresolvable(principal, "security identifier is not known on this machine")
    if is_group_like(identity, assume_user_when_unsure):
        return NeedsCreation(account_name_of(identity))
    return Unresolvable(principal, "principal not found")
