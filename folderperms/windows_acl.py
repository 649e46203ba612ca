"""Live Windows ACL access through PowerShell.

Each operation runs a short PowerShell snippet. Arguments travel through
environment variables (``FP_*``) so paths and account names are never pasted
into script text, and results come back as JSON.
"""
from __future__ import annotations

import json
import logging
import os
import platform
import subprocess
from typing import Any, Callable, Dict, List, Optional

from .acl_store import AclStore
from .errors import AclReadError, AclWriteError, FolderPermissionsError
from .identity import is_security_identifier
from .records import FOLDER_PATH, PermissionRecord

logger = logging.getLogger(__name__)

POWERSHELL = "powershell.exe"

_READ_ACL = r"""
$ErrorActionPreference = 'Stop'
$acl = Get-Acl -LiteralPath $env:FP_PATH
$rows = @($acl.Access | ForEach-Object {
  [pscustomobject]@{
    IdentityReference = $_.IdentityReference.Value
    AccessControlType = $_.AccessControlType.ToString()
    FileSystemRights  = $_.FileSystemRights.ToString()
    InheritanceFlags  = $_.InheritanceFlags.ToString()
    PropagationFlags  = $_.PropagationFlags.ToString()
    IsInherited       = $_.IsInherited
  }
})
ConvertTo-Json -InputObject $rows -Compress -Depth 3
"""

# $identity is the rule's IdentityReference; $lookup is what Translate must reach
_SID_IDENTITY = r"""
$identity = New-Object System.Security.Principal.SecurityIdentifier($env:FP_IDENTITY)
$lookup = [System.Security.Principal.NTAccount]
"""

_ACCOUNT_IDENTITY = r"""
$identity = New-Object System.Security.Principal.NTAccount($env:FP_IDENTITY)
$lookup = [System.Security.Principal.SecurityIdentifier]
"""

_NEW_RULE = r"""
$rule = New-Object System.Security.AccessControl.FileSystemAccessRule(
  $identity,
  [System.Security.AccessControl.FileSystemRights]$env:FP_RIGHTS,
  [System.Security.AccessControl.InheritanceFlags]$env:FP_INHERITANCE,
  [System.Security.AccessControl.PropagationFlags]$env:FP_PROPAGATION,
  [System.Security.AccessControl.AccessControlType]$env:FP_TYPE)
"""

_ADD_RULE = _NEW_RULE + r"""
$acl = Get-Acl -LiteralPath $env:FP_PATH
$acl.AddAccessRule($rule)
Set-Acl -LiteralPath $env:FP_PATH -AclObject $acl
"""

_REMOVE_RULE = _NEW_RULE + r"""
$acl = Get-Acl -LiteralPath $env:FP_PATH
$acl.RemoveAccessRuleSpecific($rule)
Set-Acl -LiteralPath $env:FP_PATH -AclObject $acl
"""

_PRINCIPAL_EXISTS = r"""
try {
  $null = $identity.Translate($lookup)
  'true'
} catch {
  'false'
}
"""

_CREATE_GROUP = r"""
$ErrorActionPreference = 'Stop'
New-LocalGroup -Name $env:FP_GROUP -Description $env:FP_DESCRIPTION | Out-Null
"""


def identity_script(identity: str, body: str) -> str:
    """Prefix `body` with the IdentityReference matching `identity` (SID or account name)."""
    reference = _SID_IDENTITY if is_security_identifier(identity) else _ACCOUNT_IDENTITY
    return "$ErrorActionPreference = 'Stop'\n" + reference + body


def parse_acl_json(path: str, text: str) -> List[PermissionRecord]:
    text = (text or "").strip()
    if not text:
        return []
    data: Any = json.loads(text)
    # ConvertTo-Json unwraps single-element arrays on older PowerShell
    if isinstance(data, dict):
        data = [data]
    records: List[PermissionRecord] = []
    for ace in data:
        row: Dict[str, Any] = dict(ace)
        row[FOLDER_PATH] = path
        records.append(PermissionRecord.from_row(row))
    return records


class PowerShellAclStore(AclStore):
    def __init__(self, powershell: str = POWERSHELL, machine_name: Optional[str] = None):
        self.powershell = powershell
        self._machine_name = machine_name or os.environ.get("COMPUTERNAME") or platform.node()

    @property
    def machine_name(self) -> str:
        return self._machine_name

    def _run(
        self,
        script: str,
        env: Dict[str, str],
        error: Callable[[str], FolderPermissionsError] = AclWriteError,
    ) -> subprocess.CompletedProcess:
        full_env = dict(os.environ)
        full_env.update(env)
        logger.debug("powershell call with %s", {k: v for k, v in env.items() if k != "FP_DESCRIPTION"})
        try:
            return subprocess.run(
                [self.powershell, "-NoProfile", "-NonInteractive", "-Command", script],
                capture_output=True,
                text=True,
                env=full_env,
                check=False,
            )
        except OSError as e:
            raise error(f"cannot run {self.powershell}: {e}") from e

    @staticmethod
    def _rule_env(path: str, record: PermissionRecord) -> Dict[str, str]:
        return {
            "FP_PATH": path,
            "FP_IDENTITY": record.identity,
            "FP_RIGHTS": record.rights,
            "FP_INHERITANCE": record.inheritance_flags,
            "FP_PROPAGATION": record.propagation_flags,
            "FP_TYPE": record.access_control_type,
        }

    def folder_exists(self, path: str) -> bool:
        return os.path.isdir(path)

    def list_child_folders(self, path: str) -> List[str]:
        try:
            with os.scandir(path) as it:
                children = [e.path for e in it if e.is_dir(follow_symlinks=False)]
        except OSError as e:
            raise AclReadError(path, f"cannot list child folders: {e}") from e
        return sorted(children, key=lambda p: os.path.basename(p).lower())

    def read_acl(self, path: str) -> List[PermissionRecord]:
        res = self._run(_READ_ACL, {"FP_PATH": path}, error=lambda msg: AclReadError(path, msg))
        if res.returncode != 0:
            raise AclReadError(path, (res.stderr or res.stdout).strip())
        try:
            return parse_acl_json(path, res.stdout)
        except (ValueError, TypeError) as e:
            raise AclReadError(path, f"unexpected Get-Acl output: {e}") from e

    def add_rule(self, path: str, record: PermissionRecord) -> None:
        res = self._run(identity_script(record.identity, _ADD_RULE), self._rule_env(path, record))
        if res.returncode != 0:
            raise AclWriteError(f"adding {record.describe()} on {path} failed: {(res.stderr or res.stdout).strip()}")

    def remove_rule(self, path: str, record: PermissionRecord) -> None:
        res = self._run(identity_script(record.identity, _REMOVE_RULE), self._rule_env(path, record))
        if res.returncode != 0:
            raise AclWriteError(f"removing {record.describe()} on {path} failed: {(res.stderr or res.stdout).strip()}")

    def principal_exists(self, name: str) -> bool:
        res = self._run(identity_script(name, _PRINCIPAL_EXISTS), {"FP_IDENTITY": name})
        return res.returncode == 0 and res.stdout.strip().lower() == "true"

    def create_local_group(self, name: str) -> None:
        res = self._run(_CREATE_GROUP, {"FP_GROUP": name, "FP_DESCRIPTION": "Created by folder permission import"})
        if res.returncode != 0:
            raise AclWriteError(f"creating local group {name} failed: {(res.stderr or res.stdout).strip()}")

