"""Exception types shared by the folder-permission tools."""
from __future__ import annotations


class FolderPermissionsError(Exception):
    pass


class PermissionStoreError(FolderPermissionsError):
    """Input store missing, unreadable, or failing schema validation."""


class TargetBaseMissingError(FolderPermissionsError):
    """The target (or export) base folder does not exist."""


class AclReadError(FolderPermissionsError):
    """The ACL of one folder could not be read."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class AclWriteError(FolderPermissionsError):
    """A rule could not be applied/removed, or a local group could not be created."""
