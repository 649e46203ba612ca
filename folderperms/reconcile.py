"""Apply exported permission records to folders on a target machine.

Two modes:

* import (`PermissionReconciler.import_permissions`): add every desired rule
  that is not already present on the remapped target folder.
* removal (`PermissionReconciler.remove_permissions`): remove explicit rules
  from target folders that are not in an allow-list.

Records are remapped by folder *leaf name* onto the target base path, so two
source folders with the same leaf name land on the same target folder.

Every decision is logged and collected in a `RunSummary`; only a missing
target base (or an unreadable input store, handled by the caller) aborts a run.
"""
from __future__ import annotations

import logging
import ntpath
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from .acl_store import AclStore, NeedsCreation, Resolved, Unresolvable, target_principal, try_resolve_identity
from .errors import AclReadError, FolderPermissionsError, TargetBaseMissingError
from .identity import explain, is_likely_user_account, is_security_identifier
from .records import PermissionRecord, leaf_name, split_identity

logger = logging.getLogger(__name__)

ACTION_ADD = "add"
ACTION_REMOVE = "remove"
ACTION_CREATE_GROUP = "create-group"
ACTION_SKIP = "skip"
ACTION_ERROR = "error"

SKIP_INHERITED_SOURCE = "inherited in source"
SKIP_SID = "security identifier"
SKIP_USER = "likely user account"
SKIP_ALREADY_INHERITED = "already inherited on target"
SKIP_ALREADY_PRESENT = "already present on target"
SKIP_DUPLICATE = "duplicate input record"
SKIP_MISSING_FOLDER = "target folder missing"
SKIP_UNRESOLVED = "identity not resolvable"


@dataclass(frozen=True)
class ReconcilePolicy:
    skip_sids: bool = True
    skip_user_accounts: bool = True
    skip_already_inherited: bool = True
    use_local_principals: bool = True
    create_missing_groups: bool = True
    dry_run: bool = False
    assume_user_when_unsure: bool = True


@dataclass(frozen=True)
class Decision:
    folder: str
    identity: str
    rights: str
    action: str
    reason: str = ""
    dry_run: bool = False


@dataclass
class RunSummary:
    applied: int = 0
    planned: int = 0
    skipped: int = 0
    errors: int = 0
    groups_created: int = 0
    decisions: List[Decision] = field(default_factory=list)

    def as_dict(self) -> Dict[str, int]:
        return {
            "applied": self.applied,
            "planned": self.planned,
            "skipped": self.skipped,
            "errors": self.errors,
            "groups_created": self.groups_created,
        }


@dataclass
class ReconciliationPlan:
    folder: str
    to_add: List[PermissionRecord] = field(default_factory=list)
    to_remove: List[PermissionRecord] = field(default_factory=list)
    groups_to_create: List[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.to_add or self.to_remove or self.groups_to_create)


def resolve_target_path(origin_path: str, target_base: str) -> str:
    return ntpath.join(target_base, leaf_name(origin_path))


def group_by_target(records: Iterable[PermissionRecord], target_base: str) -> Dict[str, List[PermissionRecord]]:
    grouped: Dict[str, List[PermissionRecord]] = {}
    for r in records:
        grouped.setdefault(resolve_target_path(r.folder_path, target_base), []).append(r)
    return grouped


class PermissionReconciler:
    def __init__(self, store: AclStore, policy: Optional[ReconcilePolicy] = None):
        self.store = store
        self.policy = policy or ReconcilePolicy()
        # groups created (or, in dry-run, pretended) during this run
        self._groups: Set[str] = set()
        self._failed_groups: Set[str] = set()

    # -- logging helpers

    def _skip(self, summary: RunSummary, folder: str, record: PermissionRecord, reason: str, warn: bool = False) -> None:
        summary.skipped += 1
        summary.decisions.append(Decision(folder, record.identity, record.rights, ACTION_SKIP, reason, self.policy.dry_run))
        log = logger.warning if warn else logger.info
        log("Skip %s on %s: %s", record.describe(), folder, reason)

    def _error(self, summary: RunSummary, folder: str, record: PermissionRecord, action: str, err: Exception) -> None:
        summary.errors += 1
        summary.decisions.append(Decision(folder, record.identity, record.rights, ACTION_ERROR, f"{action}: {err}"))
        logger.error("Failed to %s %s on %s: %s", action, record.describe(), folder, err)

    def _filtered(self, record: PermissionRecord) -> Optional[str]:
        """Skip reason from the SID/user policy filters, or None."""
        if self.policy.skip_sids and is_security_identifier(record.identity):
            return SKIP_SID
        if self.policy.skip_user_accounts and is_likely_user_account(record.identity, self.policy.assume_user_when_unsure):
            _, rule = explain(record.identity, self.policy.assume_user_when_unsure)
            return f"{SKIP_USER} ({rule})"
        return None

    # -- import mode

    def plan_additions(
        self,
        folder: str,
        records: Iterable[PermissionRecord],
        current: List[PermissionRecord],
        summary: Optional[RunSummary] = None,
    ) -> ReconciliationPlan:
        summary = summary if summary is not None else RunSummary()
        plan = ReconciliationPlan(folder)
        for record in records:
            if record.is_inherited:
                self._skip(summary, folder, record, SKIP_INHERITED_SOURCE)
                continue
            reason = self._filtered(record)
            if reason:
                self._skip(summary, folder, record, reason)
                continue

            resolution = try_resolve_identity(
                self.store,
                record.identity,
                use_local_principals=self.policy.use_local_principals,
                assume_user_when_unsure=self.policy.assume_user_when_unsure,
            )
            if isinstance(resolution, Resolved):
                principal = resolution.principal
            elif isinstance(resolution, NeedsCreation) and self.policy.create_missing_groups:
                if resolution.name in self._failed_groups:
                    self._skip(summary, folder, record, f"{SKIP_UNRESOLVED} (group creation failed)", warn=True)
                    continue
                principal = f"{self.store.machine_name}\\{resolution.name}"
                if resolution.name not in self._groups and resolution.name not in plan.groups_to_create:
                    plan.groups_to_create.append(resolution.name)
            else:
                why = resolution.reason if isinstance(resolution, Unresolvable) else "group creation disabled"
                self._skip(summary, folder, record, f"{SKIP_UNRESOLVED}: {why}", warn=True)
                continue

            desired = record.with_folder(folder).with_identity(principal)
            if principal != record.identity:
                logger.info("Mapped %s -> %s on %s", record.identity, principal, folder)
            if self.policy.skip_already_inherited and any(c.is_inherited and c.same_rule(desired) for c in current):
                self._skip(summary, folder, record, SKIP_ALREADY_INHERITED)
                continue
            if any(not c.is_inherited and c.same_rule(desired) for c in current):
                self._skip(summary, folder, record, SKIP_ALREADY_PRESENT)
                continue
            if any(p.same_rule(desired) for p in plan.to_add):
                self._skip(summary, folder, record, SKIP_DUPLICATE)
                continue
            plan.to_add.append(desired)
        return plan

    def _create_groups(self, plan: ReconciliationPlan, summary: RunSummary) -> None:
        for name in plan.groups_to_create:
            if name in self._groups:
                continue
            decision = Decision(plan.folder, name, "", ACTION_CREATE_GROUP, "missing on target", self.policy.dry_run)
            if self.policy.dry_run:
                logger.info("[dry-run] Would create local group %s", name)
                self._groups.add(name)
                summary.decisions.append(decision)
                continue
            try:
                self.store.create_local_group(name)
            except FolderPermissionsError as e:
                summary.errors += 1
                self._failed_groups.add(name)
                summary.decisions.append(Decision(plan.folder, name, "", ACTION_ERROR, f"create group: {e}"))
                logger.error("Failed to create local group %s: %s", name, e)
                continue
            self._groups.add(name)
            summary.groups_created += 1
            summary.decisions.append(decision)
            logger.info("Created local group %s", name)

        # retry resolution once for rules waiting on a new group
        keep: List[PermissionRecord] = []
        for record in plan.to_add:
            name = split_identity(record.identity)[1]
            if name not in plan.groups_to_create:
                keep.append(record)
            elif name in self._failed_groups:
                self._skip(summary, plan.folder, record, f"{SKIP_UNRESOLVED} (group creation failed)", warn=True)
            elif self.policy.dry_run or self.store.principal_exists(record.identity):
                keep.append(record)
            else:
                self._skip(summary, plan.folder, record, f"{SKIP_UNRESOLVED} after creating group", warn=True)
        plan.to_add = keep

    def apply(self, plan: ReconciliationPlan, summary: Optional[RunSummary] = None) -> RunSummary:
        summary = summary if summary is not None else RunSummary()
        if plan.groups_to_create:
            self._create_groups(plan, summary)

        for record in plan.to_add:
            if self.policy.dry_run:
                summary.planned += 1
                summary.decisions.append(Decision(plan.folder, record.identity, record.rights, ACTION_ADD, "", True))
                logger.info("[dry-run] Would add %s on %s", record.describe(), plan.folder)
                continue
            try:
                self.store.add_rule(plan.folder, record)
            except FolderPermissionsError as e:
                self._error(summary, plan.folder, record, "add", e)
                continue
            summary.applied += 1
            summary.decisions.append(Decision(plan.folder, record.identity, record.rights, ACTION_ADD))
            logger.info("Added %s on %s", record.describe(), plan.folder)

        for record in plan.to_remove:
            if self.policy.dry_run:
                summary.planned += 1
                summary.decisions.append(Decision(plan.folder, record.identity, record.rights, ACTION_REMOVE, "", True))
                logger.info("[dry-run] Would remove %s from %s", record.describe(), plan.folder)
                continue
            try:
                self.store.remove_rule(plan.folder, record)
            except FolderPermissionsError as e:
                self._error(summary, plan.folder, record, "remove", e)
                continue
            summary.applied += 1
            summary.decisions.append(Decision(plan.folder, record.identity, record.rights, ACTION_REMOVE))
            logger.info("Removed %s from %s", record.describe(), plan.folder)
        return summary

    def import_permissions(self, records: Iterable[PermissionRecord], target_base: str) -> RunSummary:
        if not self.store.folder_exists(target_base):
            raise TargetBaseMissingError(f"Target base path does not exist: {target_base}")
        summary = RunSummary()
        for folder, recs in group_by_target(records, target_base).items():
            if not self.store.folder_exists(folder):
                for r in recs:
                    self._skip(summary, folder, r, SKIP_MISSING_FOLDER, warn=True)
                continue
            try:
                current = self.store.read_acl(folder)
            except AclReadError as e:
                summary.errors += 1
                summary.decisions.append(Decision(folder, "", "", ACTION_ERROR, f"read acl: {e}"))
                logger.error("Cannot read ACL of %s, skipping %d record(s): %s", folder, len(recs), e)
                continue
            plan = self.plan_additions(folder, recs, current, summary)
            if plan.empty:
                logger.debug("%s: nothing to add", folder)
                continue
            self.apply(plan, summary)
        return summary

    # -- removal mode

    def plan_removals(
        self,
        folder: str,
        allowed: Iterable[PermissionRecord],
        current: List[PermissionRecord],
        summary: Optional[RunSummary] = None,
    ) -> ReconciliationPlan:
        summary = summary if summary is not None else RunSummary()
        allowed = list(allowed)
        machine = self.store.machine_name
        allowed_rules = [
            a.with_identity(target_principal(a.identity, machine, self.policy.use_local_principals)) for a in allowed
        ]
        plan = ReconciliationPlan(folder)
        for entry in current:
            if entry.is_inherited:
                continue
            reason = self._filtered(entry)
            if reason:
                self._skip(summary, folder, entry, f"not eligible for removal: {reason}")
                continue
            if any(entry.same_rule(a) for a in allowed_rules) or any(entry.same_rule(a) for a in allowed):
                continue
            plan.to_remove.append(entry)
        return plan

    def remove_permissions(self, target_folders: Iterable[str], allowed_records: Iterable[PermissionRecord]) -> RunSummary:
        allowed_by_leaf: Dict[str, List[PermissionRecord]] = {}
        for a in allowed_records:
            allowed_by_leaf.setdefault(leaf_name(a.folder_path).lower(), []).append(a)

        summary = RunSummary()
        for folder in target_folders:
            if not self.store.folder_exists(folder):
                summary.skipped += 1
                summary.decisions.append(Decision(folder, "", "", ACTION_SKIP, SKIP_MISSING_FOLDER))
                logger.warning("Skip %s: %s", folder, SKIP_MISSING_FOLDER)
                continue
            try:
                current = self.store.read_acl(folder)
            except AclReadError as e:
                summary.errors += 1
                summary.decisions.append(Decision(folder, "", "", ACTION_ERROR, f"read acl: {e}"))
                logger.error("Cannot read ACL of %s: %s", folder, e)
                continue
            allowed = allowed_by_leaf.get(leaf_name(folder).lower(), [])
            plan = self.plan_removals(folder, allowed, current, summary)
            self.apply(plan, summary)
        return summary
