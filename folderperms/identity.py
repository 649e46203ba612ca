"""Heuristic classification of security-principal references.

An identity string is one of: a bare name (``Finance_RW``), a qualified name
(``CORP\\alice.jones``) or a raw SID (``S-1-5-21-...``). The classifier decides
whether it names an individual user, a group, a well-known built-in principal
or a raw SID. Rules are evaluated in order; the first one with an opinion wins.

The ordering matters: SIDs are checked before anything else (they would look
like hyphenated codes), and the dotted-name user rule runs only after every
group signal has been tried, since some group names also contain dots.

Functions exposed for tests: `classify`, `explain`, `is_security_identifier`,
`account_name_of`, `is_likely_user_account`, `is_well_known_principal`.
"""
from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .records import split_identity


class Classification(str, enum.Enum):
    USER = "User"
    GROUP = "Group"
    WELL_KNOWN_PRINCIPAL = "WellKnownPrincipal"
    SECURITY_IDENTIFIER = "SecurityIdentifier"


# reference lists, revision 2
WELL_KNOWN_PRINCIPALS = frozenset(
    name.lower()
    for name in (
        "Everyone",
        "SYSTEM",
        "LOCAL SYSTEM",
        "Administrators",
        "Administrator",
        "Users",
        "Guests",
        "Power Users",
        "Backup Operators",
        "Remote Desktop Users",
        "Network Configuration Operators",
        "Authenticated Users",
        "INTERACTIVE",
        "NETWORK",
        "SERVICE",
        "BATCH",
        "ANONYMOUS LOGON",
        "LOCAL SERVICE",
        "NETWORK SERVICE",
        "CREATOR OWNER",
        "CREATOR GROUP",
        "OWNER RIGHTS",
        "TrustedInstaller",
        "IIS_IUSRS",
        "This Organization",
        "Domain Users",
        "Domain Admins",
        "Domain Computers",
        "Domain Controllers",
        "Domain Guests",
        "Enterprise Admins",
        "Enterprise Domain Controllers",
        "Schema Admins",
        "Group Policy Creator Owners",
    )
)

WELL_KNOWN_SCOPES = frozenset(("builtin", "nt authority", "nt service"))

GROUP_PREFIXES = (
    "GRP_",
    "GRP-",
    "G_",
    "GG_",
    "GL_",
    "DL_",
    "LG_",
    "SG_",
    "Role_",
    "Team_",
    "Dept_",
    "Admin_",
    "Admins_",
    "SVC_",
    "ACL_",
    "FS_",
    "Share_",
    "App_",
)

GROUP_KEYWORDS = (
    "users",
    "groups",
    "group",
    "admins",
    "administrators",
    "operators",
    "owners",
    "members",
    "roles",
    "access",
    "department",
    "service",
    "readers",
    "writers",
    "editors",
    "modify",
    "readonly",
    "fullcontrol",
)

_SID_RE = re.compile(r"^S-\d+(-\d+)+$", re.IGNORECASE)
_SEGMENT_SPLIT_RE = re.compile(r"[_\-]")
_UPPER_CODE_RE = re.compile(r"^[A-Z0-9]+$")

# segments required before an underscore/hyphen name counts as a group code
MIN_CODE_SEGMENTS = 3
# shortest all-uppercase token treated as a group code
MIN_UPPER_CODE_LENGTH = 4


def is_security_identifier(identity: str) -> bool:
    return bool(_SID_RE.match((identity or "").strip()))


def account_name_of(identity: str) -> str:
    s = (identity or "").strip()
    if is_security_identifier(s):
        return s
    return split_identity(s)[1]


def is_well_known_principal(identity: str) -> bool:
    if is_security_identifier(identity):
        return False
    scope, name = split_identity(identity)
    if scope.lower() in WELL_KNOWN_SCOPES:
        return True
    return name.lower() in WELL_KNOWN_PRINCIPALS


def _sid_rule(identity: str) -> Optional[Classification]:
    if is_security_identifier(identity):
        return Classification.SECURITY_IDENTIFIER
    return None


def _well_known_rule(identity: str) -> Optional[Classification]:
    if is_well_known_principal(identity):
        return Classification.WELL_KNOWN_PRINCIPAL
    return None


def _group_prefix_rule(identity: str) -> Optional[Classification]:
    name = account_name_of(identity).lower()
    if any(name.startswith(p.lower()) for p in GROUP_PREFIXES):
        return Classification.GROUP
    return None


def _group_keyword_rule(identity: str) -> Optional[Classification]:
    name = account_name_of(identity).lower()
    if any(k in name for k in GROUP_KEYWORDS):
        return Classification.GROUP
    return None


def _multi_segment_rule(identity: str) -> Optional[Classification]:
    name = account_name_of(identity)
    if "." in name:
        return None
    segments = [s for s in _SEGMENT_SPLIT_RE.split(name) if s]
    if len(segments) >= MIN_CODE_SEGMENTS:
        return Classification.GROUP
    return None


def _upper_code_rule(identity: str) -> Optional[Classification]:
    name = account_name_of(identity)
    if len(name) >= MIN_UPPER_CODE_LENGTH and _UPPER_CODE_RE.match(name) and any(c.isalpha() for c in name):
        return Classification.GROUP
    return None


def _dotted_name_rule(identity: str) -> Optional[Classification]:
    if "." in account_name_of(identity):
        return Classification.USER
    return None


@dataclass(frozen=True)
class IdentityRule:
    name: str
    check: Callable[[str], Optional[Classification]]


RULES: Tuple[IdentityRule, ...] = (
    IdentityRule("security-identifier", _sid_rule),
    IdentityRule("well-known-principal", _well_known_rule),
    IdentityRule("group-prefix", _group_prefix_rule),
    IdentityRule("group-keyword", _group_keyword_rule),
    IdentityRule("multi-segment-code", _multi_segment_rule),
    IdentityRule("upper-case-code", _upper_code_rule),
    IdentityRule("dotted-name", _dotted_name_rule),
)


def explain(identity: str, assume_user_when_unsure: bool = True) -> Tuple[Classification, str]:
    """Return the classification and the name of the rule that decided it."""
    for rule in RULES:
        result = rule.check(identity or "")
        if result is not None:
            return result, rule.name
    if assume_user_when_unsure:
        return Classification.USER, "fallback-user"
    return Classification.GROUP, "fallback-group"


def classify(identity: str, assume_user_when_unsure: bool = True) -> Classification:
    return explain(identity, assume_user_when_unsure)[0]


def is_likely_user_account(identity: str, assume_user_when_unsure: bool = True) -> bool:
    if is_security_identifier(identity):
        return False
    return classify(identity, assume_user_when_unsure) is Classification.USER


def is_group_like(identity: str, assume_user_when_unsure: bool = True) -> bool:
    return classify(identity, assume_user_when_unsure) in (Classification.GROUP, Classification.WELL_KNOWN_PRINCIPAL)
