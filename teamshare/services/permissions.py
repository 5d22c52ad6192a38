"""
Role to permission-tier mapping and the ACL arithmetic applied to shared resources.

Stored resources keep three lists (``view``, ``edit``, ``admin``). Internally an
ACL is a mapping of member id to a single tier, so a member can never hold two
tiers at once once it has passed through ``AccessControlList``.
"""
import logging
from enum import Enum
from typing import Dict, List, Mapping, Optional


logger = logging.getLogger(__name__)


class PermissionTier(str, Enum):
    view = "view"
    edit = "edit"
    admin = "admin"


# Lowest privilege first
TIER_ORDER = (PermissionTier.view, PermissionTier.edit, PermissionTier.admin)

ROLE_TIERS = {
    "owner": PermissionTier.admin,
    "admin": PermissionTier.admin,
    "member": PermissionTier.edit,
    "viewer": PermissionTier.view,
}


def tier_of(role: Optional[str]) -> PermissionTier:
    """Unknown roles fall back to the least privileged tier."""
    return ROLE_TIERS.get(role, PermissionTier.view)


def normalize_permissions(permissions: Optional[Mapping]) -> Dict[str, List[str]]:
    permissions = permissions or {}
    return {
        tier.value: sorted(set(permissions.get(tier.value) or []))
        for tier in TIER_ORDER
    }


def permissions_changed(old: Optional[Mapping], new: Optional[Mapping]) -> bool:
    """True when any of the three tiers differs, ignoring order and duplicates."""
    return normalize_permissions(old) != normalize_permissions(new)


class AccessControlList:
    def __init__(self, entries: Optional[Dict[str, PermissionTier]] = None,
                 conflicts: Optional[List[str]] = None):
        self.entries: Dict[str, PermissionTier] = dict(entries or {})
        self.conflicts: List[str] = list(conflicts or [])

    @classmethod
    def from_permissions(cls, permissions: Optional[Mapping]) -> "AccessControlList":
        """
        Read a stored ``{view, edit, admin}`` record.

        A member listed under several tiers is kept at the lowest of them and
        reported in ``conflicts``. Raises ValueError for a record that is not a
        mapping of tier name to a list of member ids.
        """
        if permissions is None:
            return cls()
        if not isinstance(permissions, Mapping):
            raise ValueError(f"Malformed permissions record: {permissions!r}")

        entries: Dict[str, PermissionTier] = {}
        conflicts: List[str] = []
        for tier in TIER_ORDER:
            member_ids = permissions.get(tier.value) or []
            if not isinstance(member_ids, list) or not all(isinstance(m, str) for m in member_ids):
                raise ValueError(f"Malformed '{tier.value}' permission list: {member_ids!r}")
            for member_id in member_ids:
                if member_id in entries:
                    if entries[member_id] != tier and member_id not in conflicts:
                        conflicts.append(member_id)
                    continue
                entries[member_id] = tier

        if conflicts:
            logger.warning(f"Members present in more than one permission tier: {conflicts}")
        return cls(entries, conflicts)

    def to_permissions(self) -> Dict[str, List[str]]:
        permissions = {tier.value: [] for tier in TIER_ORDER}
        for member_id, tier in self.entries.items():
            permissions[tier.value].append(member_id)
        for member_ids in permissions.values():
            member_ids.sort()
        return permissions

    def tier_for(self, member_id: str) -> Optional[PermissionTier]:
        return self.entries.get(member_id)

    def upsert(self, member_id: str, role: Optional[str]) -> "AccessControlList":
        entries = dict(self.entries)
        entries.pop(member_id, None)
        entries[member_id] = tier_of(role)
        return AccessControlList(entries, self.conflicts)

    def remove(self, member_id: str) -> "AccessControlList":
        entries = dict(self.entries)
        entries.pop(member_id, None)
        return AccessControlList(entries, self.conflicts)

    @classmethod
    def recompute(cls, members: Mapping[str, Optional[str]]) -> "AccessControlList":
        acl = cls()
        for member_id, role in members.items():
            acl = acl.upsert(member_id, role)
        return acl


def upsert_member(current: Optional[Mapping], member_id: str, role: Optional[str]) -> Dict[str, List[str]]:
    return AccessControlList.from_permissions(current).upsert(member_id, role).to_permissions()


def remove_member(current: Optional[Mapping], member_id: str) -> Dict[str, List[str]]:
    return AccessControlList.from_permissions(current).remove(member_id).to_permissions()


def recompute(members: Mapping[str, Optional[str]]) -> Dict[str, List[str]]:
    """Target ACL for a ``{member_id: role}`` membership snapshot."""
    return AccessControlList.recompute(members).to_permissions()
