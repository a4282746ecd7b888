"""
Membership checks shared by every arch-scoped operation.
"""

from __future__ import annotations

from typing import Optional

from arch_backend.errors import Forbidden, NotFound
from arch_backend.records import ArchRecord, MemberRole

NOT_A_MEMBER = "You are not a member of this arch"
ADMIN_REQUIRED = "Admin access required"


def member_role(arch: ArchRecord, user_id: str) -> Optional[MemberRole]:
    for member in arch.members:
        if member.user_id == user_id:
            return member.role
    return None


def is_member(arch: ArchRecord, user_id: str) -> bool:
    return member_role(arch, user_id) is not None


def is_admin(arch: ArchRecord, user_id: str) -> bool:
    return member_role(arch, user_id) == MemberRole.ADMIN


def require_member(arch: ArchRecord, user_id: str) -> None:
    if not is_member(arch, user_id):
        raise Forbidden(NOT_A_MEMBER)


def require_admin(arch: ArchRecord, user_id: str) -> None:
    require_member(arch, user_id)
    if not is_admin(arch, user_id):
        raise Forbidden(ADMIN_REQUIRED)


def load_member_arch(db, arch_id: str, user_id: str) -> ArchRecord:
    """Fetch an active arch the user belongs to, or raise NotFound / Forbidden."""
    arch = db.get_arch(arch_id)
    if arch is None:
        raise NotFound("Arch not found")
    require_member(arch, user_id)
    return arch


def load_admin_arch(db, arch_id: str, user_id: str) -> ArchRecord:
    arch = load_member_arch(db, arch_id, user_id)
    require_admin(arch, user_id)
    return arch
