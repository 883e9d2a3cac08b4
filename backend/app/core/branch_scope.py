"""
Branch scope of the calling user.

Resolved by the authentication layer; the engine only checks it.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import true

from app.core.exceptions import ForbiddenError, UnauthorizedError


@dataclass(frozen=True)
class BranchScope:
    is_admin: bool
    branch_ids: List[int] = field(default_factory=list)
    primary_branch_id: int = 0

    def can_access(self, branch_id: int) -> bool:
        return self.is_admin or branch_id in self.branch_ids

    def assert_access(self, branch_id: int) -> None:
        if not self.can_access(branch_id):
            raise ForbiddenError("You can only access your assigned branch")

    def pick_for_write(self, requested_branch_id: Optional[int] = None) -> int:
        """Branch a new row is written to: the requested one if allowed, else primary."""
        if requested_branch_id:
            self.assert_access(requested_branch_id)
            return requested_branch_id
        if not self.primary_branch_id:
            raise ForbiddenError("No branch is assigned to this user")
        return self.primary_branch_id

    def visible_branch_ids(self, requested_branch_id: Optional[int] = None) -> Optional[List[int]]:
        """
        Branches a read may cover.

        Returns ``None`` for an unrestricted admin read.
        """
        if requested_branch_id:
            self.assert_access(requested_branch_id)
            return [requested_branch_id]
        if self.is_admin:
            return None
        return list(self.branch_ids)


def require_actor(user_id: Optional[int]) -> int:
    """Writes must be attributable to a user."""
    if not user_id:
        raise UnauthorizedError("User required")
    return user_id


def scope_filter(column, branch_ids: Optional[List[int]]):
    """SQL filter clause restricting ``column`` to ``branch_ids`` (None = all)."""
    if branch_ids is None:
        return true()
    return column.in_(branch_ids)
