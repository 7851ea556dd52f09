from dataclasses import dataclass
from typing import Optional, Union

from errors import AuthenticationError, AuthorizationError, NotFoundError
from models import UserRole


@dataclass(frozen=True)
class Principal:
    id: int
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin


class _NotVisible:
    def __repr__(self) -> str:
        return "NOT_VISIBLE"


NOT_VISIBLE = _NotVisible()

OwnerScope = Union[Optional[int], _NotVisible]


class AccessPolicy:
    """Single place deciding who may read or write whose data."""

    def require_authenticated(self, principal: Optional[Principal]) -> Principal:
        if principal is None:
            raise AuthenticationError()
        return principal

    def can_read(self, principal: Principal, owner_id: int) -> bool:
        return principal.is_admin or principal.id == owner_id

    def can_write(self, principal: Principal, owner_id: int) -> bool:
        return principal.is_admin or principal.id == owner_id

    def require_admin(self, principal: Principal) -> None:
        if not principal.is_admin:
            raise AuthorizationError("Forbidden - Admin access required")

    def ensure_visible(self, principal: Principal, owner_id: int, what: str) -> None:
        # Cross-user misses look exactly like missing rows.
        if not self.can_read(principal, owner_id):
            raise NotFoundError(f"{what} not found")

    def ensure_writable(self, principal: Principal, owner_id: int, what: str) -> None:
        if not self.can_write(principal, owner_id):
            raise NotFoundError(f"{what} not found")

    def scope_owner(
        self, principal: Principal, requested_user_id: Optional[int] = None
    ) -> OwnerScope:
        """Owner filter for list and summary queries.

        ``None`` means every user and is only returned to admins.
        """
        if principal.is_admin:
            return requested_user_id
        if requested_user_id is None or requested_user_id == principal.id:
            return principal.id
        return NOT_VISIBLE
