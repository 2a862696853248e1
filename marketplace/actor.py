from dataclasses import dataclass
from typing import Optional

from marketplace.errors import AuthorizationError
from marketplace.models import UserRole


@dataclass(frozen=True)
class Actor:
    """Resolved caller identity passed explicitly into every core operation.

    ``seller_id`` is the caller's seller profile id when the role is seller.
    ``id`` is None for scheduled jobs and provider callbacks.
    """

    id: Optional[int]
    role: UserRole
    seller_id: Optional[int] = None

    @classmethod
    def from_user(cls, user) -> 'Actor':
        profile = getattr(user, 'seller_profile', None)
        return cls(
            id=user.id,
            role=user.role,
            seller_id=profile.id if profile else None,
        )

    @classmethod
    def system(cls) -> 'Actor':
        return cls(id=None, role=UserRole.ADMIN)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_seller(self) -> bool:
        return self.role == UserRole.SELLER

    @property
    def role_name(self) -> str:
        if self.id is None:
            return 'SYSTEM'
        return self.role.value.upper()

    def require(self, *roles: UserRole) -> None:
        if self.role not in roles:
            raise AuthorizationError(
                f'Role {self.role.value} may not perform this action')
