from dataclasses import dataclass
from enum import Enum

from services.errors import ForbiddenError


class Role(str, Enum):
    MEMBER = "member"
    STAFF = "staff"
    ADMIN = "admin"


# highest first; a user holding several roles acts with the strongest one
ROLE_PRECEDENCE = (Role.ADMIN, Role.STAFF, Role.MEMBER)


@dataclass(frozen=True)
class Actor:
    id: int
    role: Role

    @property
    def is_staff(self) -> bool:
        return self.role in (Role.STAFF, Role.ADMIN)


def strongest_role(role_names) -> Role:
    """Pick the actor role from a collection of role names (any case)."""
    names = {str(n).lower() for n in role_names or []}
    for role in ROLE_PRECEDENCE:
        if role.value in names:
            return role
    return Role.MEMBER


def require_member(actor: Actor) -> None:
    if actor.role != Role.MEMBER:
        raise ForbiddenError("Only members can create bookings")


def require_staff(actor: Actor) -> None:
    if not actor.is_staff:
        raise ForbiddenError("Staff or admin role required")


def require_owner_or_staff(actor: Actor, booking) -> None:
    if actor.is_staff or actor.id == booking.owner_id:
        return
    raise ForbiddenError("Not authorized to manage this booking")
