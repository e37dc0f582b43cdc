"""Role-Based Access Control (RBAC) utilities.

``resolve_actor`` is the single place a request is turned into an acting
user; every route depends on it (directly or through ``require_roles``)
instead of decoding tokens itself.
"""

from typing import Annotated, Optional

from fastapi import Depends, Request

from rivercafe.core.errors import Forbidden, NotAuthenticated
from rivercafe.core.security import COOKIE_ACCESS_NAME, decode_access_token
from rivercafe.db.session import DbSession
from rivercafe.models.user import User, UserRole


class Actor:
    """The authenticated user behind a request.

    Attributes:
        id: The user's database ID.
        role: The user's current role, read from the database.
        name: Display name.
        email: Email address, when the account has one.
        reg_number: Registration number, when the account has one.
    """

    def __init__(self, id: int, role: UserRole, name: str,
                 email: Optional[str] = None, reg_number: Optional[str] = None):
        self.id = id
        self.role = role
        self.name = name
        self.email = email
        self.reg_number = reg_number

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(
            id=user.id, role=user.role, name=user.name,
            email=user.email, reg_number=user.reg_number,
        )


def _request_token(request: Request) -> Optional[str]:
    """Bearer header first, then the access_token cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        if token:
            return token
    return request.cookies.get(COOKIE_ACCESS_NAME) or None


def resolve_actor(request: Request, db: DbSession) -> Optional[Actor]:
    """Resolve the acting user from the request, or None when anonymous.

    The role comes from the database rather than the token so that role
    changes and deactivation take effect immediately.
    """
    token = _request_token(request)
    if token is None:
        return None

    payload = decode_access_token(token)
    if payload is None:
        return None

    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        return None

    user = db.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return Actor.from_user(user)


OptionalActor = Annotated[Optional[Actor], Depends(resolve_actor)]


def get_current_actor(actor: OptionalActor) -> Actor:
    if actor is None:
        raise NotAuthenticated()
    return actor


CurrentActor = Annotated[Actor, Depends(get_current_actor)]


def require_roles(*roles: UserRole):
    """Dependency that admits only the listed roles."""
    allowed = frozenset(roles)

    def role_checker(actor: CurrentActor) -> Actor:
        if actor.role not in allowed:
            raise Forbidden(
                "Requires role " + " or ".join(sorted(r.value for r in allowed))
            )
        return actor

    return role_checker


# Common role dependencies
RequireAdmin = Annotated[Actor, Depends(require_roles(UserRole.ADMIN))]
RequireAccounting = Annotated[Actor, Depends(require_roles(UserRole.ADMIN, UserRole.IT))]
RequireCanteen = Annotated[
    Actor, Depends(require_roles(UserRole.CANTEEN, UserRole.ADMIN, UserRole.IT))
]
RequireIT = Annotated[Actor, Depends(require_roles(UserRole.IT, UserRole.ADMIN))]
RequireStudent = Annotated[Actor, Depends(require_roles(UserRole.STUDENT))]
