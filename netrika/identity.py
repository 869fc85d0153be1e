from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from netrika.errors import AuthorizationError

ROLE_USER = "User"
ROLE_ADMIN = "Admin"
ROLE_SUPER_ADMIN = "Super Admin"
MODERATOR_ROLES = frozenset({ROLE_ADMIN, ROLE_SUPER_ADMIN})

_ROLE_ALIASES = {
    "user": ROLE_USER,
    "admin": ROLE_ADMIN,
    "super admin": ROLE_SUPER_ADMIN,
    "super_admin": ROLE_SUPER_ADMIN,
    "superadmin": ROLE_SUPER_ADMIN,
}


def normalize_role(value: object) -> str:
    normalized = " ".join(str(value or "").strip().lower().split())
    return _ROLE_ALIASES.get(normalized, ROLE_USER)


@dataclass(frozen=True)
class Actor:
    """Caller identity as vouched for by the identity provider."""

    id: str
    role: str = ROLE_USER

    @property
    def is_authenticated(self) -> bool:
        return bool((self.id or "").strip())

    @property
    def is_moderator(self) -> bool:
        return self.is_authenticated and self.role in MODERATOR_ROLES

    @classmethod
    def from_claims(cls, claims: Mapping[str, object] | None) -> "Actor | None":
        if not claims:
            return None
        user_id = str(claims.get("id") or claims.get("sub") or "").strip()
        if not user_id:
            return None
        return cls(id=user_id, role=normalize_role(claims.get("role")))


def require_authenticated(actor: Actor | None) -> Actor:
    if actor is None or not actor.is_authenticated:
        raise AuthorizationError("User not authenticated.")
    return actor


def require_moderator(actor: Actor | None) -> Actor:
    resolved = require_authenticated(actor)
    if not resolved.is_moderator:
        raise AuthorizationError("Admin access is required.")
    return resolved


def lookup_actor(session: Session, user_id: str | None) -> Optional[Actor]:
    """
    Resolve the stored role for a user id.
    Unknown ids resolve to a plain User so a missing profile row never grants moderation.
    """
    normalized_id = (user_id or "").strip()
    if not normalized_id:
        return None
    role = session.execute(
        text("SELECT role FROM users WHERE id = :user_id"),
        {"user_id": normalized_id},
    ).scalar_one_or_none()
    return Actor(id=normalized_id, role=normalize_role(role))


def ensure_user(
    session: Session,
    *,
    user_id: str,
    email: Optional[str] = None,
    full_name: Optional[str] = None,
) -> None:
    """
    Ensure a profile row exists for the identity provider's user id.
    Existing roles are never changed here; role grants happen through administration.
    """
    normalized_email = (email or "").strip().lower() or None
    name = (full_name or "").strip() or None
    session.execute(
        text(
            """
            INSERT INTO users (id, email, full_name)
            VALUES (:id, :email, :full_name)
            ON CONFLICT (id) DO UPDATE
            SET email = COALESCE(EXCLUDED.email, users.email),
                full_name = COALESCE(EXCLUDED.full_name, users.full_name)
            """
        ),
        {"id": user_id.strip(), "email": normalized_email, "full_name": name},
    )
