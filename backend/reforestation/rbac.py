from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException
from sqlalchemy.orm import Session

from . import models

# purpose: centralize project role lookups for intervention mutations
# status: active


_PROJECT_ROLE_LEVELS: dict[str, int] = {
    "observer": 10,
    "researcher": 15,
    "contributor": 20,
    "manager": 50,
    "admin": 60,
    "owner": 70,
}

TRANSFER_ADMIN_ROLES = ("admin", "owner")
MIN_OWNER_ROLE = "contributor"


def role_level(role: str | None) -> int:
    """Return the numeric rank of a project role, 0 for no membership."""

    if not role:
        return 0
    return _PROJECT_ROLE_LEVELS.get(role.lower(), 0)


def role_at_least(role: str | None, minimum: str) -> bool:
    return role_level(role) >= _PROJECT_ROLE_LEVELS[minimum]


@dataclass
class ProjectMembership:
    """Read-only view over project membership rows."""

    db: Session

    def get_role(self, project_id: int, user_id: int) -> str | None:
        membership = (
            self.db.query(models.ProjectMember)
            .filter(
                models.ProjectMember.project_id == project_id,
                models.ProjectMember.user_id == user_id,
            )
            .first()
        )
        return membership.role if membership else None


def ensure_project_member(
    db: Session,
    user: models.User,
    project_id: int,
    roles: list[str] | tuple[str, ...] = ("owner", "admin", "manager", "contributor"),
) -> str:
    role = ProjectMembership(db).get_role(project_id, user.id)
    if not role or role not in roles:
        raise HTTPException(status_code=403, detail="Not authorized")
    return role
