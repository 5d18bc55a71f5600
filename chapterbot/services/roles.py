from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from chapterbot.database import to_uuid
from chapterbot.logging_config import get_logger
from chapterbot.models import Participant

logger = get_logger("roles")

ADMIN_ROLES = ("chapter_admin", "super_admin")


class Role(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"
    VISITOR = "visitor"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RoleContext:
    role: Role
    participant: Optional[Participant] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def display_name(self) -> Optional[str]:
        return self.participant.display_name if self.participant else None


def role_from_participant(participant: Optional[Participant], tenant_id) -> Role:
    if participant is None:
        return Role.UNKNOWN
    tenant_uuid = to_uuid(tenant_id)
    for user_role in participant.roles or []:
        if user_role.role == "super_admin":
            return Role.ADMIN
        if user_role.role == "chapter_admin" and user_role.tenant_id in (None, tenant_uuid):
            return Role.ADMIN
    if participant.status == "member":
        return Role.MEMBER
    if participant.status == "visitor":
        return Role.VISITOR
    return Role.UNKNOWN


def resolve_role(db: Session, tenant_id, line_user_id: str) -> RoleContext:
    """Resolve the caller's role from one participant+roles lookup.

    The participant row and its role rows are loaded together so the
    membership status and admin grant always come from the same read.
    """
    participant = (
        db.query(Participant)
        .options(joinedload(Participant.roles))
        .filter(Participant.tenant_id == to_uuid(tenant_id), Participant.line_user_id == line_user_id)
        .first()
    )
    role = role_from_participant(participant, tenant_id)
    logger.debug(f"Resolved role {role.value} for {line_user_id}")
    return RoleContext(role=role, participant=participant)
