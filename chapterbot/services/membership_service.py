"""Membership applications and their admin review.

Approve and reject may be delivered more than once (platform retries, double
taps). Each mutation is a conditional update on the pending row, so only one
delivery performs the transition and the others report "already processed".
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from chapterbot.database import to_uuid
from chapterbot.logging_config import get_logger
from chapterbot.models import ChapterJoinRequest, Participant, UserRole
from chapterbot.services.errors import SecurityViolation
from chapterbot.services.result import Result
from chapterbot.services.roles import ADMIN_ROLES, resolve_role

logger = get_logger("membership")


@dataclass
class ApplicationOutcome:
    status: str  # created, already_member, already_pending
    participant: Participant
    request: Optional[ChapterJoinRequest] = None


@dataclass
class ReviewOutcome:
    participant: Participant
    already_processed: bool


def apply_for_membership(
    db: Session,
    tenant_id,
    line_user_id: str,
    participant_id=None,
) -> Result[ApplicationOutcome]:
    tenant_uuid = to_uuid(tenant_id)
    query = db.query(Participant).filter(Participant.tenant_id == tenant_uuid)
    if participant_id:
        participant = query.filter(Participant.participant_id == to_uuid(participant_id)).first()
    else:
        participant = query.filter(Participant.line_user_id == line_user_id).first()

    if not participant:
        return Result.failure("Participant not linked to this LINE account", "not_found")

    if participant.line_user_id != line_user_id:
        raise SecurityViolation(
            "identity_mismatch",
            tenant_id=str(tenant_id),
            participant_id=str(participant.participant_id),
            line_user_id=line_user_id,
        )

    if participant.status == "member":
        return Result.success(ApplicationOutcome("already_member", participant))

    pending = (
        db.query(ChapterJoinRequest)
        .filter(
            ChapterJoinRequest.tenant_id == tenant_uuid,
            ChapterJoinRequest.participant_id == participant.participant_id,
            ChapterJoinRequest.status == "pending",
        )
        .first()
    )
    if pending:
        return Result.success(ApplicationOutcome("already_pending", participant, pending))

    try:
        request = ChapterJoinRequest(
            tenant_id=tenant_uuid,
            participant_id=participant.participant_id,
            status="pending",
            message=f"สมัครผ่าน LINE: {participant.full_name_th or participant.display_name}",
            created_at=datetime.now(timezone.utc),
        )
        db.add(request)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to create join request: {e}", extra={"context": {"tenant_id": str(tenant_id)}})
        return Result.failure(str(e), "db_error")

    logger.info(
        "Membership application created",
        extra={"context": {"tenant_id": str(tenant_id), "participant_id": str(participant.participant_id)}},
    )
    return Result.success(ApplicationOutcome("created", participant, request))


def _load_applicant(db: Session, tenant_id, participant_id) -> Optional[Participant]:
    return (
        db.query(Participant)
        .filter(
            Participant.tenant_id == to_uuid(tenant_id),
            Participant.participant_id == to_uuid(participant_id),
        )
        .first()
    )


def _mark_request(db: Session, tenant_id, participant_id, status: str, reviewer: str) -> int:
    """Move the pending request to ``status``. Returns 0 if someone already did."""
    return (
        db.query(ChapterJoinRequest)
        .filter(
            ChapterJoinRequest.tenant_id == to_uuid(tenant_id),
            ChapterJoinRequest.participant_id == to_uuid(participant_id),
            ChapterJoinRequest.status == "pending",
        )
        .update(
            {
                ChapterJoinRequest.status: status,
                ChapterJoinRequest.reviewed_at: datetime.now(timezone.utc),
                ChapterJoinRequest.reviewed_by: reviewer,
            },
            synchronize_session=False,
        )
    )


def approve_member(db: Session, tenant_id, participant_id, admin_line_user_id: str) -> Result[ReviewOutcome]:
    if not resolve_role(db, tenant_id, admin_line_user_id).is_admin:
        return Result.failure("Reviewer is not a chapter admin", "forbidden")

    participant = _load_applicant(db, tenant_id, participant_id)
    if not participant:
        return Result.failure("Participant not found", "not_found")

    if participant.status == "member":
        return Result.success(ReviewOutcome(participant, already_processed=True))

    try:
        if _mark_request(db, tenant_id, participant_id, "approved", admin_line_user_id) == 0:
            db.rollback()
            return Result.success(ReviewOutcome(participant, already_processed=True))

        participant.status = "member"
        participant.joined_date = date.today()
        has_member_role = any(
            r.role == "member" and r.tenant_id == to_uuid(tenant_id) for r in (participant.roles or [])
        )
        if not has_member_role:
            db.add(UserRole(tenant_id=to_uuid(tenant_id), participant_id=participant.participant_id, role="member"))
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Approve member failed: {e}", extra={"context": {"participant_id": str(participant_id)}})
        return Result.failure(str(e), "db_error")

    logger.info(
        "Member approved",
        extra={
            "context": {
                "tenant_id": str(tenant_id),
                "participant_id": str(participant_id),
                "admin": admin_line_user_id,
            }
        },
    )
    return Result.success(ReviewOutcome(participant, already_processed=False))


def reject_member(db: Session, tenant_id, participant_id, admin_line_user_id: str) -> Result[ReviewOutcome]:
    if not resolve_role(db, tenant_id, admin_line_user_id).is_admin:
        return Result.failure("Reviewer is not a chapter admin", "forbidden")

    participant = _load_applicant(db, tenant_id, participant_id)
    if not participant:
        return Result.failure("Participant not found", "not_found")

    try:
        updated = _mark_request(db, tenant_id, participant_id, "rejected", admin_line_user_id)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Reject member failed: {e}", extra={"context": {"participant_id": str(participant_id)}})
        return Result.failure(str(e), "db_error")

    if updated == 0:
        return Result.success(ReviewOutcome(participant, already_processed=True))

    logger.info(
        "Member application rejected",
        extra={"context": {"tenant_id": str(tenant_id), "participant_id": str(participant_id)}},
    )
    return Result.success(ReviewOutcome(participant, already_processed=False))


def get_admin_line_ids(db: Session, tenant_id, exclude: Optional[str] = None) -> List[str]:
    rows = (
        db.query(Participant.line_user_id)
        .join(UserRole, UserRole.participant_id == Participant.participant_id)
        .filter(
            Participant.tenant_id == to_uuid(tenant_id),
            Participant.line_user_id.isnot(None),
            UserRole.role.in_(ADMIN_ROLES),
        )
        .distinct()
        .all()
    )
    return [row.line_user_id for row in rows if row.line_user_id and row.line_user_id != exclude]
