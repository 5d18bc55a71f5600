from datetime import date
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from chapterbot.database import to_uuid
from chapterbot.models import ChapterGoal, Meeting, Participant

MAX_RESULTS = 5


def _like(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _members_query(db: Session, tenant_id):
    return db.query(Participant).filter(
        Participant.tenant_id == to_uuid(tenant_id),
        Participant.status == "member",
    )


def search_business_cards(db: Session, tenant_id, query: str, limit: int = MAX_RESULTS) -> List[Participant]:
    pattern = _like(query.strip())
    return (
        _members_query(db, tenant_id)
        .filter(
            or_(
                Participant.full_name_th.ilike(pattern, escape="\\"),
                Participant.nickname_th.ilike(pattern, escape="\\"),
                Participant.company.ilike(pattern, escape="\\"),
            )
        )
        .order_by(Participant.nickname_th)
        .limit(limit)
        .all()
    )


def search_members(db: Session, tenant_id, query: str, limit: int = MAX_RESULTS) -> List[Participant]:
    pattern = _like(query.strip())
    return (
        _members_query(db, tenant_id)
        .filter(
            or_(
                Participant.full_name_th.ilike(pattern, escape="\\"),
                Participant.nickname_th.ilike(pattern, escape="\\"),
            )
        )
        .order_by(Participant.nickname_th)
        .limit(limit)
        .all()
    )


def search_by_category(db: Session, tenant_id, query: str, limit: int = MAX_RESULTS) -> List[Participant]:
    return (
        _members_query(db, tenant_id)
        .filter(Participant.business_category.ilike(_like(query.strip()), escape="\\"))
        .order_by(Participant.business_category, Participant.nickname_th)
        .limit(limit)
        .all()
    )


def find_linked_participant(db: Session, tenant_id, line_user_id: Optional[str]) -> Optional[Participant]:
    if not line_user_id:
        return None
    return (
        db.query(Participant)
        .filter(Participant.tenant_id == to_uuid(tenant_id), Participant.line_user_id == line_user_id)
        .first()
    )


def meeting_on(db: Session, tenant_id, day: date) -> Optional[Meeting]:
    return (
        db.query(Meeting)
        .filter(Meeting.tenant_id == to_uuid(tenant_id), Meeting.meeting_date == day)
        .first()
    )


def next_meeting(db: Session, tenant_id, from_day: date) -> Optional[Meeting]:
    return (
        db.query(Meeting)
        .filter(Meeting.tenant_id == to_uuid(tenant_id), Meeting.meeting_date >= from_day)
        .order_by(Meeting.meeting_date.asc())
        .first()
    )


def get_meeting(db: Session, tenant_id, meeting_id) -> Optional[Meeting]:
    return (
        db.query(Meeting)
        .filter(Meeting.tenant_id == to_uuid(tenant_id), Meeting.meeting_id == to_uuid(meeting_id))
        .first()
    )


def active_goals(db: Session, tenant_id) -> List[ChapterGoal]:
    return (
        db.query(ChapterGoal)
        .filter(ChapterGoal.tenant_id == to_uuid(tenant_id), ChapterGoal.status == "active")
        .order_by(ChapterGoal.end_date.asc())
        .all()
    )


def format_card(participant: Participant) -> str:
    lines = [f"👤 {participant.full_name_th or participant.display_name}"]
    if participant.nickname_th:
        lines[0] += f" ({participant.nickname_th})"
    if participant.company:
        lines.append(f"🏢 {participant.company}")
    if participant.business_category:
        lines.append(f"🏷️ {participant.business_category}")
    if participant.phone:
        lines.append(f"📞 {participant.phone}")
    if participant.email:
        lines.append(f"✉️ {participant.email}")
    return "\n".join(lines)


def format_goal(goal: ChapterGoal) -> str:
    target = float(goal.target_value or 0)
    current = float(goal.current_value or 0)
    percent = round(current * 100 / target) if target else 0
    line = f"🎯 {goal.name}: {current:,.0f}/{target:,.0f} ({percent}%)"
    if goal.end_date:
        line += f" ภายใน {goal.end_date.isoformat()}"
    return line
