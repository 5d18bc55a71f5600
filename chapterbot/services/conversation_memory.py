"""Short-term chat history that feeds the AI agent's context.

Rows are capped per (tenant, user) and expire a fixed time after creation.
Expired rows are swept before every read; reads are oldest-first.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from chapterbot.config import settings
from chapterbot.database import to_uuid
from chapterbot.logging_config import get_logger
from chapterbot.models import AIConversation

logger = get_logger("conversation_memory")

ROLES = ("user", "assistant")


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _scope(query, tenant_id, user_id: str):
    return query.filter(
        AIConversation.tenant_id == to_uuid(tenant_id),
        AIConversation.line_user_id == user_id,
    )


def sweep_expired(db: Session, now: Optional[datetime] = None) -> int:
    deleted = (
        db.query(AIConversation)
        .filter(AIConversation.expires_at <= _now(now))
        .delete(synchronize_session=False)
    )
    if deleted:
        db.commit()
        logger.debug(f"Swept {deleted} expired conversation rows")
    return deleted


def trim_history(db: Session, tenant_id, user_id: str, keep: Optional[int] = None) -> int:
    """Delete everything but the newest ``keep`` rows for the user."""
    keep = settings.memory_max_messages if keep is None else keep
    stale_ids = [
        row.id
        for row in _scope(db.query(AIConversation.id), tenant_id, user_id)
        .order_by(AIConversation.created_at.desc(), AIConversation.id.desc())
        .offset(keep)
        .all()
    ]
    if not stale_ids:
        return 0
    deleted = db.query(AIConversation).filter(AIConversation.id.in_(stale_ids)).delete(synchronize_session=False)
    db.commit()
    return deleted


def append_message(
    db: Session,
    tenant_id,
    user_id: str,
    role: str,
    content: str,
    now: Optional[datetime] = None,
) -> AIConversation:
    if role not in ROLES:
        raise ValueError(f"Unsupported conversation role: {role}")

    created_at = _now(now)
    row = AIConversation(
        tenant_id=to_uuid(tenant_id),
        line_user_id=user_id,
        role=role,
        content=content,
        created_at=created_at,
        expires_at=created_at + timedelta(minutes=settings.memory_ttl_minutes),
    )
    db.add(row)
    db.commit()
    trim_history(db, tenant_id, user_id)
    return row


def get_history(db: Session, tenant_id, user_id: str, now: Optional[datetime] = None) -> List[dict]:
    """Surviving messages for the user as chat messages, oldest first."""
    now = _now(now)
    sweep_expired(db, now)
    rows = (
        _scope(db.query(AIConversation), tenant_id, user_id)
        .filter(AIConversation.expires_at > now)
        .order_by(AIConversation.created_at.desc(), AIConversation.id.desc())
        .limit(settings.memory_max_messages)
        .all()
    )
    return [{"role": row.role, "content": row.content} for row in reversed(rows)]


def refresh_expiry(db: Session, tenant_id, user_id: str, now: Optional[datetime] = None) -> int:
    expires_at = _now(now) + timedelta(minutes=settings.memory_ttl_minutes)
    updated = _scope(db.query(AIConversation), tenant_id, user_id).update(
        {AIConversation.expires_at: expires_at}, synchronize_session=False
    )
    db.commit()
    return updated


def clear_conversation(db: Session, tenant_id, user_id: str) -> int:
    deleted = _scope(db.query(AIConversation), tenant_id, user_id).delete(synchronize_session=False)
    db.commit()
    logger.info(
        "Conversation memory cleared",
        extra={"context": {"tenant_id": str(tenant_id), "user_id": user_id, "deleted": deleted}},
    )
    return deleted


def build_messages(system_prompt: str, history: List[dict], current_message: str) -> List[dict]:
    return [{"role": "system", "content": system_prompt}, *history, {"role": "user", "content": current_message}]
