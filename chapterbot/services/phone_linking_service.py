import re
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from chapterbot.config import settings
from chapterbot.database import to_uuid
from chapterbot.logging_config import get_logger
from chapterbot.models import Participant
from chapterbot.services.result import Result

logger = get_logger("phone_linking")

MIN_PHONE_DIGITS = 9
MAX_PHONE_DIGITS = 15

STATUS_LABELS = {
    "prospect": "🔵 Prospect",
    "visitor": "🟡 Visitor",
    "member": "🟢 Member",
    "alumni": "⚫ Alumni",
    "declined": "🔴 Declined",
}


@dataclass
class LinkOutcome:
    participant: Participant
    newly_linked: bool
    needs_activation: bool


def normalize_phone(text: Optional[str]) -> str:
    return re.sub(r"\D", "", text or "")


def status_label(status: Optional[str]) -> str:
    return STATUS_LABELS.get(status or "", status or "-")


def activation_link(participant: Participant) -> str:
    return (
        f"{settings.app_base_url.rstrip('/')}/activate"
        f"?participant_id={participant.participant_id}&tenant_id={participant.tenant_id}"
    )


def link_phone(db: Session, tenant_id, line_user_id: str, phone_text: str) -> Result[LinkOutcome]:
    """Attach the sender's LINE id to the participant registered with this phone.

    Failure codes: ``invalid_phone`` and ``not_found`` (caller keeps the flow
    open for a retry), ``linked_elsewhere`` (flow ends), ``db_error``.
    """
    phone = normalize_phone(phone_text)
    if not MIN_PHONE_DIGITS <= len(phone) <= MAX_PHONE_DIGITS:
        return Result.failure(f"Invalid phone length {len(phone)}", "invalid_phone")

    participant = (
        db.query(Participant)
        .filter(Participant.tenant_id == to_uuid(tenant_id), Participant.phone == phone)
        .first()
    )
    if not participant:
        return Result.failure("No participant with this phone", "not_found")

    if participant.line_user_id:
        if participant.line_user_id == line_user_id:
            return Result.success(LinkOutcome(participant, newly_linked=False, needs_activation=False))
        logger.warning(
            "Phone already linked to another LINE account",
            extra={
                "context": {
                    "tenant_id": str(tenant_id),
                    "participant_id": str(participant.participant_id),
                    "line_user_id": line_user_id,
                }
            },
        )
        return Result.failure("Phone linked to another LINE user", "linked_elsewhere")

    try:
        participant.line_user_id = line_user_id
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to link LINE account: {e}")
        return Result.failure(str(e), "db_error")

    logger.info(
        "LINE account linked",
        extra={"context": {"tenant_id": str(tenant_id), "participant_id": str(participant.participant_id)}},
    )
    return Result.success(LinkOutcome(participant, newly_linked=True, needs_activation=participant.user_id is None))
