import secrets
from datetime import datetime, timezone
from typing import Callable, Dict

from chapterbot.config import settings
from chapterbot.database import to_uuid
from chapterbot.models import SubstituteRequest
from chapterbot.services import directory_service
from chapterbot.services.command_handlers import MSG_GENERIC_ERROR, MSG_GROUP_MENU
from chapterbot.services.conversation_state_service import FlowAction, FlowStep, clear_state, set_state
from chapterbot.services.event_context import EventContext
from chapterbot.services.line_client import text_message
from chapterbot.services.membership_service import approve_member, get_admin_line_ids, reject_member
from chapterbot.services.postback_service import Postback, PostbackAction

MSG_FORBIDDEN = "คุณไม่มีสิทธิ์ดำเนินการนี้"
MSG_ALREADY_PROCESSED = "คำขอนี้ได้รับการดำเนินการแล้ว"

PostbackHandler = Callable[[EventContext, Postback], None]


def _review_failure_message(error_code: str) -> str:
    if error_code == "forbidden":
        return MSG_FORBIDDEN
    if error_code == "not_found":
        return "ไม่พบข้อมูลผู้สมัคร"
    return MSG_GENERIC_ERROR


def handle_approve_member(ctx: EventContext, postback: Postback) -> None:
    participant_id = postback.get("participant_id")
    if not participant_id:
        ctx.reply(MSG_GENERIC_ERROR)
        return

    result = approve_member(ctx.db, ctx.tenant_id, participant_id, ctx.user_id or "")
    if not result.ok:
        ctx.reply(_review_failure_message(result.error_code))
        return

    outcome = result.value
    name = outcome.participant.full_name_th or outcome.participant.display_name
    if outcome.already_processed:
        if outcome.participant.status == "member":
            ctx.reply(f"{name} เป็นสมาชิกอยู่แล้ว")
        else:
            ctx.reply(MSG_ALREADY_PROCESSED)
        return

    ctx.reply(f"อนุมัติแล้ว!\n\n{name} เป็นสมาชิกเรียบร้อย")
    for admin_id in get_admin_line_ids(ctx.db, ctx.tenant_id, exclude=ctx.user_id):
        ctx.client.push_message(admin_id, text_message(f"✅ {name} ได้รับการอนุมัติเป็นสมาชิกแล้ว"))
    if outcome.participant.line_user_id:
        ctx.client.push_message(
            outcome.participant.line_user_id,
            text_message("🎉 ยินดีด้วย! คำขอสมัครสมาชิกของคุณได้รับการอนุมัติแล้ว"),
        )


def handle_reject_member(ctx: EventContext, postback: Postback) -> None:
    participant_id = postback.get("participant_id")
    if not participant_id:
        ctx.reply(MSG_GENERIC_ERROR)
        return

    result = reject_member(ctx.db, ctx.tenant_id, participant_id, ctx.user_id or "")
    if not result.ok:
        ctx.reply(_review_failure_message(result.error_code))
        return

    outcome = result.value
    if outcome.already_processed:
        ctx.reply(MSG_ALREADY_PROCESSED)
        return

    name = outcome.participant.full_name_th or outcome.participant.display_name
    ctx.reply(f"ปฏิเสธคำขอของ {name} เรียบร้อยแล้ว")
    if outcome.participant.line_user_id:
        ctx.client.push_message(
            outcome.participant.line_user_id,
            text_message("ขออภัย คำขอสมัครสมาชิกของคุณยังไม่ได้รับการอนุมัติ กรุณาติดต่อผู้ดูแลระบบ"),
        )


def handle_confirm_substitute(ctx: EventContext, postback: Postback) -> None:
    participant = directory_service.find_linked_participant(ctx.db, ctx.tenant_id, ctx.user_id)
    meeting_id = postback.get("meeting_id")
    meeting = directory_service.get_meeting(ctx.db, ctx.tenant_id, meeting_id) if meeting_id else None
    if not participant or participant.status != "member" or not meeting:
        ctx.reply(MSG_FORBIDDEN)
        return

    request = (
        ctx.db.query(SubstituteRequest)
        .filter(
            SubstituteRequest.meeting_id == meeting.meeting_id,
            SubstituteRequest.participant_id == participant.participant_id,
            SubstituteRequest.status == "pending",
        )
        .first()
    )
    if request is None:
        request = SubstituteRequest(
            tenant_id=to_uuid(ctx.tenant_id),
            meeting_id=meeting.meeting_id,
            participant_id=participant.participant_id,
            token=secrets.token_urlsafe(16),
            status="pending",
            created_at=datetime.now(timezone.utc),
        )
        try:
            ctx.db.add(request)
            ctx.db.commit()
        except Exception:
            ctx.db.rollback()
            raise

    link = f"{settings.app_base_url.rstrip('/')}/substitute/{request.token}"
    ctx.reply(
        f"📝 คำขอส่งตัวแทนประชุมวันที่ {meeting.meeting_date.isoformat()}\n\n"
        f"ส่งลิงก์นี้ให้ตัวแทนของคุณเพื่อลงทะเบียน:\n{link}"
    )


def handle_rsvp_leave(ctx: EventContext, postback: Postback) -> None:
    meeting_id = postback.get("meeting_id")
    meeting = directory_service.get_meeting(ctx.db, ctx.tenant_id, meeting_id) if meeting_id else None
    if not meeting or not ctx.user_id:
        ctx.reply("ไม่พบข้อมูลการประชุม")
        return
    set_state(
        ctx.tenant_id,
        ctx.user_id,
        FlowStep.AWAITING_LEAVE_REASON,
        FlowAction.RSVP_LEAVE,
        {"meeting_id": str(meeting.meeting_id)},
    )
    ctx.reply(
        f"📅 แจ้งลาประชุมวันที่ {meeting.meeting_date.isoformat()}\n\n"
        "กรุณาพิมพ์เหตุผลการลา (พิมพ์ \"ยกเลิก\" เพื่อยกเลิก)\n\n⏱️ คำสั่งนี้จะหมดอายุใน 5 นาที"
    )


def handle_cancel_flow(ctx: EventContext, postback: Postback) -> None:
    if ctx.user_id:
        clear_state(ctx.tenant_id, ctx.user_id)
    ctx.reply("ยกเลิกแล้วครับ")


def handle_open_menu(ctx: EventContext, postback: Postback) -> None:
    ctx.reply(MSG_GROUP_MENU)


def handle_apply_cancel(ctx: EventContext, postback: Postback) -> None:
    ctx.reply("ไม่เป็นไร! เมื่อพร้อมสมัครสมาชิก สามารถพิมพ์ 'สมัครสมาชิก' ได้เลย")


POSTBACK_HANDLERS: Dict[PostbackAction, PostbackHandler] = {
    PostbackAction.APPROVE_MEMBER: handle_approve_member,
    PostbackAction.REJECT_MEMBER: handle_reject_member,
    PostbackAction.CONFIRM_SUBSTITUTE: handle_confirm_substitute,
    PostbackAction.RSVP_LEAVE: handle_rsvp_leave,
    PostbackAction.CANCEL_FLOW: handle_cancel_flow,
    PostbackAction.OPEN_MENU: handle_open_menu,
    PostbackAction.APPLY_CANCEL: handle_apply_cancel,
}
