"""Continuation handlers for multi-step flows.

A handler returns True when it consumed the message. Validation failures keep
the state (refreshing its expiry) so the user can retry; success and explicit
cancellation clear it.
"""

from datetime import datetime, timezone
from typing import Callable, Dict

from chapterbot.database import to_uuid
from chapterbot.logging_config import get_logger
from chapterbot.models import MeetingAbsence
from chapterbot.services import directory_service
from chapterbot.services.conversation_state_service import ConversationState, FlowStep, clear_state, set_state
from chapterbot.services.event_context import EventContext
from chapterbot.services.phone_linking_service import activation_link, link_phone, status_label

logger = get_logger("flows")

CANCEL_WORDS = {"ยกเลิก", "cancel", "ออก", "exit"}
MSG_CANCELLED = "ยกเลิกแล้วครับ"

FlowHandler = Callable[[EventContext, ConversationState, str], bool]


def _keep(ctx: EventContext, state: ConversationState) -> None:
    set_state(ctx.tenant_id, ctx.user_id, state.step, state.action, state.payload)


def continue_phone_linking(ctx: EventContext, state: ConversationState, text: str) -> bool:
    if text.lower() in CANCEL_WORDS:
        clear_state(ctx.tenant_id, ctx.user_id)
        ctx.reply(MSG_CANCELLED)
        return True

    result = link_phone(ctx.db, ctx.tenant_id, ctx.user_id, text)
    if not result.ok:
        if result.error_code == "invalid_phone":
            _keep(ctx, state)
            ctx.reply("⚠️ เบอร์โทรศัพท์ไม่ถูกต้อง\n\nกรุณาส่งเบอร์โทรศัพท์ใหม่อีกครั้ง")
        elif result.error_code == "not_found":
            _keep(ctx, state)
            ctx.reply(
                "❌ ไม่พบข้อมูลเบอร์โทรนี้ในระบบ\n\nกรุณาตรวจสอบเบอร์และลองใหม่อีกครั้ง หรือติดต่อผู้ดูแลระบบ"
            )
        elif result.error_code == "linked_elsewhere":
            clear_state(ctx.tenant_id, ctx.user_id)
            ctx.reply("⚠️ เบอร์โทรนี้เชื่อมโยงกับ LINE account อื่นอยู่แล้ว\n\nกรุณาติดต่อผู้ดูแลระบบ")
        else:
            _keep(ctx, state)
            ctx.reply("⚠️ ไม่สามารถเชื่อมโยงได้ กรุณาลองใหม่อีกครั้ง")
        return True

    clear_state(ctx.tenant_id, ctx.user_id)
    outcome = result.value
    participant = outcome.participant
    name = participant.full_name_th or participant.display_name
    if not outcome.newly_linked:
        ctx.reply(f"✅ บัญชี LINE ของคุณเชื่อมโยงแล้ว\n\nชื่อ: {name}\nสถานะ: {status_label(participant.status)}")
    elif outcome.needs_activation:
        ctx.reply(f"✅ เชื่อมโยงสำเร็จ!\n\nชื่อ: {name}\n\nกำลังส่งลิงก์ลงทะเบียนให้คุณ...")
        ctx.client.push_message(ctx.user_id, {"type": "text", "text": f"🔑 ลิงก์ลงทะเบียน\n\n{activation_link(participant)}"})
    else:
        ctx.reply(
            f"✅ เชื่อมโยงสำเร็จ!\n\nชื่อ: {name}\nสถานะ: {status_label(participant.status)}\n\n"
            "ตอนนี้คุณสามารถใช้งานผ่าน LINE ได้แล้ว 🎉"
        )
    return True


def continue_leave_reason(ctx: EventContext, state: ConversationState, text: str) -> bool:
    if text.lower() in CANCEL_WORDS:
        clear_state(ctx.tenant_id, ctx.user_id)
        ctx.reply(MSG_CANCELLED)
        return True

    meeting_id = state.payload.get("meeting_id")
    participant = directory_service.find_linked_participant(ctx.db, ctx.tenant_id, ctx.user_id)
    meeting = directory_service.get_meeting(ctx.db, ctx.tenant_id, meeting_id) if meeting_id else None
    if not participant or not meeting:
        clear_state(ctx.tenant_id, ctx.user_id)
        ctx.reply("ไม่พบข้อมูลการประชุม กรุณาลองใหม่อีกครั้ง")
        return True

    try:
        ctx.db.add(
            MeetingAbsence(
                tenant_id=to_uuid(ctx.tenant_id),
                meeting_id=meeting.meeting_id,
                participant_id=participant.participant_id,
                reason=text[:500],
                created_at=datetime.now(timezone.utc),
            )
        )
        ctx.db.commit()
    except Exception as e:
        ctx.db.rollback()
        logger.error(f"Failed to record leave: {e}", extra={"context": {"meeting_id": str(meeting_id)}})
        _keep(ctx, state)
        ctx.reply("⚠️ เกิดข้อผิดพลาด กรุณาลองใหม่อีกครั้ง")
        return True

    clear_state(ctx.tenant_id, ctx.user_id)
    ctx.reply(f"✅ บันทึกการลาประชุมวันที่ {meeting.meeting_date.isoformat()} เรียบร้อยแล้ว\n\nเหตุผล: {text}")
    return True


FLOW_HANDLERS: Dict[FlowStep, FlowHandler] = {
    FlowStep.AWAITING_PHONE: continue_phone_linking,
    FlowStep.AWAITING_LEAVE_REASON: continue_leave_reason,
}
