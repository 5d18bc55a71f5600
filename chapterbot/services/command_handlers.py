"""Handlers for routed free-text commands.

Each handler receives the event context, the normalized text and the args
captured by the router. ``COMMAND_HANDLERS`` must cover every ``Command``.
"""

from typing import Callable, Dict

from chapterbot.config import settings
from chapterbot.services import ai_session_service, directory_service
from chapterbot.services.agent import get_ai_backend
from chapterbot.services.agent.prompts import GOODBYE_MESSAGE, GREETING_MESSAGE
from chapterbot.services.agent.tools import today_in_bangkok
from chapterbot.services.command_authorization import authorization_error_message, check_command_authorization
from chapterbot.services.command_router import Command
from chapterbot.services.conversation_state_service import FlowAction, FlowStep, set_state
from chapterbot.services.event_context import EventContext
from chapterbot.services.line_client import buttons_message, confirm_message, postback_action, uri_action
from chapterbot.services.membership_service import apply_for_membership, get_admin_line_ids
from chapterbot.services.phone_linking_service import activation_link
from chapterbot.services.postback_service import PostbackAction, build_postback_data

MSG_NOT_LINKED = "❌ คุณยังไม่ได้เชื่อมโยง LINE\n\nกรุณาพิมพ์ \"ลงทะเบียน\" เพื่อเชื่อมโยงบัญชี LINE ของคุณก่อนนะครับ"
MSG_GENERIC_ERROR = "⚠️ เกิดข้อผิดพลาด กรุณาลองใหม่อีกครั้ง"
MSG_NO_RESULTS = "ไม่พบข้อมูลที่ค้นหา ลองใช้คำค้นอื่นดูนะครับ"
MSG_PHONE_LINK_START = (
    "🔗 เชื่อมโยง LINE Account\n\n"
    "กรุณาส่งเบอร์โทรศัพท์ที่คุณลงทะเบียนไว้\n\n"
    "ตัวอย่าง: 0812345678\n\n"
    "⏱️ คำสั่งนี้จะหมดอายุใน 5 นาที"
)
MSG_GROUP_MENU = (
    "📋 คำสั่งที่ใช้ได้\n"
    "• card <ชื่อ> - ค้นหานามบัตร\n"
    "• ค้นหาสมาชิก <ชื่อ>\n"
    "• ค้นหาประเภทธุรกิจ <ประเภท>\n"
    "• สรุปเป้าหมาย\n"
    "• เช็คอิน\n"
    "• สวัสดี ai - คุยกับผู้ช่วย AI"
)

Handler = Callable[[EventContext, str, dict], None]


def _authorized(ctx: EventContext, command_key: str) -> bool:
    result = check_command_authorization(ctx.db, ctx.tenant_id, command_key, ctx.user_id or "", ctx.is_group)
    if not result.authorized:
        ctx.log.info(f"Command {command_key} denied", extra={"context": {"reason": result.reason}})
        ctx.reply(authorization_error_message(result.reason))
    return result.authorized


def _app_url(path: str, **params) -> str:
    query = "&".join(f"{k}={v}" for k, v in params.items() if v is not None)
    url = f"{settings.app_base_url.rstrip('/')}/{path.lstrip('/')}"
    return f"{url}?{query}" if query else url


def handle_group_menu(ctx: EventContext, text: str, args: dict) -> None:
    ctx.reply(MSG_GROUP_MENU)


def handle_phone_link(ctx: EventContext, text: str, args: dict) -> None:
    if not ctx.user_id or not _authorized(ctx, "link_phone"):
        return
    set_state(ctx.tenant_id, ctx.user_id, FlowStep.AWAITING_PHONE, FlowAction.LINK_LINE)
    ctx.reply(MSG_PHONE_LINK_START)


def handle_resend_activation(ctx: EventContext, text: str, args: dict) -> None:
    participant = directory_service.find_linked_participant(ctx.db, ctx.tenant_id, ctx.user_id)
    if not participant:
        ctx.reply(MSG_NOT_LINKED)
        return
    if participant.user_id:
        ctx.reply("✅ บัญชีของคุณเปิดใช้งานแล้ว ไม่จำเป็นต้องขอลิงก์ใหม่")
        return
    ctx.reply(f"🔑 ลิงก์ลงทะเบียนของคุณ\n\n{activation_link(participant)}")


def _reply_cards(ctx: EventContext, participants, header: str) -> None:
    if not participants:
        ctx.reply(MSG_NO_RESULTS)
        return
    cards = "\n\n".join(directory_service.format_card(p) for p in participants)
    ctx.reply(f"{header}\n\n{cards}")


def handle_card_search(ctx: EventContext, text: str, args: dict) -> None:
    if not _authorized(ctx, "business_card_search"):
        return
    query = args.get("query", "")
    if not query:
        ctx.reply("🔍 พิมพ์ \"card\" หรือ \"นามบัตร\" ตามด้วยชื่อหรือบริษัท\nตัวอย่าง: card สมชาย")
        return
    found = directory_service.search_business_cards(ctx.db, ctx.tenant_id, query)
    _reply_cards(ctx, found, f"📇 ผลการค้นหานามบัตร \"{query}\"")


def handle_member_search(ctx: EventContext, text: str, args: dict) -> None:
    if not _authorized(ctx, "business_card_search"):
        return
    query = args["query"]
    found = directory_service.search_members(ctx.db, ctx.tenant_id, query)
    _reply_cards(ctx, found, f"👥 ผลการค้นหาสมาชิก \"{query}\"")


def handle_category_search(ctx: EventContext, text: str, args: dict) -> None:
    if not _authorized(ctx, "category_search"):
        return
    query = args["query"]
    found = directory_service.search_by_category(ctx.db, ctx.tenant_id, query)
    _reply_cards(ctx, found, f"🏷️ สมาชิกในประเภทธุรกิจ \"{query}\"")


def handle_edit_profile(ctx: EventContext, text: str, args: dict) -> None:
    participant = directory_service.find_linked_participant(ctx.db, ctx.tenant_id, ctx.user_id)
    if not participant:
        ctx.reply(MSG_NOT_LINKED)
        return
    url = _app_url("profile", participant_id=participant.participant_id, tenant_id=ctx.tenant_id)
    ctx.reply_messages(
        buttons_message("แก้ไขโปรไฟล์", "แก้ไขข้อมูลโปรไฟล์และนามบัตรของคุณ", [uri_action("แก้ไขโปรไฟล์", url)])
    )


def handle_checkin_qr(ctx: EventContext, text: str, args: dict) -> None:
    if not _authorized(ctx, "checkin"):
        return
    meeting = directory_service.meeting_on(ctx.db, ctx.tenant_id, today_in_bangkok())
    if not meeting:
        ctx.reply("📅 วันนี้ไม่มีการประชุม")
        return
    url = _app_url("checkin", meeting_id=meeting.meeting_id, tenant_id=ctx.tenant_id)
    ctx.reply_messages(
        buttons_message(
            "เช็คอินเข้าประชุม",
            f"เช็คอินการประชุมวันที่ {meeting.meeting_date.isoformat()}",
            [uri_action("เช็คอิน", url)],
        )
    )


def handle_substitute_request(ctx: EventContext, text: str, args: dict) -> None:
    participant = directory_service.find_linked_participant(ctx.db, ctx.tenant_id, ctx.user_id)
    if not participant or participant.status != "member":
        ctx.reply("คำสั่งนี้สำหรับสมาชิกเท่านั้น\nกรุณาผูกบัญชี LINE ของคุณกับระบบก่อน")
        return
    meeting = directory_service.next_meeting(ctx.db, ctx.tenant_id, today_in_bangkok())
    if not meeting:
        ctx.reply("📅 ยังไม่มีการประชุมครั้งถัดไปในระบบ")
        return
    yes = postback_action(
        "ยืนยัน",
        build_postback_data(PostbackAction.CONFIRM_SUBSTITUTE, meeting_id=meeting.meeting_id, tenant_id=ctx.tenant_id),
    )
    no = postback_action("ยกเลิก", build_postback_data(PostbackAction.CANCEL_FLOW))
    ctx.reply_messages(
        confirm_message(
            "ขอส่งตัวแทน",
            f"ต้องการส่งตัวแทนเข้าประชุมวันที่ {meeting.meeting_date.isoformat()} ใช่หรือไม่?",
            yes,
            no,
        )
    )


def handle_goals_summary(ctx: EventContext, text: str, args: dict) -> None:
    if not _authorized(ctx, "goals_summary"):
        return
    goals = directory_service.active_goals(ctx.db, ctx.tenant_id)
    if not goals:
        ctx.reply("ยังไม่มีเป้าหมายที่กำลังดำเนินการ")
        return
    lines = "\n".join(directory_service.format_goal(g) for g in goals)
    ctx.reply(f"📊 สรุปเป้าหมายของ Chapter\n\n{lines}")


def handle_apply_membership(ctx: EventContext, text: str, args: dict) -> None:
    if not ctx.user_id:
        return
    result = apply_for_membership(ctx.db, ctx.tenant_id, ctx.user_id)
    if not result.ok:
        if result.error_code == "not_found":
            ctx.reply("ไม่พบข้อมูลของคุณในระบบ กรุณาติดต่อผู้ดูแลระบบ")
        else:
            ctx.reply(MSG_GENERIC_ERROR)
        return

    outcome = result.value
    if outcome.status == "already_member":
        ctx.reply("คุณเป็นสมาชิกอยู่แล้ว!")
        return
    if outcome.status == "already_pending":
        ctx.reply("คุณมีคำขอสมัครสมาชิกที่รออนุมัติอยู่แล้ว\n\nกรุณารอการอนุมัติจากผู้ดูแลระบบ")
        return

    name = outcome.participant.full_name_th or outcome.participant.display_name
    ctx.reply(f"ส่งคำขอสมัครสมาชิกแล้ว!\n\nชื่อ: {name}\n\nกรุณารอการอนุมัติจากผู้ดูแลระบบ")
    notify_admins_of_application(ctx, outcome.participant)


def notify_admins_of_application(ctx: EventContext, participant) -> None:
    participant_id = participant.participant_id
    approve = postback_action(
        "อนุมัติ",
        build_postback_data(PostbackAction.APPROVE_MEMBER, participant_id=participant_id, tenant_id=ctx.tenant_id),
    )
    reject = postback_action(
        "ปฏิเสธ",
        build_postback_data(PostbackAction.REJECT_MEMBER, participant_id=participant_id, tenant_id=ctx.tenant_id),
    )
    message = buttons_message(
        "คำขอสมัครสมาชิกใหม่",
        f"{participant.full_name_th or participant.display_name} ขอสมัครเป็นสมาชิก",
        [approve, reject],
        title="คำขอสมัครสมาชิก",
    )
    for admin_id in get_admin_line_ids(ctx.db, ctx.tenant_id, exclude=ctx.user_id):
        ctx.client.push_message(admin_id, message)


def handle_apps_list(ctx: EventContext, text: str, args: dict) -> None:
    actions = [
        uri_action("โปรไฟล์", _app_url("profile", tenant_id=ctx.tenant_id)),
        uri_action("เช็คอิน", _app_url("checkin", tenant_id=ctx.tenant_id)),
        uri_action("รายชื่อสมาชิก", _app_url("members", tenant_id=ctx.tenant_id)),
        uri_action("เป้าหมาย", _app_url("goals", tenant_id=ctx.tenant_id)),
    ]
    ctx.reply_messages(buttons_message("แอปของ Chapter", "เลือกแอปที่ต้องการใช้งาน", actions, title="Chapter Apps"))


def handle_ai_start(ctx: EventContext, text: str, args: dict) -> None:
    if not ctx.user_id:
        return
    ai_session_service.start_session(ctx.tenant_id, ctx.user_id)
    ctx.reply(GREETING_MESSAGE)


def handle_ai_end(ctx: EventContext, text: str, args: dict) -> None:
    if not ctx.user_id:
        return
    if ai_session_service.end_session(ctx.tenant_id, ctx.user_id):
        ctx.reply(GOODBYE_MESSAGE)


def _ask_ai(ctx: EventContext, text: str) -> None:
    backend = ctx.ai_backend or get_ai_backend()
    answer = backend.answer(ctx.db, ctx.tenant_id, ctx.user_id, text)
    ctx.reply(answer)


def handle_ai_continue(ctx: EventContext, text: str, args: dict) -> None:
    if not ctx.user_id:
        return
    ai_session_service.touch_session(ctx.tenant_id, ctx.user_id)
    _ask_ai(ctx, text)


def handle_ai_fallback(ctx: EventContext, text: str, args: dict) -> None:
    if not ctx.user_id:
        return
    ai_session_service.start_session(ctx.tenant_id, ctx.user_id)
    _ask_ai(ctx, text)


COMMAND_HANDLERS: Dict[Command, Handler] = {
    Command.GROUP_MENU: handle_group_menu,
    Command.PHONE_LINK: handle_phone_link,
    Command.RESEND_ACTIVATION: handle_resend_activation,
    Command.CARD_SEARCH: handle_card_search,
    Command.MEMBER_SEARCH: handle_member_search,
    Command.CATEGORY_SEARCH: handle_category_search,
    Command.EDIT_PROFILE: handle_edit_profile,
    Command.CHECKIN_QR: handle_checkin_qr,
    Command.SUBSTITUTE_REQUEST: handle_substitute_request,
    Command.GOALS_SUMMARY: handle_goals_summary,
    Command.APPLY_MEMBERSHIP: handle_apply_membership,
    Command.APPS_LIST: handle_apps_list,
    Command.AI_START: handle_ai_start,
    Command.AI_END: handle_ai_end,
    Command.AI_CONTINUE: handle_ai_continue,
    Command.AI_FALLBACK: handle_ai_fallback,
}
