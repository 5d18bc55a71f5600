"""Per-event processing for one webhook delivery.

Events are handled strictly in order. A failure in one event is logged and
never stops its siblings or changes the HTTP response.

Text priority: active flow -> command rules (which end with the AI session
and AI fallback rules).
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from chapterbot.logging_config import RequestLogger
from chapterbot.schemas.line import LineEvent
from chapterbot.services import ai_session_service
from chapterbot.services.agent import AIBackend
from chapterbot.services.command_handlers import COMMAND_HANDLERS
from chapterbot.services.command_router import RouteContext, normalize_text, route
from chapterbot.services.conversation_state_service import get_state
from chapterbot.services.credential_service import TenantCredential
from chapterbot.services.directory_service import find_linked_participant
from chapterbot.services.errors import PayloadValidationError, SecurityViolation
from chapterbot.services.event_context import EventContext
from chapterbot.services.flow_handlers import FLOW_HANDLERS
from chapterbot.services.line_client import LineClient
from chapterbot.services.postback_handlers import MSG_FORBIDDEN, POSTBACK_HANDLERS
from chapterbot.services.postback_service import enforce_tenant_gate, parse_postback

MSG_WELCOME = (
    "สวัสดีครับ 🙏 ยินดีต้อนรับสู่ Chapter Assistant\n\n"
    "พิมพ์ \"ลงทะเบียน\" เพื่อเชื่อมโยงบัญชี LINE กับระบบ\n"
    "หรือพิมพ์ \"สวัสดี ai\" เพื่อสอบถามข้อมูลกับผู้ช่วย AI"
)
MSG_HELP = "ไม่เข้าใจคำสั่งครับ 🙏\nพิมพ์ \"สวัสดี ai\" เพื่อคุยกับผู้ช่วย AI หรือ \"แอพ\" เพื่อดูเมนูทั้งหมด"
MSG_UNKNOWN_ACTION = "ไม่รู้จักคำสั่งนี้ กรุณาลองใหม่อีกครั้ง"


def handle_text(ctx: EventContext) -> None:
    text = normalize_text(ctx.event.message.text if ctx.event.message else "")
    if not text:
        return

    if ctx.user_id:
        state = get_state(ctx.tenant_id, ctx.user_id)
        if state:
            handler = FLOW_HANDLERS.get(state.step)
            if handler and handler(ctx, state, text):
                ctx.log.info("Message consumed by flow", extra={"context": {"step": state.step.value}})
                return

    session_active = bool(ctx.user_id) and ai_session_service.is_session_active(ctx.tenant_id, ctx.user_id)
    match = route(RouteContext(text=text, is_group=ctx.is_group, ai_session_active=session_active))
    if match is None:
        if not ctx.is_group:
            ctx.reply(MSG_HELP)
        return

    ctx.log.info("Command matched", extra={"context": {"command": match.command.value}})
    COMMAND_HANDLERS[match.command](ctx, text, match.args)


def handle_postback(ctx: EventContext) -> None:
    data = ctx.event.postback.data if ctx.event.postback else ""
    try:
        postback = parse_postback(data)
    except PayloadValidationError as e:
        ctx.log.warning(f"Unparseable postback: {e}", extra={"context": {"data": data[:200]}})
        ctx.reply(MSG_UNKNOWN_ACTION)
        return

    enforce_tenant_gate(postback, ctx.tenant_id, ctx.user_id)
    ctx.log.info("Postback received", extra={"context": {"action": postback.action.value}})
    POSTBACK_HANDLERS[postback.action](ctx, postback)


def handle_follow(ctx: EventContext) -> None:
    participant = find_linked_participant(ctx.db, ctx.tenant_id, ctx.user_id)
    if participant:
        ctx.reply(f"ยินดีต้อนรับกลับครับ คุณ{participant.display_name} 🙏\n\nพิมพ์ \"แอพ\" เพื่อดูเมนูทั้งหมด")
    else:
        ctx.reply(MSG_WELCOME)


def handle_event(ctx: EventContext) -> None:
    event = ctx.event
    if event.type == "message":
        if event.message and event.message.type == "text":
            handle_text(ctx)
        return
    if event.type == "postback":
        handle_postback(ctx)
        return
    if event.type == "follow":
        handle_follow(ctx)
        return
    if event.type in ("unfollow", "join", "leave"):
        ctx.log.info(f"{event.type} event", extra={"context": {"source_type": event.source.type}})
        return
    ctx.log.debug(f"Ignoring event type {event.type}")


def process_events(
    db: Session,
    credential: TenantCredential,
    events: List[LineEvent],
    log: RequestLogger,
    client: Optional[LineClient] = None,
    ai_backend: Optional[AIBackend] = None,
) -> int:
    """Handle every event in order. Returns how many completed without error."""
    client = client or LineClient(credential.send_token)
    completed = 0
    for index, event in enumerate(events):
        ctx = EventContext(db=db, credential=credential, client=client, event=event, log=log, ai_backend=ai_backend)
        try:
            handle_event(ctx)
            completed += 1
        except SecurityViolation as e:
            db.rollback()
            log.warning(
                "Security violation refused",
                extra={
                    "context": {
                        "security_event": e.reason,
                        "event_index": index,
                        "user_id": ctx.user_id,
                        **{k: str(v) for k, v in e.details.items()},
                    }
                },
            )
            ctx.reply(MSG_FORBIDDEN)
        except Exception as e:
            db.rollback()
            log.error(
                f"Event processing failed: {e}",
                extra={"context": {"event_index": index, "event_type": event.type, "user_id": ctx.user_id}},
                exc_info=True,
            )
    return completed
