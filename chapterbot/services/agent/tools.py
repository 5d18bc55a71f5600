"""Read-only data tools exposed to the language model.

The registry is closed: every ``ToolName`` maps to exactly one typed argument
model and one handler. Handlers never mutate data and never raise out of
``execute_tool``; errors become a structured "no data" result the model can
phrase for the user. Name visibility (RBAC) is decided inside each handler.
"""

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional, Type
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import func
from sqlalchemy.orm import Session

from chapterbot.database import to_uuid
from chapterbot.logging_config import get_logger
from chapterbot.models import Checkin, Meeting, MeetingRegistration, Participant, VisitorMeetingFee
from chapterbot.services.agent.prompts import NO_DATA_MESSAGE, PRIVACY_NOTICE
from chapterbot.services.errors import ToolExecutionError
from chapterbot.services.roles import Role

logger = get_logger("agent.tools")

TIMEZONE = ZoneInfo("Asia/Bangkok")
NAME_PREFIXES = ("นางสาว", "คุณ", "พี่", "น้อง", "นาย", "นาง")
MAX_ATTENDANCE_MATCHES = 3
MAX_MEMBER_CANDIDATES = 5

RangeName = Literal["today", "this_week", "this_month"]
FocusName = Literal["present", "absent", "late", "all"]


def today_in_bangkok() -> date:
    return datetime.now(TIMEZONE).date()


@dataclass
class ToolContext:
    db: Session
    tenant_id: str
    line_user_id: str
    role: Role
    today: date = field(default_factory=today_in_bangkok)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass
class ToolCallRecord:
    tool_name: str
    arguments: dict
    result: dict


class ToolName(str, Enum):
    GET_MEETING_CONTEXT = "get_meeting_context"
    GET_VISITOR_SUMMARY = "get_visitor_summary"
    GET_UNPAID_VISITOR_FEE = "get_unpaid_visitor_fee"
    GET_VISITOR_FEE_TOTAL = "get_visitor_fee_total"
    GET_USER_ROLE = "get_user_role"
    GET_MEETING_STATS = "get_meeting_stats"
    GET_ATTENDANCE_INSIGHTS = "get_attendance_insights"
    FIND_MEMBER_BY_NAME = "find_member_by_name"
    CHECK_MEMBER_ATTENDANCE = "check_member_attendance"
    GET_MEMBER_COUNT = "get_member_count"


# Argument models


class NoArgs(BaseModel):
    pass


class MeetingContextArgs(BaseModel):
    date: Optional[str] = Field(default=None, description="วันที่ในรูปแบบ YYYY-MM-DD (ถ้าไม่ระบุจะใช้วันนี้)")


class VisitorSummaryArgs(BaseModel):
    range: RangeName = Field(description="ช่วงเวลาที่ต้องการ")
    meeting_id: Optional[str] = Field(default=None, description="ID ของ meeting (ถ้าต้องการเฉพาะ meeting)")


class UnpaidVisitorFeeArgs(BaseModel):
    meeting_id: str = Field(description="ID ของ meeting จาก get_meeting_context")


class VisitorFeeTotalArgs(BaseModel):
    range: RangeName = Field(description="ช่วงเวลาที่ต้องการ")


class MeetingStatsArgs(BaseModel):
    meeting_id: Optional[str] = Field(default=None, description="ID ของ meeting (ถ้าไม่ระบุจะใช้ meeting วันนี้หรือล่าสุด)")


class AttendanceInsightsArgs(BaseModel):
    meeting_id: Optional[str] = Field(default=None, description="ID ของ meeting (ถ้าไม่ระบุจะใช้ meeting ล่าสุด)")
    focus: FocusName = Field(default="all", description="present=มา, absent=ไม่มา, late=มาสาย, all=ทั้งหมด")


class FindMemberArgs(BaseModel):
    query: str = Field(min_length=1, description="ชื่อเล่นหรือชื่อจริงของสมาชิก")


class MemberAttendanceArgs(BaseModel):
    member_name: str = Field(min_length=1, description="ชื่อเล่นหรือชื่อจริงของสมาชิก เช่น แคท, โอ๋")
    meeting_id: Optional[str] = Field(default=None, description="ID ของ meeting (ถ้าไม่ระบุจะใช้ meeting ล่าสุด)")


# Shared lookups


def _tenant(ctx: ToolContext):
    return to_uuid(ctx.tenant_id)


def _range_bounds(range_name: str, today: date) -> tuple[date, date]:
    if range_name == "today":
        return today, today
    if range_name == "this_week":
        start = today - timedelta(days=today.weekday())
        return start, start + timedelta(days=6)
    start = today.replace(day=1)
    next_month = (start + timedelta(days=32)).replace(day=1)
    return start, next_month - timedelta(days=1)


def _meeting_info(meeting: Meeting) -> dict:
    return {
        "meeting_id": str(meeting.meeting_id),
        "meeting_date": meeting.meeting_date.isoformat() if meeting.meeting_date else None,
        "meeting_time": meeting.meeting_time,
        "theme": meeting.theme,
        "venue": meeting.venue,
    }


def _latest_meeting_on_or_before(ctx: ToolContext, target: date) -> Optional[Meeting]:
    return (
        ctx.db.query(Meeting)
        .filter(Meeting.tenant_id == _tenant(ctx), Meeting.meeting_date <= target)
        .order_by(Meeting.meeting_date.desc())
        .first()
    )


def _resolve_meeting(ctx: ToolContext, meeting_id: Optional[str]) -> Optional[Meeting]:
    """The requested meeting (must belong to the tenant), else today's or the latest one."""
    if meeting_id:
        try:
            meeting_uuid = to_uuid(meeting_id)
        except ValueError:
            raise ToolExecutionError(f"Malformed meeting id {meeting_id!r}")
        return (
            ctx.db.query(Meeting)
            .filter(Meeting.meeting_id == meeting_uuid, Meeting.tenant_id == _tenant(ctx))
            .first()
        )
    return _latest_meeting_on_or_before(ctx, ctx.today)


def _members(ctx: ToolContext) -> List[Participant]:
    return (
        ctx.db.query(Participant)
        .filter(Participant.tenant_id == _tenant(ctx), Participant.status == "member")
        .all()
    )


def _count_participants(ctx: ToolContext, status: str) -> int:
    return (
        ctx.db.query(func.count(Participant.participant_id))
        .filter(Participant.tenant_id == _tenant(ctx), Participant.status == status)
        .scalar()
        or 0
    )


def _checkins_by_participant(ctx: ToolContext, meeting_id, participant_ids: List) -> Dict[Any, Checkin]:
    if not participant_ids:
        return {}
    rows = (
        ctx.db.query(Checkin)
        .filter(Checkin.meeting_id == meeting_id, Checkin.participant_id.in_(participant_ids))
        .all()
    )
    return {row.participant_id: row for row in rows}


def _money(value) -> float:
    return float(value or Decimal("0"))


def _no_meeting() -> dict:
    return {"found": False, "message": NO_DATA_MESSAGE}


# Handlers


def get_meeting_context(ctx: ToolContext, args: MeetingContextArgs) -> dict:
    target = ctx.today
    if args.date:
        try:
            target = date.fromisoformat(args.date)
        except ValueError:
            raise ToolExecutionError(f"Malformed date {args.date!r}")

    exact = (
        ctx.db.query(Meeting)
        .filter(Meeting.tenant_id == _tenant(ctx), Meeting.meeting_date == target)
        .first()
    )
    if exact:
        return {"found": True, "is_exact_date": True, **_meeting_info(exact)}

    latest = _latest_meeting_on_or_before(ctx, target)
    if not latest:
        return _no_meeting()
    return {
        "found": True,
        "is_exact_date": False,
        "note": f"ไม่พบ meeting วันที่ {target.isoformat()} จึงใช้ meeting ล่าสุดแทน",
        **_meeting_info(latest),
    }


def get_visitor_summary(ctx: ToolContext, args: VisitorSummaryArgs) -> dict:
    start, end = _range_bounds(args.range, ctx.today)
    meetings_query = ctx.db.query(Meeting.meeting_id).filter(Meeting.tenant_id == _tenant(ctx))
    if args.meeting_id:
        meeting = _resolve_meeting(ctx, args.meeting_id)
        if not meeting:
            return _no_meeting()
        meeting_ids = [meeting.meeting_id]
    else:
        meeting_ids = [
            row.meeting_id
            for row in meetings_query.filter(Meeting.meeting_date >= start, Meeting.meeting_date <= end).all()
        ]

    summary = {
        "range": args.range,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "meetings_count": len(meeting_ids),
        "total_registered": 0,
        "total_checked_in": 0,
        "no_show": 0,
    }
    if not meeting_ids:
        summary["message"] = "ไม่มี meeting ในช่วงเวลานี้"
        return summary

    visitor_ids = [
        row.participant_id
        for row in ctx.db.query(Participant.participant_id)
        .filter(Participant.tenant_id == _tenant(ctx), Participant.status == "visitor")
        .all()
    ]
    if not visitor_ids:
        return summary

    registered = {
        row.participant_id
        for row in ctx.db.query(MeetingRegistration.participant_id)
        .filter(MeetingRegistration.meeting_id.in_(meeting_ids), MeetingRegistration.participant_id.in_(visitor_ids))
        .all()
    }
    checked_in = {
        row.participant_id
        for row in ctx.db.query(Checkin.participant_id)
        .filter(Checkin.meeting_id.in_(meeting_ids), Checkin.participant_id.in_(visitor_ids))
        .all()
    }
    summary["total_registered"] = len(registered)
    summary["total_checked_in"] = len(checked_in)
    summary["no_show"] = len(registered - checked_in)
    return summary


def get_unpaid_visitor_fee(ctx: ToolContext, args: UnpaidVisitorFeeArgs) -> dict:
    meeting = _resolve_meeting(ctx, args.meeting_id)
    if not meeting:
        return _no_meeting()

    fees = (
        ctx.db.query(VisitorMeetingFee)
        .filter(VisitorMeetingFee.meeting_id == meeting.meeting_id, VisitorMeetingFee.status == "pending")
        .all()
    )
    result = {
        "meeting_date": meeting.meeting_date.isoformat() if meeting.meeting_date else None,
        "unpaid_count": len(fees),
        "total_amount": sum(_money(f.amount_due) for f in fees),
        "is_admin": ctx.is_admin,
    }
    if not ctx.is_admin:
        result["message"] = PRIVACY_NOTICE
        return result

    result["unpaid_list"] = [
        {"name": f.participant.display_name if f.participant else "ไม่ระบุชื่อ", "amount": _money(f.amount_due)}
        for f in fees
    ]
    return result


def get_visitor_fee_total(ctx: ToolContext, args: VisitorFeeTotalArgs) -> dict:
    start, end = _range_bounds(args.range, ctx.today)
    fees = (
        ctx.db.query(VisitorMeetingFee)
        .join(Meeting, Meeting.meeting_id == VisitorMeetingFee.meeting_id)
        .filter(Meeting.tenant_id == _tenant(ctx), Meeting.meeting_date >= start, Meeting.meeting_date <= end)
        .all()
    )
    return {
        "range": args.range,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "fees_count": len(fees),
        "total_due": sum(_money(f.amount_due) for f in fees),
        "total_paid": sum(_money(f.amount_paid) for f in fees),
        "paid_count": sum(1 for f in fees if f.status == "paid"),
        "pending_count": sum(1 for f in fees if f.status == "pending"),
    }


def get_user_role(ctx: ToolContext, args: NoArgs) -> dict:
    return {"role": ctx.role.value}


def get_member_count(ctx: ToolContext, args: NoArgs) -> dict:
    return {
        "total_members": _count_participants(ctx, "member"),
        "total_visitors": _count_participants(ctx, "visitor"),
    }


def get_meeting_stats(ctx: ToolContext, args: MeetingStatsArgs) -> dict:
    meeting = _resolve_meeting(ctx, args.meeting_id)
    if not meeting:
        return _no_meeting()

    members = _members(ctx)
    member_ids = [m.participant_id for m in members]
    member_checkins = _checkins_by_participant(ctx, meeting.meeting_id, member_ids)
    late = sum(1 for c in member_checkins.values() if c.is_late)

    visitor_ids = [
        row.participant_id
        for row in ctx.db.query(Participant.participant_id)
        .filter(Participant.tenant_id == _tenant(ctx), Participant.status == "visitor")
        .all()
    ]
    visitors_registered = 0
    if visitor_ids:
        visitors_registered = (
            ctx.db.query(func.count(MeetingRegistration.registration_id))
            .filter(
                MeetingRegistration.meeting_id == meeting.meeting_id,
                MeetingRegistration.participant_id.in_(visitor_ids),
            )
            .scalar()
            or 0
        )
    visitors_checked_in = len(_checkins_by_participant(ctx, meeting.meeting_id, visitor_ids))

    fees = ctx.db.query(VisitorMeetingFee).filter(VisitorMeetingFee.meeting_id == meeting.meeting_id).all()

    total_members = len(members)
    checked_in = len(member_checkins)
    return {
        **_meeting_info(meeting),
        "total_members": total_members,
        "members_checked_in": checked_in,
        "members_on_time": checked_in - late,
        "members_late": late,
        "members_absent": total_members - checked_in,
        "attendance_rate": round(checked_in * 100 / total_members, 1) if total_members else 0,
        "visitors_registered": visitors_registered,
        "visitors_checked_in": visitors_checked_in,
        "visitor_fees": {
            "total_due": sum(_money(f.amount_due) for f in fees),
            "total_paid": sum(_money(f.amount_paid) for f in fees),
            "pending_count": sum(1 for f in fees if f.status == "pending"),
        },
    }


def _name_bucket(names: List[str], is_admin: bool) -> dict:
    bucket: dict = {"count": len(names)}
    if is_admin:
        bucket["names"] = names
    else:
        bucket["message"] = PRIVACY_NOTICE
    return bucket


def get_attendance_insights(ctx: ToolContext, args: AttendanceInsightsArgs) -> dict:
    meeting = _resolve_meeting(ctx, args.meeting_id)
    if not meeting:
        return _no_meeting()

    members = _members(ctx)
    result = {
        "meeting_date": meeting.meeting_date.isoformat() if meeting.meeting_date else None,
        "theme": meeting.theme,
        "total_members": len(members),
    }
    if not members:
        result["message"] = "ไม่มีสมาชิกในระบบ"
        return result

    checkins = _checkins_by_participant(ctx, meeting.meeting_id, [m.participant_id for m in members])
    present, absent, late = [], [], []
    for member in members:
        checkin = checkins.get(member.participant_id)
        if checkin is None:
            absent.append(member.display_name)
        elif checkin.is_late:
            late.append(member.display_name)
        else:
            present.append(member.display_name)

    for focus, names in (("present", present), ("absent", absent), ("late", late)):
        if args.focus in (focus, "all"):
            result[focus] = _name_bucket(names, ctx.is_admin)
    return result


def _clean_name(name: str) -> str:
    cleaned = name.strip()
    for prefix in NAME_PREFIXES:
        if cleaned.startswith(prefix):
            cleaned = cleaned[len(prefix):]
            break
    return cleaned.strip().lower()


def _match_score(participant: Participant, needle: str) -> int:
    best = 0
    for candidate in (participant.nickname_th, participant.full_name_th):
        value = (candidate or "").strip().lower()
        if not value:
            continue
        if value == needle:
            best = max(best, 3)
        elif value.startswith(needle):
            best = max(best, 2)
        elif needle in value or value in needle:
            best = max(best, 1)
    return best


def _rank_members(members: List[Participant], raw_name: str) -> List[Participant]:
    needle = _clean_name(raw_name)
    if not needle:
        return []
    scored = []
    for member in members:
        score = _match_score(member, needle)
        if score > 0:
            scored.append((score, member))
    scored.sort(key=lambda pair: (-pair[0], pair[1].display_name))
    return [m for _, m in scored]


def find_member_by_name(ctx: ToolContext, args: FindMemberArgs) -> dict:
    ranked = _rank_members(_members(ctx), args.query)
    if not ranked:
        return {"found": False, "message": f'ไม่พบสมาชิกชื่อ "{args.query}" ในระบบ'}

    candidates = []
    for member in ranked[:MAX_MEMBER_CANDIDATES]:
        entry = {
            "name": member.display_name,
            "full_name": member.full_name_th,
            "company": member.company,
            "business_category": member.business_category,
        }
        if ctx.is_admin:
            entry["phone"] = member.phone
        candidates.append(entry)
    return {"found": True, "total_matches": len(ranked), "candidates": candidates}


def check_member_attendance(ctx: ToolContext, args: MemberAttendanceArgs) -> dict:
    meeting = _resolve_meeting(ctx, args.meeting_id)
    if not meeting:
        return _no_meeting()

    members = _members(ctx)
    if not members:
        return {"found": False, "message": "ไม่พบสมาชิกในระบบ"}

    matches = _rank_members(members, args.member_name)
    meeting_date = meeting.meeting_date.isoformat() if meeting.meeting_date else None
    if not matches:
        return {
            "found": False,
            "message": f'ไม่พบสมาชิกชื่อ "{args.member_name}" ในระบบ',
            "meeting_date": meeting_date,
        }
    if len(matches) > MAX_ATTENDANCE_MATCHES:
        return {
            "found": False,
            "message": f'พบสมาชิกหลายคนที่ชื่อคล้าย "{args.member_name}" กรุณาระบุชื่อให้ชัดเจนกว่านี้',
            "matching_count": len(matches),
        }

    checkins = _checkins_by_participant(ctx, meeting.meeting_id, [m.participant_id for m in matches])
    results = []
    for member in matches:
        checkin = checkins.get(member.participant_id)
        if checkin is None:
            results.append({"name": member.display_name, "status": "ไม่ได้เข้าประชุม", "attended": False, "late": False})
            continue
        results.append(
            {
                "name": member.display_name,
                "status": "มาสาย" if checkin.is_late else "มาประชุม",
                "checkin_time": checkin.checkin_time.isoformat() if checkin.checkin_time else None,
                "attended": True,
                "late": bool(checkin.is_late),
            }
        )
    return {"found": True, "meeting_date": meeting_date, "theme": meeting.theme, "members": results}


# Registry


@dataclass(frozen=True)
class ToolSpec:
    description: str
    args_model: Type[BaseModel]
    handler: Callable[[ToolContext, Any], dict]


TOOL_REGISTRY: Dict[ToolName, ToolSpec] = {
    ToolName.GET_MEETING_CONTEXT: ToolSpec(
        "หา meeting วันนี้หรือล่าสุดของ chapter เพื่อใช้ meeting_id ในการดึงข้อมูลอื่น",
        MeetingContextArgs,
        get_meeting_context,
    ),
    ToolName.GET_VISITOR_SUMMARY: ToolSpec(
        "ดึงจำนวน visitors ที่ลงทะเบียน/เช็คอิน/ไม่มา ตามช่วงเวลา (วันนี้ / สัปดาห์นี้ / เดือนนี้)",
        VisitorSummaryArgs,
        get_visitor_summary,
    ),
    ToolName.GET_UNPAID_VISITOR_FEE: ToolSpec(
        "ดึงรายการ visitor ที่ยังไม่จ่ายค่า fee ของ meeting (รายชื่อแสดงเฉพาะ admin)",
        UnpaidVisitorFeeArgs,
        get_unpaid_visitor_fee,
    ),
    ToolName.GET_VISITOR_FEE_TOTAL: ToolSpec(
        "ดึงยอดรวม visitor fee ตามช่วงเวลา",
        VisitorFeeTotalArgs,
        get_visitor_fee_total,
    ),
    ToolName.GET_USER_ROLE: ToolSpec("ตรวจสอบ role ของผู้ใช้ปัจจุบัน", NoArgs, get_user_role),
    ToolName.GET_MEETING_STATS: ToolSpec(
        "ดึงสถิติของ meeting: จำนวนสมาชิก, มา/สาย/ขาด, อัตราการเข้าร่วม, visitors และ visitor fee",
        MeetingStatsArgs,
        get_meeting_stats,
    ),
    ToolName.GET_ATTENDANCE_INSIGHTS: ToolSpec(
        "ดูว่าใครมา/ไม่มา/มาสาย ใน meeting (รายชื่อแสดงเฉพาะ admin, role อื่นเห็นจำนวน)",
        AttendanceInsightsArgs,
        get_attendance_insights,
    ),
    ToolName.FIND_MEMBER_BY_NAME: ToolSpec(
        "ค้นหาสมาชิกจากชื่อเล่นหรือชื่อจริง เรียงตามความใกล้เคียง",
        FindMemberArgs,
        find_member_by_name,
    ),
    ToolName.CHECK_MEMBER_ATTENDANCE: ToolSpec(
        'ตรวจสอบว่าสมาชิกคนใดคนหนึ่งมาประชุมหรือไม่ เช่น "คุณแคท มาไหม", "พี่โอ๋ เข้าประชุมมั้ย"',
        MemberAttendanceArgs,
        check_member_attendance,
    ),
    ToolName.GET_MEMBER_COUNT: ToolSpec(
        "นับจำนวนสมาชิก (member) และ visitor ทั้งหมดของ chapter",
        NoArgs,
        get_member_count,
    ),
}


def _parameters_schema(model: Type[BaseModel]) -> dict:
    schema = model.model_json_schema()
    schema.pop("title", None)
    for prop in schema.get("properties", {}).values():
        prop.pop("title", None)
    schema.setdefault("properties", {})
    schema.setdefault("required", [])
    schema["type"] = "object"
    return schema


def tool_definitions() -> List[dict]:
    """Function-calling definitions in chat-completions format."""
    return [
        {
            "type": "function",
            "function": {
                "name": name.value,
                "description": spec.description,
                "parameters": _parameters_schema(spec.args_model),
            },
        }
        for name, spec in TOOL_REGISTRY.items()
    ]


def _validation_error_result(error: ValidationError) -> dict:
    missing = [".".join(str(p) for p in e["loc"]) for e in error.errors() if e["type"] == "missing"]
    invalid = [
        {"field": ".".join(str(p) for p in e["loc"]), "error": e["msg"]}
        for e in error.errors()
        if e["type"] != "missing"
    ]
    result: dict = {"error": "invalid_arguments"}
    if missing:
        result["missing_required"] = missing
    if invalid:
        result["invalid"] = invalid
    return result


def execute_tool(ctx: ToolContext, name: str, raw_arguments: Any) -> ToolCallRecord:
    """Run one tool call. Never raises; failures come back as a result dict."""
    arguments: dict = {}
    try:
        if isinstance(raw_arguments, str):
            arguments = json.loads(raw_arguments or "{}")
        else:
            arguments = dict(raw_arguments or {})
        if not isinstance(arguments, dict):
            raise ValueError("arguments must be a JSON object")
    except ValueError as e:
        return ToolCallRecord(name, {}, {"error": "invalid_arguments", "detail": str(e)})

    try:
        tool = ToolName(name)
    except ValueError:
        return ToolCallRecord(name, arguments, {"error": "unknown_tool", "tool": name})

    spec = TOOL_REGISTRY[tool]
    try:
        args = spec.args_model.model_validate(arguments)
    except ValidationError as e:
        return ToolCallRecord(name, arguments, _validation_error_result(e))

    try:
        result = spec.handler(ctx, args)
    except Exception as e:
        ctx.db.rollback()
        logger.warning(
            "Tool execution failed",
            extra={"context": {"tool": name, "tenant_id": str(ctx.tenant_id), "error": str(e)}},
            exc_info=not isinstance(e, ToolExecutionError),
        )
        result = {"error": "no_data", "message": NO_DATA_MESSAGE}

    return ToolCallRecord(name, arguments, result)
