"""Free-text command grammar.

The rule table is evaluated top to bottom and the first match wins. Order is
part of the contract: e.g. card search must precede member search because
their surface forms overlap, and the AI session rules sit after every
explicit command but before the pattern-based AI fallback.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Pattern, Tuple

FULL_WIDTH_SPACE = "　"

# Sentence-final softeners accepted after exact phrases ("เมนู ครับ", "bye ค่ะ")
POLITE_SUFFIX = r"(?:\s*(?:ครับผม|ครับ|คับ|ค่ะ|คะ|ค่า|นะคะ|นะครับ|นะ|จ้า|จ้ะ|ด้วย|หน่อย|please|pls))*"


class Command(str, Enum):
    GROUP_MENU = "group_menu"
    PHONE_LINK = "phone_link"
    RESEND_ACTIVATION = "resend_activation"
    CARD_SEARCH = "card_search"
    MEMBER_SEARCH = "member_search"
    CATEGORY_SEARCH = "category_search"
    EDIT_PROFILE = "edit_profile"
    CHECKIN_QR = "checkin_qr"
    SUBSTITUTE_REQUEST = "substitute_request"
    GOALS_SUMMARY = "goals_summary"
    APPLY_MEMBERSHIP = "apply_membership"
    APPS_LIST = "apps_list"
    AI_START = "ai_start"
    AI_END = "ai_end"
    AI_CONTINUE = "ai_continue"
    AI_FALLBACK = "ai_fallback"


@dataclass
class RouteContext:
    text: str
    is_group: bool = False
    ai_session_active: bool = False
    lowered: str = field(init=False)

    def __post_init__(self):
        self.lowered = self.text.lower()


@dataclass(frozen=True)
class CommandMatch:
    command: Command
    args: dict = field(default_factory=dict)


Matcher = Callable[[RouteContext], Optional[dict]]


@dataclass(frozen=True)
class CommandRule:
    command: Command
    matcher: Matcher


def normalize_text(text: Optional[str]) -> str:
    """Collapse every whitespace run (full-width space included) to one ascii space."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text.replace(FULL_WIDTH_SPACE, " ")).strip()


def _exact(*phrases: str, group_only: bool = False) -> Matcher:
    alternatives = "|".join(re.escape(p) for p in phrases)
    pattern = re.compile(rf"^(?:{alternatives}){POLITE_SUFFIX}$")

    def match(ctx: RouteContext) -> Optional[dict]:
        if group_only and not ctx.is_group:
            return None
        return {} if pattern.match(ctx.lowered) else None

    return match


def _regex(pattern: str, group: int = 1) -> Matcher:
    compiled = re.compile(pattern)

    def match(ctx: RouteContext) -> Optional[dict]:
        found = compiled.match(ctx.lowered)
        if not found:
            return None
        return {"query": found.group(group).strip()}

    return match


CARD_SEARCH_PREFIXES = ("card ", "นามบัตร ")


def _card_search(ctx: RouteContext) -> Optional[dict]:
    for prefix in CARD_SEARCH_PREFIXES:
        if ctx.lowered.startswith(prefix):
            return {"query": ctx.text[len(prefix):].strip()}
    if re.match(rf"^ค้นหานามบัตร{POLITE_SUFFIX}$", ctx.lowered):
        return {"query": ""}
    return None


AI_START_PHRASES = (
    "สวัสดี ai",
    "หวัดดี ai",
    "hi ai",
    "hello ai",
    "คุยกับ ai",
    "ถาม ai",
    "เริ่ม ai",
    "ai",
)

AI_END_PHRASES = (
    "bye",
    "bye ai",
    "บาย",
    "บ๊ายบาย",
    "จบ",
    "จบ ai",
    "จบการสนทนา",
    "ออก",
    "exit",
    "end",
)

# Broad intent library for questions the agent can answer without an explicit
# "start AI" phrase. Matching one starts a session.
AI_QUERY_PATTERNS: Tuple[Pattern, ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^สวัสดี",
        r"^หวัดดี",
        r"^hello",
        r"^hi$",
        r"^hi\s",
        r"ช่วย.*อะไร.*ได้",
        r"ทำอะไรได้บ้าง",
        r"ถามอะไรได้บ้าง",
        r"สรุป.*ผู้.*เยือน",
        r"สรุป.*visitor",
        r"visitor.*สรุป",
        r"ใคร.*ไม่.*จ่าย",
        r"ค้าง.*ชำระ",
        r"unpaid",
        r"visitor.*fee",
        r"ยอด.*รวม",
        r"สถิติ.*meeting",
        r"meeting.*สถิติ",
        r"สรุป.*วันนี้",
        r"สรุป.*สัปดาห์",
        r"สรุป.*เดือน",
        r"กี่.*คน.*มา",
        r"มา.*กี่.*คน",
        r"(member|สมาชิก).*กี่.*คน",
        r"ใคร.*(มา|ขาด|สาย)",
        r".+\s*(มา|เข้า)ประชุม(ไหม|มั้ย|หรือเปล่า)",
    )
)


def is_ai_query(text: str) -> bool:
    normalized = normalize_text(text).lower()
    if not normalized:
        return False
    return any(p.search(normalized) for p in AI_QUERY_PATTERNS)


def _ai_continue(ctx: RouteContext) -> Optional[dict]:
    return {} if ctx.ai_session_active else None


def _ai_fallback(ctx: RouteContext) -> Optional[dict]:
    # Group chatter must not open sessions; groups use the explicit greeting.
    if ctx.is_group:
        return None
    return {} if is_ai_query(ctx.text) else None


COMMAND_RULES: Tuple[CommandRule, ...] = (
    CommandRule(Command.GROUP_MENU, _exact("menu", "เมนู", "help", "ช่วยเหลือ", group_only=True)),
    CommandRule(Command.PHONE_LINK, _exact("ลงทะเบียน", "link", "register", "ผูกบัญชี", "ผูกเบอร์")),
    CommandRule(Command.RESEND_ACTIVATION, _exact("ขอลิงก์ใหม่", "ขอลิงค์ใหม่", "ขอลิงค์", "ขอลิงก์", "activate")),
    CommandRule(Command.CARD_SEARCH, _card_search),
    CommandRule(Command.MEMBER_SEARCH, _regex(r"^(?:หา|ค้นหา|search)\s*(?:สมาชิก|member)\s+(.+)$")),
    CommandRule(
        Command.CATEGORY_SEARCH,
        _regex(r"^(?:(?:หา|ค้นหา)\s*(?:ประเภท|หมวด)(?:ธุรกิจ)?|category)\s+(.+)$"),
    ),
    CommandRule(Command.EDIT_PROFILE, _exact("แก้ไขโปรไฟล์", "แก้ไขข้อมูล", "แก้โปรไฟล์", "edit profile", "profile")),
    CommandRule(Command.CHECKIN_QR, _exact("เช็คอิน", "เช็กอิน", "checkin", "check-in", "check in", "qr เช็คอิน")),
    CommandRule(Command.SUBSTITUTE_REQUEST, _exact("หาตัวแทน", "ส่งตัวแทน", "ขอตัวแทน", "substitute")),
    CommandRule(Command.GOALS_SUMMARY, _exact("สรุปเป้าหมาย", "เป้าหมาย", "goals", "goal")),
    CommandRule(Command.APPLY_MEMBERSHIP, _exact("สมัครสมาชิก", "apply", "สมัคร")),
    CommandRule(Command.APPS_LIST, _exact("แอพ", "แอป", "apps", "app", "รายการแอพ")),
    CommandRule(Command.AI_START, _exact(*AI_START_PHRASES)),
    CommandRule(Command.AI_END, _exact(*AI_END_PHRASES)),
    CommandRule(Command.AI_CONTINUE, _ai_continue),
    CommandRule(Command.AI_FALLBACK, _ai_fallback),
)


def route(ctx: RouteContext, rules: Tuple[CommandRule, ...] = COMMAND_RULES) -> Optional[CommandMatch]:
    for rule in rules:
        args = rule.matcher(ctx)
        if args is not None:
            return CommandMatch(rule.command, args)
    return None
