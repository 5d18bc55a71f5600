"""Per-tenant command permissions: who may run which LINE command, and where."""

import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional

from sqlalchemy.orm import Session

from chapterbot.config import settings
from chapterbot.database import to_uuid
from chapterbot.logging_config import get_logger
from chapterbot.models import LineCommandPermission
from chapterbot.services.roles import Role, resolve_role

logger = get_logger("command_authorization")


class AccessLevel(str, Enum):
    PUBLIC = "public"
    MEMBER = "member"
    ADMIN = "admin"


@dataclass(frozen=True)
class CommandPermission:
    command_key: str
    command_name: str
    description: Optional[str]
    access_level: AccessLevel
    allow_group: bool


@dataclass(frozen=True)
class AuthorizationResult:
    authorized: bool
    reason: Optional[str] = None
    access_level: Optional[AccessLevel] = None


DEFAULT_PERMISSIONS: Dict[str, CommandPermission] = {
    "goals_summary": CommandPermission(
        "goals_summary", "สรุปเป้าหมาย", "ดูสรุปความคืบหน้าเป้าหมายของ Chapter", AccessLevel.MEMBER, True
    ),
    "business_card_search": CommandPermission(
        "business_card_search", "ค้นหานามบัตร", "ค้นหานามบัตรสมาชิกในระบบ", AccessLevel.MEMBER, True
    ),
    "category_search": CommandPermission(
        "category_search", "ค้นหาประเภทธุรกิจ", "ค้นหาสมาชิกตามประเภทธุรกิจ", AccessLevel.MEMBER, True
    ),
    "checkin": CommandPermission("checkin", "เช็คอิน", "เช็คอินเข้าร่วมประชุม", AccessLevel.PUBLIC, True),
    "link_phone": CommandPermission(
        "link_phone", "ผูกเบอร์โทร", "ผูกเบอร์โทรศัพท์กับบัญชี LINE", AccessLevel.PUBLIC, False
    ),
}

AUTHORIZATION_MESSAGES = {
    "group_not_allowed": "คำสั่งนี้ไม่สามารถใช้ใน Group chat ได้\nกรุณาส่งข้อความส่วนตัวมาที่บอทโดยตรง",
    "member_required": "คำสั่งนี้สำหรับสมาชิกเท่านั้น\nกรุณาผูกบัญชี LINE ของคุณกับระบบก่อน",
    "admin_required": "คำสั่งนี้สำหรับผู้ดูแลระบบเท่านั้น",
    "unknown_command": "ไม่พบคำสั่งนี้ในระบบ",
}
DEFAULT_DENIAL_MESSAGE = "คุณไม่มีสิทธิ์ใช้คำสั่งนี้"

_permission_cache: Dict[str, tuple[float, Dict[str, CommandPermission]]] = {}


def _load_overrides(db: Session, tenant_id) -> Dict[str, CommandPermission]:
    rows = db.query(LineCommandPermission).filter(LineCommandPermission.tenant_id == to_uuid(tenant_id)).all()
    overrides: Dict[str, CommandPermission] = {}
    for row in rows:
        try:
            level = AccessLevel(row.access_level)
        except ValueError:
            logger.warning(
                "Ignoring permission row with unknown access level",
                extra={"context": {"tenant_id": str(tenant_id), "command_key": row.command_key}},
            )
            continue
        base = DEFAULT_PERMISSIONS.get(row.command_key)
        overrides[row.command_key] = CommandPermission(
            command_key=row.command_key,
            command_name=row.command_name or (base.command_name if base else row.command_key),
            description=row.command_description or (base.description if base else None),
            access_level=level,
            allow_group=bool(row.allow_group),
        )
    return overrides


def get_command_permissions(db: Session, tenant_id) -> Dict[str, CommandPermission]:
    """Compiled-in defaults with the tenant's overrides merged on top (cached)."""
    key = str(tenant_id)
    now = time.monotonic()
    cached = _permission_cache.get(key)
    if cached and now - cached[0] < settings.permission_cache_seconds:
        return cached[1]

    merged = {name: replace(perm) for name, perm in DEFAULT_PERMISSIONS.items()}
    merged.update(_load_overrides(db, tenant_id))
    _permission_cache[key] = (now, merged)
    return merged


def clear_permission_cache(tenant_id=None) -> None:
    if tenant_id is None:
        _permission_cache.clear()
    else:
        _permission_cache.pop(str(tenant_id), None)


def save_command_permission(
    db: Session,
    tenant_id,
    command_key: str,
    access_level: AccessLevel,
    allow_group: bool,
) -> LineCommandPermission:
    """Upsert a tenant override and drop that tenant's cached permissions."""
    row = (
        db.query(LineCommandPermission)
        .filter(
            LineCommandPermission.tenant_id == to_uuid(tenant_id),
            LineCommandPermission.command_key == command_key,
        )
        .first()
    )
    if row is None:
        base = DEFAULT_PERMISSIONS.get(command_key)
        row = LineCommandPermission(
            tenant_id=to_uuid(tenant_id),
            command_key=command_key,
            command_name=base.command_name if base else command_key,
            command_description=base.description if base else None,
        )
        db.add(row)
    row.access_level = AccessLevel(access_level).value
    row.allow_group = allow_group
    db.commit()
    clear_permission_cache(tenant_id)
    return row


def check_command_authorization(
    db: Session,
    tenant_id,
    command_key: str,
    line_user_id: str,
    is_group: bool,
) -> AuthorizationResult:
    permission = get_command_permissions(db, tenant_id).get(command_key)
    if permission is None:
        logger.info(f"No permission entry for command {command_key}")
        return AuthorizationResult(False, "unknown_command")

    if is_group and not permission.allow_group:
        return AuthorizationResult(False, "group_not_allowed", permission.access_level)

    if permission.access_level == AccessLevel.PUBLIC:
        return AuthorizationResult(True, access_level=AccessLevel.PUBLIC)

    role = resolve_role(db, tenant_id, line_user_id).role
    if role == Role.ADMIN:
        return AuthorizationResult(True, access_level=AccessLevel.ADMIN)

    if permission.access_level == AccessLevel.MEMBER:
        if role == Role.MEMBER:
            return AuthorizationResult(True, access_level=AccessLevel.MEMBER)
        return AuthorizationResult(False, "member_required", permission.access_level)

    return AuthorizationResult(False, "admin_required", permission.access_level)


def authorization_error_message(reason: Optional[str]) -> str:
    return AUTHORIZATION_MESSAGES.get(reason or "", DEFAULT_DENIAL_MESSAGE)
