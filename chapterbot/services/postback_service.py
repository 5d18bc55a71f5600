"""Postback payload parsing and the tenant gate for privileged actions."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
from urllib.parse import parse_qsl

from chapterbot.logging_config import get_logger
from chapterbot.services.errors import PayloadValidationError, SecurityViolation

logger = get_logger("postback")


class PostbackAction(str, Enum):
    APPROVE_MEMBER = "approve_member"
    REJECT_MEMBER = "reject_member"
    CONFIRM_SUBSTITUTE = "confirm_substitute"
    RSVP_LEAVE = "rsvp_leave"
    CANCEL_FLOW = "cancel_flow"
    OPEN_MENU = "open_menu"
    APPLY_CANCEL = "apply_cancel"


# Every action that mutates data on behalf of someone other than the sender
# must pass the tenant gate.
PRIVILEGED_ACTIONS = frozenset(
    {
        PostbackAction.APPROVE_MEMBER,
        PostbackAction.REJECT_MEMBER,
        PostbackAction.CONFIRM_SUBSTITUTE,
    }
)

# Positional argument names for the colon-delimited legacy encoding
LEGACY_ARG_NAMES: dict[PostbackAction, tuple[str, ...]] = {
    PostbackAction.APPROVE_MEMBER: ("participant_id", "tenant_id"),
    PostbackAction.REJECT_MEMBER: ("participant_id", "tenant_id"),
    PostbackAction.CONFIRM_SUBSTITUTE: ("meeting_id", "tenant_id"),
    PostbackAction.RSVP_LEAVE: ("meeting_id",),
}


@dataclass(frozen=True)
class Postback:
    action: PostbackAction
    params: dict = field(default_factory=dict)

    @property
    def is_privileged(self) -> bool:
        return self.action in PRIVILEGED_ACTIONS

    def get(self, key: str) -> Optional[str]:
        value = self.params.get(key)
        return value or None


def build_postback_data(action: PostbackAction, **params) -> str:
    pairs = [f"action={action.value}"] + [f"{k}={v}" for k, v in params.items() if v is not None]
    return "&".join(pairs)


def parse_postback(data: str) -> Postback:
    """Parse ``action=x&k=v`` or the legacy ``name:arg1:arg2`` form."""
    data = (data or "").strip()
    if not data:
        raise PayloadValidationError("Empty postback data")

    if "=" in data:
        params = dict(parse_qsl(data, keep_blank_values=True))
        name = params.pop("action", "")
    else:
        name, *args = data.split(":")
        params = {}
        try:
            arg_names = LEGACY_ARG_NAMES.get(PostbackAction(name), ())
        except ValueError:
            arg_names = ()
        for index, value in enumerate(args):
            key = arg_names[index] if index < len(arg_names) else f"arg{index + 1}"
            params[key] = value

    try:
        action = PostbackAction(name.strip())
    except ValueError:
        raise PayloadValidationError(f"Unknown postback action: {name!r}")

    return Postback(action=action, params=params)


def enforce_tenant_gate(postback: Postback, resolved_tenant_id: str, user_id: Optional[str] = None) -> None:
    """Refuse a privileged postback issued for another tenant.

    The embedded ``tenant_id`` was written into the button when it was
    rendered; it must equal the tenant resolved from the signed request.
    Raises SecurityViolation on mismatch or when the field is missing.
    """
    if not postback.is_privileged:
        return

    embedded = (postback.get("tenant_id") or "").strip().lower()
    resolved = str(resolved_tenant_id).strip().lower()
    if embedded and embedded == resolved:
        return

    logger.warning(
        "Postback tenant mismatch",
        extra={
            "context": {
                "security_event": "postback_tenant_mismatch",
                "action": postback.action.value,
                "embedded_tenant_id": embedded or None,
                "resolved_tenant_id": resolved,
                "user_id": user_id,
            }
        },
    )
    raise SecurityViolation(
        "postback_tenant_mismatch",
        action=postback.action.value,
        embedded_tenant_id=embedded or None,
        resolved_tenant_id=resolved,
    )
