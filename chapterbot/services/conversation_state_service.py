"""Per-(tenant, user) state of an in-progress multi-turn flow.

There is at most one state per user: starting a new flow overwrites the
previous one. Expiry is enforced by the underlying store's TTL.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from chapterbot.config import settings
from chapterbot.logging_config import get_logger
from chapterbot.services.kv_store import KVStore, get_kv_store, make_key, serialize

logger = get_logger("conversation_state")

NAMESPACE = "flow"


class FlowStep(str, Enum):
    AWAITING_PHONE = "awaiting_phone"
    AWAITING_LEAVE_REASON = "awaiting_leave_reason"


class FlowAction(str, Enum):
    LINK_LINE = "link_line"
    RSVP_LEAVE = "rsvp_leave"


@dataclass
class ConversationState:
    tenant_id: str
    user_id: str
    step: FlowStep
    action: FlowAction
    payload: dict = field(default_factory=dict)
    expires_at: float = 0.0

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "step": self.step.value,
            "action": self.action.value,
            "payload": serialize(self.payload),
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConversationState":
        return cls(
            tenant_id=data["tenant_id"],
            user_id=data["user_id"],
            step=FlowStep(data["step"]),
            action=FlowAction(data["action"]),
            payload=data.get("payload") or {},
            expires_at=float(data.get("expires_at") or 0),
        )


def _key(tenant_id, user_id) -> str:
    return make_key(NAMESPACE, str(tenant_id), user_id)


def get_state(tenant_id, user_id: str, store: Optional[KVStore] = None) -> Optional[ConversationState]:
    store = store or get_kv_store()
    data = store.get(_key(tenant_id, user_id))
    if not data:
        return None
    try:
        return ConversationState.from_dict(data)
    except (KeyError, ValueError):
        logger.warning(
            "Discarding malformed conversation state",
            extra={"context": {"tenant_id": str(tenant_id), "user_id": user_id}},
        )
        store.delete(_key(tenant_id, user_id))
        return None


def set_state(
    tenant_id,
    user_id: str,
    step: FlowStep,
    action: FlowAction,
    payload: Optional[dict] = None,
    ttl_seconds: Optional[int] = None,
    store: Optional[KVStore] = None,
) -> ConversationState:
    """Start (or restart) a flow for the user, replacing any active one."""
    store = store or get_kv_store()
    ttl = ttl_seconds if ttl_seconds is not None else settings.conversation_state_seconds
    state = ConversationState(
        tenant_id=str(tenant_id),
        user_id=user_id,
        step=step,
        action=action,
        payload=payload or {},
        expires_at=time.time() + ttl,
    )
    previous = store.get(_key(tenant_id, user_id))
    store.set(_key(tenant_id, user_id), state.to_dict(), ttl)
    logger.info(
        "Conversation state set",
        extra={
            "context": {
                "tenant_id": str(tenant_id),
                "user_id": user_id,
                "step": step.value,
                "replaced": previous.get("step") if previous else None,
            }
        },
    )
    return state


def clear_state(tenant_id, user_id: str, store: Optional[KVStore] = None) -> bool:
    store = store or get_kv_store()
    return store.delete(_key(tenant_id, user_id))
