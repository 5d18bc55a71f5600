"""AI chat sessions: while one is active, free text goes to the agent.

Idle timeout is checked lazily against ``last_activity_at`` when the session
is read; the store TTL only garbage-collects abandoned keys. Losing a session
(restart, eviction) simply means the user is back in command mode.
"""

import time
from typing import Optional

from chapterbot.config import settings
from chapterbot.logging_config import get_logger
from chapterbot.services.kv_store import KVStore, get_kv_store, make_key

logger = get_logger("ai_session")

NAMESPACE = "ai_session"


def _key(tenant_id, user_id: str) -> str:
    return make_key(NAMESPACE, str(tenant_id), user_id)


def _idle_seconds() -> int:
    return settings.ai_session_idle_seconds


def start_session(tenant_id, user_id: str, store: Optional[KVStore] = None, now: Optional[float] = None) -> dict:
    store = store or get_kv_store()
    now = time.time() if now is None else now
    session = {"tenant_id": str(tenant_id), "user_id": user_id, "started_at": now, "last_activity_at": now}
    store.set(_key(tenant_id, user_id), session, _idle_seconds())
    logger.info("AI session started", extra={"context": {"tenant_id": str(tenant_id), "user_id": user_id}})
    return session


def get_active_session(
    tenant_id, user_id: str, store: Optional[KVStore] = None, now: Optional[float] = None
) -> Optional[dict]:
    """Return the session if it exists and has not been idle past the timeout."""
    store = store or get_kv_store()
    now = time.time() if now is None else now
    session = store.get(_key(tenant_id, user_id))
    if not session:
        return None
    last_activity = float(session.get("last_activity_at") or 0)
    if now - last_activity >= _idle_seconds():
        store.delete(_key(tenant_id, user_id))
        logger.info("AI session expired", extra={"context": {"tenant_id": str(tenant_id), "user_id": user_id}})
        return None
    return session


def is_session_active(tenant_id, user_id: str, store: Optional[KVStore] = None, now: Optional[float] = None) -> bool:
    return get_active_session(tenant_id, user_id, store=store, now=now) is not None


def touch_session(tenant_id, user_id: str, store: Optional[KVStore] = None, now: Optional[float] = None) -> bool:
    """Refresh the idle timer. Returns False when there is no live session."""
    store = store or get_kv_store()
    now = time.time() if now is None else now
    session = get_active_session(tenant_id, user_id, store=store, now=now)
    if session is None:
        return False
    session["last_activity_at"] = now
    store.set(_key(tenant_id, user_id), session, _idle_seconds())
    return True


def end_session(tenant_id, user_id: str, store: Optional[KVStore] = None) -> bool:
    """End the session. Ending a session that does not exist is a no-op."""
    store = store or get_kv_store()
    removed = store.delete(_key(tenant_id, user_id))
    if removed:
        logger.info("AI session ended", extra={"context": {"tenant_id": str(tenant_id), "user_id": user_id}})
    return removed
