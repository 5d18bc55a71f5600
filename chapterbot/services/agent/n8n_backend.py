"""Remote workflow backend: forwards the question to an n8n webhook."""

import uuid
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from chapterbot.config import settings
from chapterbot.logging_config import get_logger
from chapterbot.services.agent.agent import AIBackend
from chapterbot.services.agent.prompts import ERROR_MESSAGE
from chapterbot.services.kv_store import KVStore, get_kv_store, make_key
from chapterbot.services.roles import resolve_role

logger = get_logger("agent.n8n")

NAMESPACE = "n8n_session"
UNAVAILABLE_MESSAGE = "ขออภัย ระบบ AI ไม่พร้อมใช้งานในขณะนี้ กรุณาลองใหม่ภายหลัง"


class N8nWorkflowBackend(AIBackend):
    def __init__(self, webhook_url: str, timeout_seconds: float = 30.0, store: Optional[KVStore] = None):
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds
        self._store = store

    @property
    def store(self) -> KVStore:
        return self._store or get_kv_store()

    def session_id(self, tenant_id, line_user_id: str) -> str:
        """Stable workflow session id per (tenant, user) while the user stays active."""
        key = make_key(NAMESPACE, str(tenant_id), line_user_id)
        existing = self.store.get(key)
        session_id = existing["session_id"] if existing else str(uuid.uuid4())
        self.store.set(key, {"session_id": session_id}, settings.ai_session_idle_seconds)
        return session_id

    def answer(self, db: Session, tenant_id, line_user_id: str, message: str) -> str:
        log_context = {"tenant_id": str(tenant_id), "user_id": line_user_id}
        try:
            return self._call_workflow(db, tenant_id, line_user_id, message)
        except Exception as e:
            logger.error(f"n8n backend failed: {e}", extra={"context": log_context}, exc_info=True)
            return ERROR_MESSAGE

    def _call_workflow(self, db: Session, tenant_id, line_user_id: str, message: str) -> str:
        role_context = resolve_role(db, tenant_id, line_user_id)
        payload = {
            "tenant_id": str(tenant_id),
            "line_user_id": line_user_id,
            "user_role": role_context.role.value,
            "user_name": role_context.display_name,
            "message": message,
            "session_id": self.session_id(tenant_id, line_user_id),
        }
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(self.webhook_url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"n8n request failed: {e}", extra={"context": {"tenant_id": str(tenant_id)}})
            return UNAVAILABLE_MESSAGE

        if response.status_code != 200:
            logger.error(
                "n8n returned error status",
                extra={"context": {"status": response.status_code, "body": response.text[:300]}},
            )
            return UNAVAILABLE_MESSAGE

        try:
            data = response.json()
        except ValueError:
            logger.error("n8n returned non-JSON body", extra={"context": {"body": response.text[:300]}})
            return ERROR_MESSAGE

        if isinstance(data, list) and data:
            data = data[0]
        if not isinstance(data, dict):
            logger.warning("n8n returned unexpected body", extra={"context": {"body": str(data)[:300]}})
            return ERROR_MESSAGE
        if not data.get("success", True):
            logger.warning("n8n workflow reported failure", extra={"context": {"error": data.get("error")}})
            return ERROR_MESSAGE

        answer = data.get("response")
        if not isinstance(answer, str):
            logger.warning("n8n response is not text", extra={"context": {"type": type(answer).__name__}})
            return ERROR_MESSAGE
        return answer.strip() or ERROR_MESSAGE
