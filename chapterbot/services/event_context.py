from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from chapterbot.logging_config import RequestLogger
from chapterbot.schemas.line import LineEvent
from chapterbot.services.agent import AIBackend
from chapterbot.services.credential_service import TenantCredential
from chapterbot.services.line_client import LineClient


@dataclass
class EventContext:
    """Everything a handler needs for one event of one delivery."""

    db: Session
    credential: TenantCredential
    client: LineClient
    event: LineEvent
    log: RequestLogger
    ai_backend: Optional[AIBackend] = None

    @property
    def tenant_id(self) -> str:
        return self.credential.tenant_id

    @property
    def user_id(self) -> Optional[str]:
        return self.event.source.user_id

    @property
    def is_group(self) -> bool:
        return self.event.source.is_group

    def reply(self, text: str) -> bool:
        return self.client.reply_text(self.event.reply_token, text)

    def reply_messages(self, messages) -> bool:
        return self.client.reply_message(self.event.reply_token, messages)
