from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from chapterbot.database import Base


class TenantSecret(Base):
    __tablename__ = "tenant_secrets"

    tenant_id = Column(UUID(as_uuid=True), primary_key=True)
    line_channel_id = Column(Text, index=True)  # bot user id ("destination")
    line_access_token_encrypted = Column(Text)  # {"iv","authTag","encrypted"} JSON
    line_channel_secret_encrypted = Column(Text)
    updated_at = Column(TIMESTAMP(timezone=True))
