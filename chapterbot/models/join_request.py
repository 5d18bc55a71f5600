import uuid

from sqlalchemy import Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from chapterbot.database import Base


class ChapterJoinRequest(Base):
    __tablename__ = "chapter_join_requests"

    request_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    participant_id = Column(UUID(as_uuid=True), ForeignKey("participants.participant_id"), nullable=False)
    status = Column(Text, nullable=False, default="pending")  # pending, approved, rejected
    message = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True))
    reviewed_at = Column(TIMESTAMP(timezone=True))
    reviewed_by = Column(Text)  # LINE user id of the admin
