import uuid

from sqlalchemy import Column, Date, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from chapterbot.database import Base


class Participant(Base):
    __tablename__ = "participants"

    participant_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    full_name_th = Column(Text)
    nickname_th = Column(Text)
    company = Column(Text)
    business_category = Column(Text)
    phone = Column(Text)
    email = Column(Text)
    status = Column(Text, nullable=False, default="prospect")  # prospect, visitor, member, alumni, declined
    line_user_id = Column(Text, index=True)
    user_id = Column(UUID(as_uuid=True))  # web account, set after activation
    joined_date = Column(Date)
    created_at = Column(TIMESTAMP(timezone=True))

    roles = relationship("UserRole", back_populates="participant")

    @property
    def display_name(self) -> str:
        return self.nickname_th or self.full_name_th or "ไม่ระบุชื่อ"


class UserRole(Base):
    __tablename__ = "user_roles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True))  # NULL for super_admin
    participant_id = Column(UUID(as_uuid=True), ForeignKey("participants.participant_id"), nullable=False)
    role = Column(Text, nullable=False)  # super_admin, chapter_admin, member

    participant = relationship("Participant", back_populates="roles")
