import uuid

from sqlalchemy import Boolean, Column, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from chapterbot.database import Base


class LineCommandPermission(Base):
    __tablename__ = "line_command_permissions"
    __table_args__ = (UniqueConstraint("tenant_id", "command_key"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False)
    command_key = Column(Text, nullable=False)
    command_name = Column(Text)
    command_description = Column(Text)
    access_level = Column(Text, nullable=False, default="member")  # public, member, admin
    allow_group = Column(Boolean, nullable=False, default=True)
