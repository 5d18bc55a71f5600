import uuid

from sqlalchemy import Column, Date, Numeric, Text
from sqlalchemy.dialects.postgresql import UUID

from chapterbot.database import Base


class ChapterGoal(Base):
    __tablename__ = "chapter_goals"

    goal_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    name = Column(Text, nullable=False)
    target_value = Column(Numeric(12, 2), nullable=False)
    current_value = Column(Numeric(12, 2), default=0)
    end_date = Column(Date)
    status = Column(Text, default="active")  # active, achieved, archived
