import uuid

from sqlalchemy import Boolean, Column, Date, ForeignKey, Numeric, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from chapterbot.database import Base


class Meeting(Base):
    __tablename__ = "meetings"

    meeting_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    meeting_date = Column(Date, nullable=False)
    meeting_time = Column(Text)
    theme = Column(Text)
    venue = Column(Text)


class Checkin(Base):
    __tablename__ = "checkins"

    checkin_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    meeting_id = Column(UUID(as_uuid=True), ForeignKey("meetings.meeting_id"), nullable=False)
    participant_id = Column(UUID(as_uuid=True), ForeignKey("participants.participant_id"), nullable=False)
    checkin_time = Column(TIMESTAMP(timezone=True))
    is_late = Column(Boolean, default=False)


class MeetingRegistration(Base):
    __tablename__ = "meeting_registrations"

    registration_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    meeting_id = Column(UUID(as_uuid=True), ForeignKey("meetings.meeting_id"), nullable=False)
    participant_id = Column(UUID(as_uuid=True), ForeignKey("participants.participant_id"), nullable=False)
    created_at = Column(TIMESTAMP(timezone=True))


class VisitorMeetingFee(Base):
    __tablename__ = "visitor_meeting_fees"

    fee_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    meeting_id = Column(UUID(as_uuid=True), ForeignKey("meetings.meeting_id"), nullable=False)
    participant_id = Column(UUID(as_uuid=True), ForeignKey("participants.participant_id"), nullable=False)
    amount_due = Column(Numeric(10, 2), nullable=False, default=0)
    amount_paid = Column(Numeric(10, 2), default=0)
    status = Column(Text, nullable=False, default="pending")  # pending, paid, waived

    participant = relationship("Participant")


class MeetingAbsence(Base):
    __tablename__ = "meeting_absences"

    absence_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False)
    meeting_id = Column(UUID(as_uuid=True), ForeignKey("meetings.meeting_id"), nullable=False)
    participant_id = Column(UUID(as_uuid=True), ForeignKey("participants.participant_id"), nullable=False)
    reason = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True))


class SubstituteRequest(Base):
    __tablename__ = "substitute_requests"

    request_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False)
    meeting_id = Column(UUID(as_uuid=True), ForeignKey("meetings.meeting_id"), nullable=False)
    participant_id = Column(UUID(as_uuid=True), ForeignKey("participants.participant_id"), nullable=False)
    token = Column(Text, nullable=False, unique=True)
    status = Column(Text, nullable=False, default="pending")  # pending, filled, cancelled
    created_at = Column(TIMESTAMP(timezone=True))
