from chapterbot.models.ai_conversation import AIConversation
from chapterbot.models.command_permission import LineCommandPermission
from chapterbot.models.goal import ChapterGoal
from chapterbot.models.join_request import ChapterJoinRequest
from chapterbot.models.meeting import (
    Checkin,
    Meeting,
    MeetingAbsence,
    MeetingRegistration,
    SubstituteRequest,
    VisitorMeetingFee,
)
from chapterbot.models.participant import Participant, UserRole
from chapterbot.models.tenant_secret import TenantSecret

__all__ = [
    "TenantSecret",
    "Participant",
    "UserRole",
    "ChapterJoinRequest",
    "Meeting",
    "Checkin",
    "MeetingRegistration",
    "VisitorMeetingFee",
    "MeetingAbsence",
    "SubstituteRequest",
    "ChapterGoal",
    "AIConversation",
    "LineCommandPermission",
]
