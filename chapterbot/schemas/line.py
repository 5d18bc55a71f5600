from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, Field


class LineSource(BaseModel):
    type: str = "user"  # user, group, room
    user_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("userId", "user_id"))
    group_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("groupId", "group_id"))
    room_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("roomId", "room_id"))

    @property
    def is_group(self) -> bool:
        return self.type in ("group", "room")


class LineMessage(BaseModel):
    type: str
    id: Optional[str] = None
    text: Optional[str] = None


class LinePostback(BaseModel):
    data: str = ""
    params: Optional[dict[str, Any]] = None


class LineEvent(BaseModel):
    type: str  # message, postback, follow, unfollow, join, leave
    reply_token: Optional[str] = Field(default=None, validation_alias=AliasChoices("replyToken", "reply_token"))
    source: LineSource = Field(default_factory=LineSource)
    message: Optional[LineMessage] = None
    postback: Optional[LinePostback] = None
    timestamp: Optional[int] = None
    webhook_event_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("webhookEventId", "webhook_event_id"),
    )


class LineWebhookBody(BaseModel):
    destination: str
    events: List[LineEvent]


class LineWebhookResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    processed: Optional[int] = None
    mode: Optional[str] = None
