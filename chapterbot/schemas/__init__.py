from chapterbot.schemas.line import LineEvent, LineWebhookBody, LineWebhookResponse

__all__ = ["LineEvent", "LineWebhookBody", "LineWebhookResponse"]
