from typing import List, Optional, Union

import httpx

from chapterbot.config import settings
from chapterbot.logging_config import get_logger

logger = get_logger("line_client")

MAX_TEXT_LENGTH = 5000
MAX_MESSAGES_PER_CALL = 5


def text_message(text: str) -> dict:
    return {"type": "text", "text": text[:MAX_TEXT_LENGTH]}


def postback_action(label: str, data: str, display_text: Optional[str] = None) -> dict:
    action = {"type": "postback", "label": label[:20], "data": data}
    if display_text:
        action["displayText"] = display_text
    return action


def uri_action(label: str, uri: str) -> dict:
    return {"type": "uri", "label": label[:20], "uri": uri}


def buttons_message(alt_text: str, text: str, actions: List[dict], title: Optional[str] = None) -> dict:
    template = {"type": "buttons", "text": text[:160], "actions": actions[:4]}
    if title:
        template["title"] = title[:40]
    return {"type": "template", "altText": alt_text[:400], "template": template}


def confirm_message(alt_text: str, text: str, yes: dict, no: dict) -> dict:
    return {
        "type": "template",
        "altText": alt_text[:400],
        "template": {"type": "confirm", "text": text[:240], "actions": [yes, no]},
    }


class LineClient:
    """Messaging API client bound to one tenant's channel access token."""

    def __init__(self, access_token: str, base_url: Optional[str] = None, timeout: float = 15.0):
        self.access_token = access_token
        self.base_url = (base_url or settings.line_api_base).rstrip("/")
        self.timeout = timeout

    def _post(self, path: str, payload: dict) -> bool:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    f"{self.base_url}{path}",
                    headers={
                        "Authorization": f"Bearer {self.access_token}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as e:
            logger.error(f"LINE API request failed: {e}", extra={"context": {"path": path}})
            return False

        if response.status_code != 200:
            logger.error(
                "LINE API error",
                extra={"context": {"path": path, "status": response.status_code, "body": response.text[:300]}},
            )
            return False
        return True

    def reply_message(self, reply_token: Optional[str], messages: Union[dict, List[dict]]) -> bool:
        if not reply_token:
            logger.warning("reply_message called without reply token")
            return False
        if isinstance(messages, dict):
            messages = [messages]
        return self._post("/bot/message/reply", {"replyToken": reply_token, "messages": messages[:MAX_MESSAGES_PER_CALL]})

    def push_message(self, to: str, messages: Union[dict, List[dict]]) -> bool:
        if isinstance(messages, dict):
            messages = [messages]
        return self._post("/bot/message/push", {"to": to, "messages": messages[:MAX_MESSAGES_PER_CALL]})

    def reply_text(self, reply_token: Optional[str], text: str) -> bool:
        return self.reply_message(reply_token, text_message(text))
