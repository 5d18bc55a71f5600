from unittest.mock import MagicMock, patch

import httpx
import pytest

from chapterbot.services.line_client import LineClient, buttons_message, postback_action, text_message
from chapterbot.services.llm.openai_provider import OpenAIProvider


def _mock_client(status_code=200, payload=None, error=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    response.text = str(payload)
    client = MagicMock()
    client.__enter__.return_value = client
    if error:
        client.post.side_effect = error
    else:
        client.post.return_value = response
    return client


class TestLineClient:
    def test_reply(self):
        client = _mock_client()
        with patch("chapterbot.services.line_client.httpx.Client", return_value=client):
            assert LineClient("token", base_url="https://line.test").reply_text("rt", "hello") is True

        url = client.post.call_args.args[0]
        kwargs = client.post.call_args.kwargs
        assert url == "https://line.test/bot/message/reply"
        assert kwargs["headers"]["Authorization"] == "Bearer token"
        assert kwargs["json"] == {"replyToken": "rt", "messages": [{"type": "text", "text": "hello"}]}

    def test_reply_without_token_is_skipped(self):
        with patch("chapterbot.services.line_client.httpx.Client") as client_cls:
            assert LineClient("token").reply_text(None, "hello") is False
        client_cls.assert_not_called()

    def test_api_error_returns_false(self):
        client = _mock_client(status_code=400, payload={"message": "Invalid reply token"})
        with patch("chapterbot.services.line_client.httpx.Client", return_value=client):
            assert LineClient("token").push_message("Uuser", text_message("hi")) is False

    def test_network_error_returns_false(self):
        client = _mock_client(error=httpx.ConnectError("refused"))
        with patch("chapterbot.services.line_client.httpx.Client", return_value=client):
            assert LineClient("token").push_message("Uuser", text_message("hi")) is False

    def test_message_limits(self):
        assert len(text_message("ก" * 6000)["text"]) == 5000
        actions = [postback_action(f"action {i}", f"action=open_menu&i={i}") for i in range(6)]
        message = buttons_message("alt", "text", actions)
        assert len(message["template"]["actions"]) == 4


class TestOpenAIProvider:
    def test_parses_tool_calls(self):
        payload = {
            "model": "gpt-4o-mini",
            "choices": [
                {
                    "finish_reason": "tool_calls",
                    "message": {
                        "content": None,
                        "tool_calls": [
                            {
                                "id": "call_1",
                                "type": "function",
                                "function": {"name": "get_member_count", "arguments": "{}"},
                            }
                        ],
                    },
                }
            ],
        }
        client = _mock_client(payload=payload)
        provider = OpenAIProvider(api_key="test-key", base_url="https://llm.test/v1")
        with patch("chapterbot.services.llm.openai_provider.httpx.Client", return_value=client):
            response = provider.generate([{"role": "user", "content": "hi"}], tools=[{"type": "function"}])

        assert response.content == ""
        assert response.tool_calls[0].name == "get_member_count"
        assert response.finish_reason == "tool_calls"
        sent = client.post.call_args.kwargs["json"]
        assert sent["tool_choice"] == "auto"
        assert client.post.call_args.args[0] == "https://llm.test/v1/chat/completions"

    def test_no_tools_key_without_tools(self):
        client = _mock_client(payload={"choices": [{"message": {"content": "answer"}}]})
        with patch("chapterbot.services.llm.openai_provider.httpx.Client", return_value=client):
            response = OpenAIProvider(api_key="k").generate([{"role": "user", "content": "hi"}])
        assert response.content == "answer"
        assert "tools" not in client.post.call_args.kwargs["json"]

    def test_error_status_raises(self):
        client = _mock_client(status_code=500, payload={"error": "down"})
        with patch("chapterbot.services.llm.openai_provider.httpx.Client", return_value=client):
            with pytest.raises(Exception, match="OpenAI API error: 500"):
                OpenAIProvider(api_key="k").generate([{"role": "user", "content": "hi"}])
