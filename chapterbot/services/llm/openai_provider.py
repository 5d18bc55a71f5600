from typing import List, Optional

import httpx

from chapterbot.logging_config import get_logger
from chapterbot.services.llm.base import LLMProvider, LLMResponse, ToolCall

logger = get_logger("llm.openai")


class OpenAIProvider(LLMProvider):
    """OpenAI-compatible chat completions over plain HTTP."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 60.0,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.url = f"{base_url.rstrip('/')}/chat/completions"
        self.timeout_seconds = timeout_seconds

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 1024,
        tools: Optional[List[dict]] = None,
        tool_choice: Optional[str] = None,
    ) -> LLMResponse:
        model = model or self.default_model
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = tool_choice or "auto"

        logger.debug(f"OpenAI request: model={model}, messages_count={len(messages)}, tools={len(tools or [])}")

        with httpx.Client(timeout=self.timeout_seconds) as client:
            response = client.post(
                self.url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )

        if response.status_code != 200:
            logger.error(f"OpenAI error: {response.status_code} {response.text[:500]}")
            raise Exception(f"OpenAI API error: {response.status_code} - {response.text[:500]}")

        data = response.json()
        content = ""
        tool_calls: List[ToolCall] = []
        finish_reason = None
        if data.get("choices"):
            choice = data["choices"][0]
            finish_reason = choice.get("finish_reason")
            message = choice.get("message") or {}
            content = message.get("content") or ""
            for raw in message.get("tool_calls") or []:
                function = raw.get("function") or {}
                tool_calls.append(
                    ToolCall(
                        id=raw.get("id", ""),
                        name=function.get("name", ""),
                        arguments=function.get("arguments") or "{}",
                    )
                )

        logger.debug(f"OpenAI response: content={content[:100] if content else 'EMPTY'}, tool_calls={len(tool_calls)}")

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            usage=data.get("usage"),
            tool_calls=tool_calls,
            finish_reason=finish_reason,
        )
