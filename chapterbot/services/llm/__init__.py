from chapterbot.services.llm.base import LLMProvider, LLMResponse, ToolCall
from chapterbot.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMResponse", "ToolCall", "OpenAIProvider"]
