"""AI answering: the tool-calling agent or the remote workflow backend.

Which one serves traffic is decided once, when the application starts.
"""

from typing import Optional

from chapterbot.config import settings
from chapterbot.logging_config import get_logger
from chapterbot.services.agent.agent import AIBackend, ToolCallingAgent, build_default_agent
from chapterbot.services.agent.n8n_backend import N8nWorkflowBackend

logger = get_logger("agent")

_backend: Optional[AIBackend] = None


def build_ai_backend() -> AIBackend:
    if settings.n8n_ai_query_webhook_url:
        logger.info("AI backend: n8n workflow")
        return N8nWorkflowBackend(settings.n8n_ai_query_webhook_url, settings.n8n_timeout_seconds)
    logger.info("AI backend: tool-calling agent", extra={"context": {"model": settings.ai_model}})
    return build_default_agent()


def configure_ai_backend(backend: Optional[AIBackend] = None) -> AIBackend:
    global _backend
    _backend = backend or build_ai_backend()
    return _backend


def get_ai_backend() -> AIBackend:
    if _backend is None:
        return configure_ai_backend()
    return _backend


__all__ = [
    "AIBackend",
    "N8nWorkflowBackend",
    "ToolCallingAgent",
    "build_ai_backend",
    "configure_ai_backend",
    "get_ai_backend",
]
