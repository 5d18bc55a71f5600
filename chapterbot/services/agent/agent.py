import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.orm import Session

from chapterbot.config import settings
from chapterbot.logging_config import get_logger
from chapterbot.services import conversation_memory
from chapterbot.services.agent.prompts import (
    EMPTY_ANSWER_MESSAGE,
    ERROR_MESSAGE,
    ROUND_LIMIT_NOTE,
    SYSTEM_PROMPT,
)
from chapterbot.services.agent.tools import ToolCallRecord, ToolContext, execute_tool, tool_definitions
from chapterbot.services.llm import LLMProvider, OpenAIProvider
from chapterbot.services.roles import RoleContext, resolve_role

logger = get_logger("agent")

HARD_MAX_TOOL_ROUNDS = 10


class AIBackend(ABC):
    """Answers one free-text question for a (tenant, user)."""

    @abstractmethod
    def answer(self, db: Session, tenant_id, line_user_id: str, message: str) -> str:
        pass


@dataclass
class AgentReply:
    text: str
    records: List[ToolCallRecord] = field(default_factory=list)
    rounds: int = 0
    hit_round_limit: bool = False
    failed: bool = False


class ToolCallingAgent(AIBackend):
    """Drives the model/tool loop for one turn.

    The model may request tools for at most ``max_rounds`` rounds. When the
    cap is reached the model is asked once more, without tools, for the best
    answer it can give from the results it already has.
    """

    def __init__(
        self,
        provider: LLMProvider,
        max_rounds: Optional[int] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ):
        rounds = settings.ai_max_tool_rounds if max_rounds is None else max_rounds
        self.provider = provider
        self.max_rounds = max(1, min(rounds, HARD_MAX_TOOL_ROUNDS))
        self.model = model or settings.ai_model
        self.max_tokens = max_tokens or settings.ai_max_tokens
        self.tools = tool_definitions()

    def answer(self, db: Session, tenant_id, line_user_id: str, message: str) -> str:
        return self.run(db, tenant_id, line_user_id, message).text

    def run(
        self,
        db: Session,
        tenant_id,
        line_user_id: str,
        message: str,
        role_context: Optional[RoleContext] = None,
    ) -> AgentReply:
        log_context = {"tenant_id": str(tenant_id), "user_id": line_user_id}
        try:
            role_context = role_context or resolve_role(db, tenant_id, line_user_id)
            ctx = ToolContext(db=db, tenant_id=str(tenant_id), line_user_id=line_user_id, role=role_context.role)

            history = conversation_memory.get_history(db, tenant_id, line_user_id)
            messages = conversation_memory.build_messages(SYSTEM_PROMPT, history, message)
            conversation_memory.append_message(db, tenant_id, line_user_id, "user", message)

            reply = self._loop(ctx, messages)
        except Exception as e:
            db.rollback()
            logger.error(f"Agent turn failed: {e}", extra={"context": log_context}, exc_info=True)
            return AgentReply(text=ERROR_MESSAGE, failed=True)

        try:
            conversation_memory.append_message(db, tenant_id, line_user_id, "assistant", reply.text)
            conversation_memory.refresh_expiry(db, tenant_id, line_user_id)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to persist assistant turn: {e}", extra={"context": log_context})

        logger.info(
            "Agent turn completed",
            extra={
                "context": {
                    **log_context,
                    "role": ctx.role.value,
                    "rounds": reply.rounds,
                    "tools": [r.tool_name for r in reply.records],
                    "hit_round_limit": reply.hit_round_limit,
                }
            },
        )
        return reply

    def _loop(self, ctx: ToolContext, messages: List[dict]) -> AgentReply:
        records: List[ToolCallRecord] = []
        for round_number in range(1, self.max_rounds + 1):
            response = self.provider.generate(
                messages,
                model=self.model,
                max_tokens=self.max_tokens,
                tools=self.tools,
                tool_choice="auto",
            )
            if not response.tool_calls:
                return AgentReply(
                    text=response.content.strip() or EMPTY_ANSWER_MESSAGE,
                    records=records,
                    rounds=round_number - 1,
                )

            messages.append(response.assistant_message())
            for tool_call in response.tool_calls:
                record = execute_tool(ctx, tool_call.name, tool_call.arguments)
                records.append(record)
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": tool_call.id,
                        "content": json.dumps(record.result, ensure_ascii=False, default=str),
                    }
                )

        logger.warning(
            "Tool round limit reached",
            extra={"context": {"tenant_id": ctx.tenant_id, "rounds": self.max_rounds}},
        )
        messages.append({"role": "system", "content": ROUND_LIMIT_NOTE})
        response = self.provider.generate(messages, model=self.model, max_tokens=self.max_tokens)
        return AgentReply(
            text=response.content.strip() or EMPTY_ANSWER_MESSAGE,
            records=records,
            rounds=self.max_rounds,
            hit_round_limit=True,
        )


def build_default_agent() -> ToolCallingAgent:
    provider = OpenAIProvider(
        api_key=settings.openai_api_key,
        default_model=settings.ai_model,
        base_url=settings.openai_base_url,
        timeout_seconds=settings.ai_timeout_seconds,
    )
    return ToolCallingAgent(provider)
