"""Agent service for executing YAML-defined prompt agents through the AI router."""

import logging
from dataclasses import dataclass, replace
from typing import Any, Optional, Union

from study.services.ai.router import AIRouter
from study.services.ai.schemas import ChatOptions, ChatResponse, Message

from .models import AgentDefinition
from .registry import AgentNotFoundError, AgentRegistry

logger = logging.getLogger(__name__)


@dataclass
class AgentRunResult:
    """Result of running an agent.

    Attributes:
        agent_id: The agent identifier.
        output_text: Plaintext output from the agent.
        response: The router's :class:`ChatResponse`.
    """

    agent_id: str
    output_text: str
    response: ChatResponse

    @property
    def provider(self) -> str:
        return self.response.provider

    @property
    def model(self) -> str:
        return self.response.model

    @property
    def input_tokens(self) -> Optional[int]:
        return self.response.usage.prompt_tokens if self.response.usage else None

    @property
    def output_tokens(self) -> Optional[int]:
        return self.response.usage.completion_tokens if self.response.usage else None


class AgentService:
    """Runs prompt agents (system role + task instruction) via an :class:`AIRouter`."""

    def __init__(self, router: AIRouter, registry: Optional[AgentRegistry] = None):
        self.router = router
        self.registry = registry or AgentRegistry()

    def get_agent(self, agent_id: str) -> AgentDefinition:
        try:
            return self.registry.get_agent(agent_id)
        except AgentNotFoundError:
            logger.error("Agent not found: %s", agent_id)
            raise

    def run_agent(
        self,
        agent_id: str,
        *,
        task_input: Union[dict, str],
        context: Union[dict, str, None] = None,
        options: Optional[ChatOptions] = None,
        user_id: Optional[str] = None,
    ) -> AgentRunResult:
        """Run an agent with the given input.

        Args:
            agent_id: The agent identifier.
            task_input: Input for the agent (string or dict).
            context: Optional context placed ahead of the input.
            options: Overrides for the agent's YAML ``parameters``.
            user_id: Requesting user, written to the job history.

        Raises:
            AgentNotFoundError: If the agent cannot be found.
            BudgetExceeded / AllProvidersExhausted: Propagated from the router.
        """
        agent = self.get_agent(agent_id)
        messages = self.build_messages(agent, task_input, context)

        response = self.router.chat(
            messages,
            self._merge_options(agent.chat_options, options),
            agent=agent_id,
            user_id=user_id,
        )

        result = AgentRunResult(
            agent_id=agent_id,
            output_text=(response.content or '').strip(),
            response=response,
        )
        logger.info(
            "Agent %s executed via %s/%s: %s input tokens, %s output tokens",
            agent_id, result.provider, result.model, result.input_tokens, result.output_tokens,
        )
        return result

    def build_messages(
        self,
        agent: AgentDefinition,
        task_input: Union[dict, str],
        context: Union[dict, str, None] = None,
    ) -> list[Message]:
        """Build the system + user messages for *agent*."""
        messages = []
        if agent.system_message:
            messages.append(Message('system', agent.system_message.strip()))
        messages.append(Message('user', self._format_user_message(agent, task_input, context)))
        return messages

    def _format_user_message(
        self,
        agent: AgentDefinition,
        task_input: Union[dict, str],
        context: Union[dict, str, None] = None,
    ) -> str:
        parts = [agent.task_instruction.strip()]

        if context:
            parts.append(f"\nContext:\n{_format_block(context)}")

        parts.append(f"\nInput:\n{_format_block(task_input)}")
        return '\n'.join(parts)

    @staticmethod
    def _merge_options(defaults: ChatOptions, overrides: Optional[ChatOptions]) -> ChatOptions:
        if overrides is None:
            return defaults
        changes: dict[str, Any] = {
            name: getattr(overrides, name)
            for name in ('temperature', 'max_tokens', 'model')
            if getattr(overrides, name) is not None
        }
        changes['stream'] = overrides.stream
        return replace(defaults, **changes)


def _format_block(value: Union[dict, str]) -> str:
    if isinstance(value, str):
        return value
    return '\n'.join(f"{k}: {v}" for k, v in value.items())
