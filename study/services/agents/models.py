"""Data models for agent definitions."""

from dataclasses import dataclass
from typing import Any, Optional

from study.services.ai.schemas import ChatOptions


@dataclass
class AgentDefinition:
    """Represents a loaded agent definition from YAML."""

    agent_id: str
    name: str
    description: str
    role: str  # System message
    task: str  # User instruction
    parameters: Optional[dict[str, Any]] = None

    @property
    def system_message(self) -> str:
        """Return the system message for this agent."""
        return self.role

    @property
    def task_instruction(self) -> str:
        """Return the task instruction for this agent."""
        return self.task

    @property
    def chat_options(self) -> ChatOptions:
        """Sampling parameters declared under ``parameters:`` in the YAML file."""
        params = self.parameters or {}
        return ChatOptions(
            temperature=params.get('temperature'),
            max_tokens=params.get('max_tokens'),
        )
