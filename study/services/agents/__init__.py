"""Agent service for loading and running YAML-defined prompt agents."""

from .models import AgentDefinition
from .registry import AgentNotFoundError, AgentRegistry
from .service import AgentRunResult, AgentService
from .yaml_parser import AgentParseError

__all__ = [
    'AgentDefinition',
    'AgentNotFoundError',
    'AgentParseError',
    'AgentRegistry',
    'AgentRunResult',
    'AgentService',
]
