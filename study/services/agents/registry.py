"""Agent registry for loading and accessing YAML-defined agents."""

import logging
import threading
from pathlib import Path
from typing import Optional

from django.conf import settings

from .models import AgentDefinition
from .yaml_parser import parse_agent_yaml, AgentParseError

logger = logging.getLogger(__name__)


class AgentNotFoundError(Exception):
    """Raised when a requested agent cannot be found."""
    pass


class AgentRegistry:
    """Registry for loading and accessing YAML-defined agents.

    Loads agents lazily on first access from *agents_dir*
    (default: ``settings.AGENTS_DIR``).
    """

    def __init__(self, agents_dir: Optional[Path] = None):
        self._agents_dir = Path(agents_dir) if agents_dir is not None else None
        self._agents: dict[str, AgentDefinition] = {}
        self._loaded = False
        self._lock = threading.Lock()

    @property
    def agents_dir(self) -> Path:
        if self._agents_dir is not None:
            return self._agents_dir
        return Path(getattr(settings, 'AGENTS_DIR', settings.BASE_DIR / 'agents'))

    def get_agent(self, agent_id: str) -> AgentDefinition:
        """Get an agent by ID.

        Args:
            agent_id: The agent identifier (YAML filename without extension).

        Raises:
            AgentNotFoundError: If the agent cannot be found.
        """
        self._ensure_loaded()

        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent '{agent_id}' not found in registry")

        return agent

    def list_agents(self) -> list[str]:
        """List all available agent IDs."""
        self._ensure_loaded()
        return list(self._agents.keys())

    def reload(self):
        """Force reload of all agents from disk."""
        with self._lock:
            self._agents = {}
            self._loaded = False
        self._ensure_loaded()

    def _ensure_loaded(self):
        if self._loaded:
            return
        with self._lock:
            if not self._loaded:
                self._agents = self._load_agents()
                self._loaded = True

    def _load_agents(self) -> dict[str, AgentDefinition]:
        """Load all agents from the agents directory."""
        agents_dir = self.agents_dir
        if not agents_dir.exists():
            logger.warning("Agents directory not found: %s", agents_dir)
            return {}

        # Find all .yml and .yaml files, sort for deterministic loading
        yaml_files = sorted(agents_dir.glob('*.yml')) + sorted(agents_dir.glob('*.yaml'))

        agents: dict[str, AgentDefinition] = {}
        for yaml_file in yaml_files:
            try:
                agent = parse_agent_yaml(yaml_file)
            except AgentParseError as e:
                # Re-raise parse errors to fail fast
                logger.error("Failed to parse agent file: %s", e)
                raise
            agents[agent.agent_id] = agent
            logger.debug("Loaded agent: %s from %s", agent.agent_id, yaml_file.name)

        logger.info("Loaded %d agents from %s", len(agents), agents_dir)
        return agents
