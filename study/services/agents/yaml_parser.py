"""YAML parser for agent definitions."""

import yaml
from pathlib import Path

from study.services.base import InvalidArgument

from .models import AgentDefinition

REQUIRED_FIELDS = ('name', 'description', 'role', 'task')
_ALLOWED_PARAMETERS = {'temperature', 'max_tokens'}


class AgentParseError(Exception):
    """Raised when an agent YAML file cannot be parsed."""

    def __init__(self, message: str, file_path: Path):
        self.file_path = file_path
        super().__init__(f"{message} (file: {file_path})")


def parse_agent_yaml(file_path: Path) -> AgentDefinition:
    """Parse a YAML agent definition file.

    Args:
        file_path: Path to the YAML file.

    Returns:
        AgentDefinition instance.

    Raises:
        AgentParseError: If the file cannot be parsed or required fields are missing.
    """
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise AgentParseError("File not found", file_path)
    except yaml.YAMLError as e:
        raise AgentParseError(f"Invalid YAML syntax: {e}", file_path)
    except OSError as e:
        raise AgentParseError(f"Failed to read file: {e}", file_path)

    if not isinstance(data, dict):
        raise AgentParseError("YAML root must be a dictionary", file_path)

    missing_fields = [field for field in REQUIRED_FIELDS if field not in data]
    if missing_fields:
        raise AgentParseError(
            f"Missing required fields: {', '.join(missing_fields)}",
            file_path
        )

    parameters = data.get('parameters') or {}
    if not isinstance(parameters, dict):
        raise AgentParseError("'parameters' must be a mapping", file_path)
    unknown = sorted(set(parameters) - _ALLOWED_PARAMETERS)
    if unknown:
        raise AgentParseError(f"Unknown parameters: {', '.join(unknown)}", file_path)

    # Extract agent_id from filename (stem without extension)
    agent = AgentDefinition(
        agent_id=file_path.stem,
        name=data['name'],
        description=data['description'],
        role=data['role'],
        task=data['task'],
        parameters=parameters,
    )
    try:
        agent.chat_options
    except InvalidArgument as e:
        raise AgentParseError(f"Invalid parameters: {e}", file_path)
    return agent
