"""Request / response dataclasses for the AI Core Service."""

import enum
from dataclasses import dataclass, field
from typing import Any, Optional

from study.services.base import InvalidArgument

VALID_ROLES = ('system', 'user', 'assistant')


class TokenKind(str, enum.Enum):
    """Token categories a provider prices separately."""

    INPUT = 'input'
    OUTPUT = 'output'
    EMBEDDING = 'embedding'


@dataclass(frozen=True)
class Message:
    """A single conversation turn."""

    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in VALID_ROLES:
            raise InvalidArgument(f'Invalid message role: {self.role!r}')
        if not isinstance(self.content, str):
            raise InvalidArgument('Message content must be a string.')

    def as_dict(self) -> dict:
        return {'role': self.role, 'content': self.content}

    @classmethod
    def coerce(cls, value: Any) -> 'Message':
        """Accept a :class:`Message`, an OpenAI-style dict or a bare string (user turn)."""
        if isinstance(value, Message):
            return value
        if isinstance(value, dict):
            return cls(role=value.get('role', 'user'), content=value.get('content', ''))
        if isinstance(value, str):
            return cls(role='user', content=value)
        raise InvalidArgument(f'Cannot interpret {type(value).__name__} as a message.')


def normalize_messages(messages) -> tuple[Message, ...]:
    """Convert a caller-supplied conversation into an immutable tuple of messages."""
    if not messages:
        raise InvalidArgument('At least one message is required.')
    return tuple(Message.coerce(m) for m in messages)


@dataclass(frozen=True)
class ChatOptions:
    """Per-request chat options. Immutable once submitted to the router."""

    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    model: Optional[str] = None
    stream: bool = False

    def __post_init__(self) -> None:
        if self.temperature is not None and not 0.0 <= self.temperature <= 2.0:
            raise InvalidArgument(f'temperature must be within [0, 2], got {self.temperature}')
        if self.max_tokens is not None and self.max_tokens <= 0:
            raise InvalidArgument(f'max_tokens must be positive, got {self.max_tokens}')


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ChatResponse:
    """Structured response returned to callers of AIRouter."""

    content: str
    model: str
    usage: Optional[TokenUsage] = None
    provider: str = ''
    raw: Any = None


@dataclass
class EmbeddingResponse:
    """Embeddings positionally aligned with the request's input texts."""

    embeddings: list[list[float]]
    usage: Optional[TokenUsage] = None
    model: str = ''
    provider: str = ''
    raw: Any = field(default=None, repr=False)
