"""Immutable routing configuration for :class:`~study.services.ai.router.AIRouter`.

Values are read once from Django settings (which in turn read the
environment) and frozen for the lifetime of a router. Build a new router to
change configuration.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from study.services.base import ServiceNotConfigured

from .pricing import to_decimal


@dataclass(frozen=True)
class ModelSelection:
    """Model ids per task type."""

    chat: str = 'anthropic/claude-3-haiku'
    embedding: str = 'text-embedding-3-small'


@dataclass(frozen=True)
class AIConfig:
    primary_provider: str
    fallback_provider: Optional[str] = None
    daily_budget: Optional[Decimal] = None
    models: ModelSelection = field(default_factory=ModelSelection)
    meter_embeddings: bool = True
    request_timeout: float = 30.0
    default_max_tokens: int = 1000
    budget_period: timedelta = timedelta(days=1)

    def __post_init__(self) -> None:
        if not self.primary_provider:
            raise ServiceNotConfigured('AIConfig.primary_provider must be set.')
        if self.fallback_provider == self.primary_provider:
            raise ServiceNotConfigured('Fallback provider must differ from the primary provider.')
        if self.daily_budget is not None and self.daily_budget < 0:
            raise ServiceNotConfigured('AIConfig.daily_budget must not be negative.')
        if self.request_timeout <= 0:
            raise ServiceNotConfigured('AIConfig.request_timeout must be positive.')

    @property
    def provider_order(self) -> tuple[str, ...]:
        """Tier order: primary first, then the optional fallback."""
        if self.fallback_provider:
            return (self.primary_provider, self.fallback_provider)
        return (self.primary_provider,)

    @classmethod
    def from_settings(cls, settings_obj=None) -> 'AIConfig':
        """Build an :class:`AIConfig` from Django settings (``AI_*`` names)."""
        if settings_obj is None:
            from django.conf import settings as settings_obj  # noqa: PLC0415

        return cls(
            primary_provider=getattr(settings_obj, 'AI_PRIMARY_PROVIDER', 'openrouter'),
            fallback_provider=getattr(settings_obj, 'AI_FALLBACK_PROVIDER', None) or None,
            daily_budget=to_decimal(getattr(settings_obj, 'AI_DAILY_BUDGET', None)),
            models=ModelSelection(
                chat=getattr(settings_obj, 'AI_CHAT_MODEL', ModelSelection.chat),
                embedding=getattr(settings_obj, 'AI_EMBEDDING_MODEL', ModelSelection.embedding),
            ),
            meter_embeddings=getattr(settings_obj, 'AI_METER_EMBEDDINGS', True),
            request_timeout=float(getattr(settings_obj, 'AI_REQUEST_TIMEOUT', 30.0)),
            default_max_tokens=int(getattr(settings_obj, 'AI_DEFAULT_MAX_TOKENS', 1000)),
        )
