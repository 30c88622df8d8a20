"""Abstract base class for AI provider implementations."""

import abc
from decimal import Decimal
from typing import Any, Optional, Sequence, Union

from study.services.base import InvalidArgument

from .pricing import FREE, ModelPricing, calculate_cost
from .schemas import ChatOptions, ChatResponse, EmbeddingResponse, Message, TokenKind


class BaseProvider(abc.ABC):
    """Interface that every provider adapter must implement.

    Adapters translate between the router's data model and one upstream API.
    They never touch the budget ledger or any other shared state; cost
    accounting is the router's job.
    """

    #: Unique identifier used in :class:`~study.services.ai.config.AIConfig` (e.g. ``'ollama'``).
    name: str = ''

    #: Pricing used when none is passed to the constructor.
    default_pricing: ModelPricing = FREE

    def __init__(
        self,
        api_key: str = '',
        *,
        chat_model: str = '',
        embedding_model: str = '',
        timeout: float = 30.0,
        pricing: Optional[ModelPricing] = None,
        **kwargs: Any,
    ) -> None:
        self._api_key = api_key
        self.chat_model = chat_model
        self.embedding_model = embedding_model
        self.timeout = timeout
        self.pricing = pricing or self.default_pricing

    def __repr__(self) -> str:
        # Never include the API key.
        return f'<{type(self).__name__} name={self.name!r} chat_model={self.chat_model!r}>'

    @abc.abstractmethod
    def chat(self, messages: Sequence[Message], options: Optional[ChatOptions] = None) -> ChatResponse:
        """Send a chat completion request and return a :class:`ChatResponse`.

        Args:
            messages: Conversation, oldest first.
            options: Per-request options. ``options.model`` overrides the
                adapter's default chat model.

        Raises:
            ProviderUnavailable: Credentials missing or upstream unreachable.
            ProviderRequestFailed: Non-retryable upstream rejection.
            ProviderTimeout: The call exceeded :attr:`timeout`.
        """

    @abc.abstractmethod
    def embed(self, texts: Sequence[str], model: Optional[str] = None) -> EmbeddingResponse:
        """Return one embedding per input text, in input order.

        Raises:
            InvalidArgument: If *texts* is empty.
        """

    @abc.abstractmethod
    def is_available(self) -> bool:
        """Liveness / credential check. Never raises."""

    def get_cost(self, tokens: int, kind: Union[TokenKind, str]) -> Decimal:
        """Return the USD cost of *tokens* tokens of the given *kind*."""
        return calculate_cost(tokens, self.pricing.price_for(kind))

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    @staticmethod
    def _require_texts(texts: Sequence[str]) -> list[str]:
        if not texts:
            raise InvalidArgument('embed() requires at least one input text.')
        return [str(t) for t in texts]

    def _resolve_chat_model(self, options: ChatOptions) -> str:
        return options.model or self.chat_model
