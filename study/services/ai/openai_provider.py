"""OpenAI-compatible provider adapters (OpenAI, OpenRouter)."""

import logging
from decimal import Decimal
from typing import Any, Optional, Sequence

from study.services.base import (
    ProviderError,
    ProviderRequestFailed,
    ProviderTimeout,
    ProviderUnavailable,
)

from .base_provider import BaseProvider
from .pricing import ModelPricing
from .schemas import ChatOptions, ChatResponse, EmbeddingResponse, Message, TokenUsage

logger = logging.getLogger(__name__)


class OpenAIProvider(BaseProvider):
    """Calls the OpenAI Chat Completions and Embeddings APIs."""

    name = 'openai'
    base_url: Optional[str] = None
    default_pricing = ModelPricing(
        input_per_1m=Decimal('0.15'),
        output_per_1m=Decimal('0.60'),
        embedding_per_1m=Decimal('0.02'),
    )

    def __init__(
        self,
        api_key: str = '',
        *,
        organization_id: str = '',
        base_url: Optional[str] = None,
        chat_model: str = 'gpt-4o-mini',
        embedding_model: str = 'text-embedding-3-small',
        **kwargs: Any,
    ) -> None:
        super().__init__(api_key, chat_model=chat_model, embedding_model=embedding_model, **kwargs)
        self._organization_id = organization_id
        if base_url:
            self.base_url = base_url

    # ------------------------------------------------------------------
    # Client construction
    # ------------------------------------------------------------------

    def _client(self):
        if not self._api_key:
            raise ProviderUnavailable(f'No API key configured for provider "{self.name}".', self.name)
        try:
            import openai  # noqa: PLC0415
        except ImportError as exc:
            raise ImportError(
                'openai package is required for OpenAIProvider. '
                'Install it with: pip install openai'
            ) from exc

        client_kwargs: dict[str, Any] = {
            'api_key': self._api_key,
            'timeout': self.timeout,
            # Same-provider retries are never wanted; the router falls back instead.
            'max_retries': 0,
        }
        if self._organization_id:
            client_kwargs['organization'] = self._organization_id
        if self.base_url:
            client_kwargs['base_url'] = self.base_url
        return openai.OpenAI(**client_kwargs)

    def _translate_error(self, exc: Exception) -> ProviderError:
        """Map an ``openai`` SDK exception onto the provider error taxonomy."""
        import openai  # noqa: PLC0415

        if isinstance(exc, openai.APITimeoutError):
            return ProviderTimeout(f'{self.name} request timed out after {self.timeout}s', self.name)
        if isinstance(exc, openai.APIConnectionError):
            return ProviderUnavailable(f'{self.name} is unreachable: {exc}', self.name)
        if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return ProviderUnavailable(f'{self.name} rejected the credentials.', self.name)
        if isinstance(exc, openai.APIStatusError) and exc.status_code >= 500:
            return ProviderUnavailable(f'{self.name} upstream error (HTTP {exc.status_code}).', self.name)
        return ProviderRequestFailed(f'{self.name} rejected the request: {exc}', self.name)

    # ------------------------------------------------------------------
    # BaseProvider API
    # ------------------------------------------------------------------

    def chat(self, messages: Sequence[Message], options: Optional[ChatOptions] = None) -> ChatResponse:
        import openai  # noqa: PLC0415

        options = options or ChatOptions()
        client = self._client()
        model_id = self._resolve_chat_model(options)

        call_kwargs: dict[str, Any] = {
            'model': model_id,
            'messages': [m.as_dict() for m in messages],
        }
        if options.temperature is not None:
            call_kwargs['temperature'] = options.temperature
        if options.max_tokens is not None:
            call_kwargs['max_tokens'] = options.max_tokens

        try:
            if options.stream:
                return self._chat_streaming(client, call_kwargs, model_id)
            response = client.chat.completions.create(**call_kwargs)
        except openai.OpenAIError as exc:
            raise self._translate_error(exc) from exc

        text = (response.choices[0].message.content or '') if response.choices else ''
        usage: Optional[TokenUsage] = None
        if response.usage:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )

        return ChatResponse(
            content=text,
            model=response.model or model_id,
            usage=usage,
            provider=self.name,
            raw=response,
        )

    def _chat_streaming(self, client, call_kwargs: dict, model_id: str) -> ChatResponse:
        """Consume a streamed completion and collect it into one response."""
        stream = client.chat.completions.create(
            stream=True,
            stream_options={'include_usage': True},
            **call_kwargs,
        )
        parts: list[str] = []
        usage: Optional[TokenUsage] = None
        resolved_model = model_id
        for chunk in stream:
            resolved_model = getattr(chunk, 'model', None) or resolved_model
            if chunk.choices:
                delta = chunk.choices[0].delta.content
                if delta:
                    parts.append(delta)
            if getattr(chunk, 'usage', None):
                usage = TokenUsage(
                    prompt_tokens=chunk.usage.prompt_tokens,
                    completion_tokens=chunk.usage.completion_tokens,
                    total_tokens=chunk.usage.total_tokens,
                )
        return ChatResponse(content=''.join(parts), model=resolved_model, usage=usage, provider=self.name)

    def embed(self, texts: Sequence[str], model: Optional[str] = None) -> EmbeddingResponse:
        import openai  # noqa: PLC0415

        inputs = self._require_texts(texts)
        client = self._client()
        model_id = model or self.embedding_model

        try:
            response = client.embeddings.create(model=model_id, input=inputs)
        except openai.OpenAIError as exc:
            raise self._translate_error(exc) from exc

        data = sorted(response.data, key=lambda d: d.index)
        usage: Optional[TokenUsage] = None
        if response.usage:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens,
                total_tokens=response.usage.total_tokens,
            )
        return EmbeddingResponse(
            embeddings=[list(d.embedding) for d in data],
            usage=usage,
            model=getattr(response, 'model', None) or model_id,
            provider=self.name,
            raw=response,
        )

    def is_available(self) -> bool:
        if not self._api_key:
            logger.debug('Provider %s unavailable: no API key configured.', self.name)
            return False
        import openai  # noqa: PLC0415

        try:
            self._client().models.list()
            return True
        except (openai.OpenAIError, ProviderError) as exc:
            logger.warning('Provider %s not available: %s', self.name, type(exc).__name__)
            return False


class OpenRouterProvider(OpenAIProvider):
    """OpenRouter speaks the OpenAI wire protocol behind a different base URL."""

    name = 'openrouter'
    base_url = 'https://openrouter.ai/api/v1'
    # Approximate costs per 1M tokens for the default Claude 3 Haiku route.
    default_pricing = ModelPricing(
        input_per_1m=Decimal('0.25'),
        output_per_1m=Decimal('1.25'),
        embedding_per_1m=Decimal('0.02'),
    )

    def __init__(
        self,
        api_key: str = '',
        *,
        chat_model: str = 'anthropic/claude-3-haiku',
        embedding_model: str = 'text-embedding-3-small',
        **kwargs: Any,
    ) -> None:
        super().__init__(api_key, chat_model=chat_model, embedding_model=embedding_model, **kwargs)
