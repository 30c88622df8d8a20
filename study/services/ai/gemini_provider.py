"""Google Gemini provider adapter."""

import logging
from decimal import Decimal
from typing import Any, Optional, Sequence

import httpx

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

# Gemini role mapping: OpenAI → Gemini
_ROLE_MAP = {
    'user': 'user',
    'assistant': 'model',
    # system messages are handled separately as system_instruction
    'system': 'user',
}


def _convert_messages(messages: Sequence[Message]) -> tuple[Optional[str], list[dict]]:
    """Split a message list into a system instruction + Gemini contents.

    Returns:
        A tuple of ``(system_instruction_text, gemini_contents)`` where
        *system_instruction_text* is ``None`` when no system message is present.
    """
    system_parts: list[str] = []
    contents: list[dict] = []

    for msg in messages:
        if msg.role == 'system':
            system_parts.append(msg.content)
        else:
            contents.append({'role': _ROLE_MAP.get(msg.role, 'user'), 'parts': [{'text': msg.content}]})

    system_instruction = '\n'.join(system_parts) if system_parts else None
    return system_instruction, contents


class GeminiProvider(BaseProvider):
    """Calls the Google Gemini API via the ``google-genai`` SDK."""

    name = 'gemini'
    default_pricing = ModelPricing(
        input_per_1m=Decimal('0.075'),
        output_per_1m=Decimal('0.30'),
        embedding_per_1m=Decimal('0'),
    )

    def __init__(
        self,
        api_key: str = '',
        *,
        chat_model: str = 'gemini-1.5-flash',
        embedding_model: str = 'text-embedding-004',
        **kwargs: Any,
    ) -> None:
        super().__init__(api_key, chat_model=chat_model, embedding_model=embedding_model, **kwargs)

    def _client(self):
        if not self._api_key:
            raise ProviderUnavailable(f'No API key configured for provider "{self.name}".', self.name)
        try:
            from google import genai  # noqa: PLC0415
            from google.genai import types as genai_types  # noqa: PLC0415
        except ImportError as exc:
            raise ImportError(
                'google-genai package is required for GeminiProvider. '
                'Install it with: pip install google-genai'
            ) from exc

        # HttpOptions.timeout is expressed in milliseconds.
        http_options = genai_types.HttpOptions(timeout=int(self.timeout * 1000))
        return genai.Client(api_key=self._api_key, http_options=http_options)

    def _translate_error(self, exc: Exception) -> ProviderError:
        from google.genai import errors as genai_errors  # noqa: PLC0415

        if isinstance(exc, httpx.TimeoutException):
            return ProviderTimeout(f'{self.name} request timed out after {self.timeout}s', self.name)
        if isinstance(exc, httpx.TransportError):
            return ProviderUnavailable(f'{self.name} is unreachable: {exc}', self.name)
        if isinstance(exc, genai_errors.ServerError):
            return ProviderUnavailable(f'{self.name} upstream error (HTTP {exc.code}).', self.name)
        if isinstance(exc, genai_errors.ClientError) and exc.code in (401, 403):
            return ProviderUnavailable(f'{self.name} rejected the credentials.', self.name)
        return ProviderRequestFailed(f'{self.name} rejected the request: {exc}', self.name)

    def _call(self, fn, **kwargs):
        from google.genai import errors as genai_errors  # noqa: PLC0415

        try:
            return fn(**kwargs)
        except (genai_errors.APIError, httpx.HTTPError) as exc:
            raise self._translate_error(exc) from exc

    def chat(self, messages: Sequence[Message], options: Optional[ChatOptions] = None) -> ChatResponse:
        from google.genai import types as genai_types  # noqa: PLC0415

        options = options or ChatOptions()
        client = self._client()
        model_id = self._resolve_chat_model(options)

        system_instruction, contents = _convert_messages(messages)

        config_kwargs: dict[str, Any] = {}
        if options.temperature is not None:
            config_kwargs['temperature'] = options.temperature
        if options.max_tokens is not None:
            config_kwargs['max_output_tokens'] = options.max_tokens
        if system_instruction:
            config_kwargs['system_instruction'] = system_instruction

        generate_config = genai_types.GenerateContentConfig(**config_kwargs) if config_kwargs else None

        call_kwargs: dict[str, Any] = {'model': model_id, 'contents': contents}
        if generate_config is not None:
            call_kwargs['config'] = generate_config

        response = self._call(client.models.generate_content, **call_kwargs)

        text = response.text or ''

        usage: Optional[TokenUsage] = None
        meta = getattr(response, 'usage_metadata', None)
        if meta:
            prompt_tokens = getattr(meta, 'prompt_token_count', None) or 0
            completion_tokens = getattr(meta, 'candidates_token_count', None) or 0
            usage = TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            )

        return ChatResponse(
            content=text,
            model=getattr(response, 'model_version', None) or model_id,
            usage=usage,
            provider=self.name,
            raw=response,
        )

    def embed(self, texts: Sequence[str], model: Optional[str] = None) -> EmbeddingResponse:
        inputs = self._require_texts(texts)
        client = self._client()
        model_id = model or self.embedding_model

        response = self._call(client.models.embed_content, model=model_id, contents=inputs)

        return EmbeddingResponse(
            embeddings=[list(e.values) for e in response.embeddings],
            model=model_id,
            provider=self.name,
            raw=response,
        )

    def is_available(self) -> bool:
        if not self._api_key:
            logger.debug('Provider %s unavailable: no API key configured.', self.name)
            return False
        try:
            self._call(self._client().models.get, model=self.chat_model)
            return True
        except (ImportError, ProviderError) as exc:
            logger.warning('Provider %s not available: %s', self.name, type(exc).__name__)
            return False
