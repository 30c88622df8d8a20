"""Locally hosted Ollama provider adapter (zero-cost fallback tier)."""

import logging
from typing import Any, Optional, Sequence

import httpx

from study.services.base import (
    ProviderError,
    ProviderRequestFailed,
    ProviderTimeout,
    ProviderUnavailable,
)

from .base_provider import BaseProvider
from .pricing import estimate_tokens
from .schemas import ChatOptions, ChatResponse, EmbeddingResponse, Message, TokenUsage

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = 'http://localhost:11434'
DEFAULT_TEMPERATURE = 0.7
DEFAULT_NUM_PREDICT = 1000


class OllamaProvider(BaseProvider):
    """Talks to the Ollama REST API (``/api/chat``, ``/api/embeddings``, ``/api/tags``).

    Local inference is free, so :meth:`get_cost` always returns zero.
    """

    name = 'ollama'

    def __init__(
        self,
        api_key: str = '',
        *,
        base_url: str = DEFAULT_BASE_URL,
        chat_model: str = 'llama3.1:8b',
        embedding_model: str = 'nomic-embed-text',
        **kwargs: Any,
    ) -> None:
        super().__init__(api_key, chat_model=chat_model, embedding_model=embedding_model, **kwargs)
        self.base_url = base_url.rstrip('/')

    def _http(self) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=self.timeout)

    def _translate_error(self, exc: httpx.HTTPError) -> ProviderError:
        if isinstance(exc, httpx.TimeoutException):
            return ProviderTimeout(f'{self.name} request timed out after {self.timeout}s', self.name)
        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            if status >= 500:
                return ProviderUnavailable(f'{self.name} upstream error (HTTP {status}).', self.name)
            return ProviderRequestFailed(f'{self.name} rejected the request (HTTP {status}).', self.name)
        return ProviderUnavailable(f'{self.name} is unreachable at {self.base_url}: {exc}', self.name)

    def _decode(self, response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError:
            raise ProviderRequestFailed(
                f'{self.name} returned a non-JSON body from {response.request.url.path}.', self.name,
            )
        if not isinstance(data, dict):
            raise ProviderRequestFailed(f'{self.name} returned an unexpected JSON payload.', self.name)
        return data

    def _post(self, path: str, payload: dict) -> dict:
        try:
            with self._http() as client:
                response = client.post(path, json=payload)
                response.raise_for_status()
                return self._decode(response)
        except httpx.HTTPError as exc:
            raise self._translate_error(exc) from exc

    def chat(self, messages: Sequence[Message], options: Optional[ChatOptions] = None) -> ChatResponse:
        options = options or ChatOptions()
        model_id = self._resolve_chat_model(options)
        payload = {
            'model': model_id,
            'messages': [m.as_dict() for m in messages],
            'stream': False,
            'options': {
                'temperature': options.temperature if options.temperature is not None else DEFAULT_TEMPERATURE,
                'num_predict': options.max_tokens or DEFAULT_NUM_PREDICT,
            },
        }
        data = self._post('/api/chat', payload)
        message = data.get('message')
        if not isinstance(message, dict) or not isinstance(message.get('content'), str):
            raise ProviderRequestFailed(f"{self.name} chat response missing 'message.content'.", self.name)

        prompt_tokens = data.get('prompt_eval_count') or 0
        completion_tokens = data.get('eval_count') or 0
        return ChatResponse(
            content=message['content'],
            model=data.get('model') or model_id,
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            provider=self.name,
            raw=data,
        )

    def embed(self, texts: Sequence[str], model: Optional[str] = None) -> EmbeddingResponse:
        inputs = self._require_texts(texts)
        model_id = model or self.embedding_model

        embeddings: list[list[float]] = []
        for text in inputs:
            data = self._post('/api/embeddings', {'model': model_id, 'prompt': text})
            embedding = data.get('embedding')
            if not embedding or not isinstance(embedding, list):
                raise ProviderRequestFailed(f"{self.name} embeddings response missing 'embedding'.", self.name)
            embeddings.append(list(embedding))

        # Ollama reports no usage for embeddings; estimate it.
        prompt_tokens = sum(estimate_tokens(t) for t in inputs)
        return EmbeddingResponse(
            embeddings=embeddings,
            usage=TokenUsage(prompt_tokens=prompt_tokens, total_tokens=prompt_tokens),
            model=model_id,
            provider=self.name,
        )

    def list_models(self) -> list[str]:
        """Return the names of models installed on the Ollama host."""
        try:
            with self._http() as client:
                response = client.get('/api/tags')
                response.raise_for_status()
                data = self._decode(response)
        except httpx.HTTPError as exc:
            raise self._translate_error(exc) from exc
        return [m.get('name', '') for m in data.get('models') or [] if isinstance(m, dict)]

    def is_available(self) -> bool:
        try:
            installed = self.list_models()
        except ProviderError as exc:
            logger.warning('Provider %s not available: %s', self.name, exc)
            return False

        wanted = [m.split(':')[0] for m in (self.chat_model, self.embedding_model) if m]
        return any(w in name for name in installed for w in wanted)
