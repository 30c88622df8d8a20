"""AI Router – picks a provider tier per request, enforces the budget and falls back."""

import logging
import time
from dataclasses import replace
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional, Sequence

from study.services.base import (
    AllProvidersExhausted,
    BudgetExceeded,
    InvalidArgument,
    ProviderError,
    ProviderUnavailable,
    ServiceNotConfigured,
)
from .base_provider import BaseProvider
from .budget import BudgetLedger
from .config import AIConfig
from .gemini_provider import GeminiProvider
from .history import JobRecorder
from .ollama_provider import OllamaProvider
from .openai_provider import OpenAIProvider, OpenRouterProvider
from .pricing import ZERO, estimate_tokens
from .schemas import (
    ChatOptions,
    ChatResponse,
    EmbeddingResponse,
    Message,
    TokenKind,
    normalize_messages,
)

logger = logging.getLogger(__name__)

_PROVIDER_CLASSES: dict[str, type[BaseProvider]] = {
    OpenAIProvider.name: OpenAIProvider,
    OpenRouterProvider.name: OpenRouterProvider,
    GeminiProvider.name: GeminiProvider,
    OllamaProvider.name: OllamaProvider,
}

# Per-message framing overhead added to the character-based prompt estimate.
_MESSAGE_OVERHEAD_TOKENS = 4


def build_provider(name: str, **kwargs: Any) -> BaseProvider:
    """Instantiate the registered :class:`BaseProvider` called *name*."""
    cls = _PROVIDER_CLASSES.get(name)
    if cls is None:
        raise ServiceNotConfigured(f'No provider implementation for "{name}".')
    return cls(**kwargs)


class AIRouter:
    """Central entry-point for all AI calls.

    Every request walks the tiers ``[primary, fallback]`` in order. For each
    tier the estimated cost is reserved on the :class:`BudgetLedger` first;
    a denied tier is skipped without contacting the provider. The reserved
    amount is committed with the actual cost on success and released on
    failure. A failed call is never retried against the same provider.

    Usage::

        router = AIRouter(config, providers={'openrouter': ..., 'ollama': ...}, ledger=ledger)
        response = router.chat([Message('user', 'Hello!')])
    """

    def __init__(
        self,
        config: AIConfig,
        providers: Mapping[str, BaseProvider],
        ledger: Optional[BudgetLedger] = None,
        history: Optional[JobRecorder] = None,
    ) -> None:
        missing = [name for name in config.provider_order if name not in providers]
        if missing:
            raise ServiceNotConfigured(f'Configured provider(s) not registered: {", ".join(missing)}')

        self._config = config
        self._providers = dict(providers)
        self._ledger = ledger if ledger is not None else BudgetLedger(
            config.daily_budget, period=config.budget_period,
        )
        self._history = history

    # ---------------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------------

    @property
    def config(self) -> AIConfig:
        return self._config

    @property
    def ledger(self) -> BudgetLedger:
        return self._ledger

    def chat(
        self,
        messages: Sequence,
        options: Optional[ChatOptions] = None,
        *,
        agent: str = 'study.ai',
        user_id: Optional[str] = None,
    ) -> ChatResponse:
        """Send a chat-completion request through the provider tiers.

        Args:
            messages: Conversation, oldest first (:class:`Message`, dicts or strings).
            options: Per-request options. ``options.model`` only applies to
                the primary tier; a fallback uses its own chat model.
            agent: Label written to the job history.
            user_id: Requesting user for the job history.

        Returns:
            :class:`ChatResponse` whose ``model``/``provider`` name what served it.

        Raises:
            InvalidArgument: Malformed messages or options.
            BudgetExceeded: Every tier was denied by the budget.
            AllProvidersExhausted: No tier produced a response.
        """
        conversation = normalize_messages(messages)
        options = options or ChatOptions()

        def model_for(tier: int, provider: BaseProvider) -> str:
            if tier == 0:
                return options.model or self._config.models.chat
            return provider.chat_model

        def invoke(provider: BaseProvider, model: str) -> ChatResponse:
            return provider.chat(conversation, replace(options, model=model))

        def actual_cost(provider: BaseProvider, response: ChatResponse, estimate: Decimal) -> Decimal:
            if response.usage is None:
                return estimate
            return (
                provider.get_cost(response.usage.prompt_tokens, TokenKind.INPUT)
                + provider.get_cost(response.usage.completion_tokens, TokenKind.OUTPUT)
            )

        response, provider_name, model = self._route(
            operation='chat',
            metered=True,
            model_for=model_for,
            estimate=lambda provider, _model: self.estimate_chat_cost(provider, conversation, options),
            invoke=invoke,
            actual_cost=actual_cost,
            agent=agent,
            user_id=user_id,
        )
        response.model = response.model or model
        response.provider = provider_name
        return response

    def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        options: Optional[ChatOptions] = None,
        agent: str = 'study.ai',
        user_id: Optional[str] = None,
    ) -> ChatResponse:
        """Shortcut for single-prompt generation.

        Wraps *prompt* in a ``user`` message (preceded by an optional system
        message) and delegates to :meth:`chat`.
        """
        messages = [Message('system', system)] if system else []
        messages.append(Message('user', prompt))
        return self.chat(messages, options, agent=agent, user_id=user_id)

    def embed(
        self,
        texts: Sequence[str],
        *,
        agent: str = 'study.ai.embed',
        user_id: Optional[str] = None,
    ) -> EmbeddingResponse:
        """Embed *texts* through the provider tiers.

        Metered against the budget unless ``AIConfig.meter_embeddings`` is off.
        """
        if not texts:
            raise InvalidArgument('embed() requires at least one input text.')
        inputs = [str(t) for t in texts]

        def model_for(tier: int, provider: BaseProvider) -> str:
            return self._config.models.embedding if tier == 0 else provider.embedding_model

        def invoke(provider: BaseProvider, model: str) -> EmbeddingResponse:
            response = provider.embed(inputs, model=model)
            if len(response.embeddings) != len(inputs):
                raise ProviderUnavailable(
                    f'{provider.name} returned {len(response.embeddings)} embeddings for {len(inputs)} inputs.',
                    provider.name,
                )
            return response

        def actual_cost(provider: BaseProvider, response: EmbeddingResponse, estimate: Decimal) -> Decimal:
            if response.usage is None:
                return estimate
            tokens = response.usage.total_tokens or response.usage.prompt_tokens
            return provider.get_cost(tokens, TokenKind.EMBEDDING)

        response, provider_name, model = self._route(
            operation='embed',
            metered=self._config.meter_embeddings,
            model_for=model_for,
            estimate=lambda provider, _model: self.estimate_embedding_cost(provider, inputs),
            invoke=invoke,
            actual_cost=actual_cost,
            agent=agent,
            user_id=user_id,
        )
        response.model = response.model or model
        response.provider = provider_name
        return response

    def estimate_chat_cost(
        self,
        provider: BaseProvider,
        messages: Sequence[Message],
        options: Optional[ChatOptions] = None,
    ) -> Decimal:
        """Upper-bound style estimate used for admission control."""
        options = options or ChatOptions()
        prompt_tokens = sum(estimate_tokens(m.content) + _MESSAGE_OVERHEAD_TOKENS for m in messages)
        output_tokens = options.max_tokens or self._config.default_max_tokens
        return (
            provider.get_cost(prompt_tokens, TokenKind.INPUT)
            + provider.get_cost(output_tokens, TokenKind.OUTPUT)
        )

    def estimate_embedding_cost(self, provider: BaseProvider, texts: Sequence[str]) -> Decimal:
        tokens = sum(estimate_tokens(t) for t in texts)
        return provider.get_cost(tokens, TokenKind.EMBEDDING)

    def available_providers(self) -> list[str]:
        """Names of registered providers whose liveness check currently passes."""
        return [name for name, provider in self._providers.items() if provider.is_available()]

    def get_provider(self, name: str) -> Optional[BaseProvider]:
        return self._providers.get(name)

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    def _route(
        self,
        *,
        operation: str,
        metered: bool,
        model_for: Callable[[int, BaseProvider], str],
        estimate: Callable[[BaseProvider, str], Decimal],
        invoke: Callable[[BaseProvider, str], Any],
        actual_cost: Callable[[BaseProvider, Any, Decimal], Decimal],
        agent: str,
        user_id: Optional[str],
    ) -> tuple[Any, str, str]:
        """Walk the tiers and return ``(result, provider_name, model_id)``."""
        order = self._config.provider_order
        failures: list[tuple[str, Exception]] = []
        denied: list[str] = []

        for tier, name in enumerate(order):
            provider = self._providers[name]
            model = model_for(tier, provider)
            estimated = estimate(provider, model) if metered else ZERO

            reservation = None
            if metered:
                admission = self._ledger.reserve(estimated)
                if not admission:
                    logger.info(
                        'AI %s: %s denied by budget (estimate=%s, remaining=%s)',
                        operation, name, estimated, admission.remaining,
                    )
                    if self._history is not None:
                        job = self._history.start(
                            agent=agent, operation=operation, provider=name, model=model, user_id=user_id,
                        )
                        self._history.fail(
                            job, error_message='Budget admission denied.', duration_ms=0, status='Denied',
                        )
                    denied.append(name)
                    failures.append((name, BudgetExceeded(f'Budget denied {name} (estimate {estimated}).')))
                    continue
                reservation = admission.reservation

            try:
                if not provider.is_available():
                    raise ProviderUnavailable(f'{name} reports unavailable.', name)
                result, job, started = self._invoke_recorded(operation, provider, model, invoke, agent, user_id)
            except ProviderError as exc:
                self._ledger.release(reservation)
                failures.append((name, exc))
                logger.warning(
                    'AI %s: provider %s failed (%s): %s', operation, name, type(exc).__name__, exc,
                )
                continue
            except BaseException:
                self._ledger.release(reservation)
                raise

            cost = actual_cost(provider, result, estimated)
            if metered:
                self._ledger.commit(cost, reservation)
            self._complete_recorded(job, started, model, result, cost)
            if tier > 0:
                logger.info('AI %s served by fallback provider %s (model=%s)', operation, name, model)
            return result, name, model

        if denied and len(denied) == len(order):
            raise BudgetExceeded(
                f'AI {operation} denied by budget for all providers: {", ".join(denied)}'
            )
        summary = '; '.join(f'{name}: {type(exc).__name__}' for name, exc in failures)
        raise AllProvidersExhausted(f'No AI provider could serve {operation} ({summary})', failures)

    def _invoke_recorded(self, operation, provider, model, invoke, agent, user_id):
        job = None
        if self._history is not None:
            job = self._history.start(
                agent=agent, operation=operation, provider=provider.name, model=model, user_id=user_id,
            )
        start = time.monotonic()
        try:
            result = invoke(provider, model)
        except Exception as exc:
            if job is not None:
                self._history.fail(
                    job, error_message=str(exc), duration_ms=int((time.monotonic() - start) * 1000),
                )
            raise
        return result, job, start

    def _complete_recorded(self, job, start: float, model: str, result, cost: Decimal) -> None:
        if job is None:
            return
        usage = getattr(result, 'usage', None)
        self._history.complete(
            job,
            model=getattr(result, 'model', None) or model,
            input_tokens=usage.prompt_tokens if usage else None,
            output_tokens=usage.completion_tokens if usage else None,
            costs=cost,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
