"""Audit trail for provider calls made through the AI router."""

import abc
import logging
from decimal import Decimal
from typing import Any, Optional

from django.utils import timezone

logger = logging.getLogger(__name__)


class JobRecorder(abc.ABC):
    """Receives one record per provider attempt."""

    @abc.abstractmethod
    def start(self, *, agent: str, operation: str, provider: str, model: str, user_id: Optional[str]) -> Any:
        """Open a record and return an opaque handle."""

    @abc.abstractmethod
    def complete(
        self,
        job: Any,
        *,
        model: str,
        input_tokens: Optional[int],
        output_tokens: Optional[int],
        costs: Decimal,
        duration_ms: int,
    ) -> None:
        """Mark *job* as completed."""

    @abc.abstractmethod
    def fail(self, job: Any, *, error_message: str, duration_ms: int, status: str = 'Error') -> None:
        """Mark *job* as failed (``'Error'``) or budget-denied (``'Denied'``)."""


class DatabaseJobRecorder(JobRecorder):
    """Writes :class:`~study.models.AIJobsHistory` rows via the Django ORM."""

    def start(self, *, agent, operation, provider, model, user_id):
        from study.models import AIJobsHistory  # local import avoids circular deps

        return AIJobsHistory.objects.create(
            agent=agent,
            operation=operation,
            user_id=user_id or '',
            provider=provider,
            model=model,
            status=AIJobsHistory.Status.PENDING,
            timestamp=timezone.now(),
        )

    def complete(self, job, *, model, input_tokens, output_tokens, costs, duration_ms):
        from study.models import AIJobsHistory  # local import

        job.status = AIJobsHistory.Status.COMPLETED
        job.model = model
        job.input_tokens = input_tokens
        job.output_tokens = output_tokens
        job.costs = costs
        job.duration_ms = duration_ms
        job.save(update_fields=['status', 'model', 'input_tokens', 'output_tokens', 'costs', 'duration_ms'])

    def fail(self, job, *, error_message, duration_ms, status='Error'):
        job.status = status
        job.duration_ms = duration_ms
        job.error_message = error_message
        job.save(update_fields=['status', 'duration_ms', 'error_message'])
