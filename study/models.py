from django.db import models
from django.utils import timezone


class BudgetPeriod(models.Model):
    """Committed AI spend for one budget period (one row per period)."""

    period_start = models.DateTimeField(unique=True)
    spend = models.DecimalField(max_digits=12, decimal_places=8, default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Budget Period'
        verbose_name_plural = 'Budget Periods'
        ordering = ['-period_start']

    def __str__(self):
        return f'{self.period_start:%Y-%m-%d %H:%M} – {self.spend} USD'


class AIJobsHistory(models.Model):
    """Audit log for every AI call attempted through the AIRouter."""

    class Status(models.TextChoices):
        PENDING = 'Pending', 'Pending'
        COMPLETED = 'Completed', 'Completed'
        ERROR = 'Error', 'Error'
        DENIED = 'Denied', 'Denied'

    class Operation(models.TextChoices):
        CHAT = 'chat', 'Chat'
        EMBED = 'embed', 'Embed'

    agent = models.CharField(max_length=200, default='study.ai')
    operation = models.CharField(max_length=20, choices=Operation.choices, default=Operation.CHAT)
    user_id = models.CharField(max_length=64, blank=True, default='')
    provider = models.CharField(max_length=50)
    model = models.CharField(max_length=200, blank=True, default='')
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
    )
    input_tokens = models.PositiveIntegerField(null=True, blank=True)
    output_tokens = models.PositiveIntegerField(null=True, blank=True)
    costs = models.DecimalField(max_digits=12, decimal_places=8, null=True, blank=True)
    timestamp = models.DateTimeField(default=timezone.now)
    duration_ms = models.PositiveIntegerField(null=True, blank=True)
    error_message = models.TextField(blank=True, default='')

    class Meta:
        verbose_name = 'AI Jobs History'
        verbose_name_plural = 'AI Jobs History'
        ordering = ['-timestamp']
        indexes = [
            models.Index(fields=['provider', 'model', 'status', 'timestamp'], name='study_job_provider_idx'),
            models.Index(fields=['user_id', 'timestamp'], name='study_job_user_idx'),
        ]

    def __str__(self):
        return f'{self.agent} | {self.status} | {self.timestamp}'


class IndexedDocument(models.Model):
    """Bookkeeping for study material written to the vector store."""

    source_id = models.CharField(max_length=64, unique=True)
    user_id = models.CharField(max_length=64, db_index=True)
    course_id = models.CharField(max_length=64, blank=True, default='')
    title = models.CharField(max_length=255, blank=True, default='')
    content_hash = models.CharField(max_length=64)
    chunk_count = models.PositiveIntegerField(default=0)
    indexed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        verbose_name = 'Indexed Document'
        verbose_name_plural = 'Indexed Documents'
        ordering = ['-indexed_at']
        indexes = [
            models.Index(fields=['user_id', 'course_id'], name='study_doc_scope_idx'),
        ]

    def __str__(self):
        return self.title or self.source_id
