from django.contrib import admin

from .models import AIJobsHistory, BudgetPeriod, IndexedDocument


@admin.register(BudgetPeriod)
class BudgetPeriodAdmin(admin.ModelAdmin):
    list_display = ('period_start', 'spend', 'updated_at')
    date_hierarchy = 'period_start'
    readonly_fields = ('period_start', 'spend', 'updated_at')

    def has_add_permission(self, request):
        return False


@admin.register(AIJobsHistory)
class AIJobsHistoryAdmin(admin.ModelAdmin):
    list_display = ('timestamp', 'agent', 'operation', 'user_id', 'provider', 'model', 'status', 'costs', 'duration_ms')
    list_filter = ('provider', 'operation', 'status')
    search_fields = ('agent', 'user_id', 'model')
    date_hierarchy = 'timestamp'
    readonly_fields = (
        'agent', 'operation', 'user_id', 'provider', 'model', 'status',
        'input_tokens', 'output_tokens', 'costs', 'timestamp', 'duration_ms',
        'error_message',
    )

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(IndexedDocument)
class IndexedDocumentAdmin(admin.ModelAdmin):
    list_display = ('title', 'source_id', 'user_id', 'course_id', 'chunk_count', 'indexed_at')
    list_filter = ('indexed_at',)
    search_fields = ('title', 'source_id', 'user_id', 'course_id')
    readonly_fields = ('source_id', 'user_id', 'course_id', 'content_hash', 'chunk_count', 'indexed_at')
