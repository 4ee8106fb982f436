from django.contrib import admin
from .models import AuditEvent


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('timestamp', 'action', 'outcome', 'resource_type', 'resource_id', 'user', 'hospital', 'response_time_ms')
    search_fields = ('resource_id', 'description', 'error_message', 'user__username')
    list_filter = ('action', 'outcome', 'resource_type', 'timestamp')
    readonly_fields = [field.name for field in AuditEvent._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
