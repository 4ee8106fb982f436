from django.contrib import admin
from .models import Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('user', 'notification_type', 'title', 'related_object_type', 'read_at', 'created_at')
    list_filter = ('notification_type', 'read_at', 'created_at')
    search_fields = ('user__username', 'title', 'message', 'related_object_id')
    date_hierarchy = 'created_at'
