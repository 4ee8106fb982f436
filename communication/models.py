from django.db import models
from django.conf import settings


class Notification(models.Model):
    """In-app notification for a user."""
    class NotificationType(models.TextChoices):
        DATA_REQUEST_RECEIVED = 'data_request_received', 'Data Request Received'
        DATA_REQUEST_RESOLVED = 'data_request_resolved', 'Data Request Resolved'
        SYSTEM = 'system', 'System'

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='notifications')
    title = models.CharField(max_length=255)
    message = models.TextField()
    notification_type = models.CharField(max_length=30, choices=NotificationType.choices)
    related_object_id = models.CharField(max_length=64, blank=True)
    related_object_type = models.CharField(max_length=50, blank=True)
    read_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'read_at']),
        ]

    def __str__(self):
        return f"{self.notification_type} notification for {self.user.username}"
