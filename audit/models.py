from django.db import models
from django.conf import settings
import uuid


class AuditEvent(models.Model):
    """
    Append-only audit trail entry.

    Rows are written once through ``audit.utils.record_audit_event`` and
    can never be changed or deleted.
    """
    class Action(models.TextChoices):
        DATA_REQUEST_SUBMITTED = 'data_request_submitted', 'Data Request Submitted'
        DATA_REQUEST_RECEIVED = 'data_request_received', 'Data Request Received'
        DATA_REQUEST_COMPLETED = 'data_request_completed', 'Data Request Completed'
        DATA_REQUEST_DENIED = 'data_request_denied', 'Data Request Denied'
        DATA_REQUEST_FAILED = 'data_request_failed', 'Data Request Failed'
        DATA_REQUEST_REJECTED = 'data_request_rejected', 'Data Request Rejected'
        APPROVAL_REJECTED = 'approval_rejected', 'Approval Rejected'
        ENDPOINT_CREATED = 'endpoint_created', 'Endpoint Created'
        ENDPOINT_UPDATED = 'endpoint_updated', 'Endpoint Updated'
        ENDPOINT_DELETED = 'endpoint_deleted', 'Endpoint Deleted'
        ENDPOINT_VALIDATED = 'endpoint_validated', 'Endpoint Validated'
        SETTINGS_CHANGED = 'settings_changed', 'Hospital Settings Changed'
        API_REQUEST = 'api_request', 'API Request'

    class Outcome(models.TextChoices):
        SUCCESS = 'Success', 'Success'
        FAILED = 'Failed', 'Failed'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    action = models.CharField(max_length=40, choices=Action.choices, db_index=True)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name='audit_events',
        null=True,
        blank=True
    )
    hospital = models.ForeignKey(
        'healthcare.Hospital',
        on_delete=models.SET_NULL,
        related_name='audit_events',
        null=True,
        blank=True
    )
    resource_type = models.CharField(max_length=100, db_index=True)
    resource_id = models.CharField(max_length=100, blank=True, db_index=True)
    description = models.TextField()
    outcome = models.CharField(max_length=10, choices=Outcome.choices, default=Outcome.SUCCESS)
    error_message = models.TextField(blank=True)
    response_time_ms = models.PositiveIntegerField(null=True, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True)
    timestamp = models.DateTimeField(auto_now_add=True, db_index=True)
    additional_data = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ['-timestamp']
        indexes = [
            models.Index(fields=['resource_type', 'resource_id']),
            models.Index(fields=['user']),
            models.Index(fields=['hospital', 'timestamp']),
        ]
        verbose_name = 'Audit Event'
        verbose_name_plural = 'Audit Events'

    def __str__(self):
        """String representation of the audit event."""
        return f"{self.get_action_display()} {self.resource_type} {self.resource_id} ({self.outcome})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise PermissionError("Audit events are append-only and cannot be modified")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise PermissionError("Audit events are append-only and cannot be deleted")
