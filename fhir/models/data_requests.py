# fhir/models/data_requests.py
from django.db import models
from django.conf import settings
import uuid

from fhir.constants import DataType


class DataRequest(models.Model):
    """
    A request from one hospital's staff for a patient's data.

    Requests for patients of the requester's own hospital are answered
    immediately; cross-hospital requests wait in ``Pending`` until the
    patient's hospital approves or denies them.
    """

    class Status(models.TextChoices):
        PENDING = 'Pending', 'Pending'
        COMPLETED = 'Completed', 'Completed'
        DENIED = 'Denied', 'Denied'
        ERROR = 'Error', 'Error'

    TERMINAL_STATUSES = (Status.COMPLETED, Status.DENIED, Status.ERROR)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    requesting_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='data_requests'
    )
    requesting_hospital = models.ForeignKey(
        'healthcare.Hospital',
        on_delete=models.PROTECT,
        related_name='outgoing_data_requests'
    )
    patient = models.ForeignKey(
        'healthcare.Patient',
        on_delete=models.PROTECT,
        related_name='data_requests'
    )
    patient_hospital = models.ForeignKey(
        'healthcare.Hospital',
        on_delete=models.PROTECT,
        related_name='incoming_data_requests'
    )
    approving_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name='approved_data_requests',
        null=True,
        blank=True
    )

    data_type = models.CharField(max_length=50, choices=DataType.choices)
    purpose = models.CharField(max_length=500, blank=True)

    # Authorization facts captured once at submission
    is_cross_hospital_request = models.BooleanField(default=False)
    is_role_authorized = models.BooleanField(default=False)
    is_consent_valid = models.BooleanField(default=False)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    error_code = models.CharField(max_length=50, blank=True)
    request_date = models.DateTimeField(auto_now_add=True)
    response_date = models.DateTimeField(null=True, blank=True)
    approval_date = models.DateTimeField(null=True, blank=True)
    response_time_ms = models.PositiveIntegerField(null=True, blank=True)

    response_data = models.TextField(null=True, blank=True, help_text="Raw FHIR JSON")
    denial_reason = models.TextField(null=True, blank=True)

    class Meta:
        ordering = ['-request_date']
        indexes = [
            models.Index(fields=['patient_hospital', 'status']),
            models.Index(fields=['requesting_user', 'request_date']),
            models.Index(fields=['requesting_user', 'patient', 'data_type', 'status']),
        ]

    def __str__(self):
        return f"{self.data_type} request {self.id} ({self.status})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_state = {
            name: getattr(instance, name)
            for name in ('status', 'is_cross_hospital_request')
            if name in field_names
        }
        return instance

    def save(self, *args, **kwargs):
        loaded = getattr(self, '_loaded_state', None)
        if loaded:
            if 'is_cross_hospital_request' in loaded and \
                    loaded['is_cross_hospital_request'] != self.is_cross_hospital_request:
                raise ValueError("is_cross_hospital_request cannot change after creation")
            if loaded.get('status') in self.TERMINAL_STATUSES and loaded['status'] != self.status:
                raise ValueError(f"Data request {self.id} is already {loaded['status']}")
        if self.response_data and self.denial_reason:
            raise ValueError("A data request carries either response data or a denial reason, not both")
        super().save(*args, **kwargs)
        self._loaded_state = {
            'status': self.status,
            'is_cross_hospital_request': self.is_cross_hospital_request,
        }

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES
