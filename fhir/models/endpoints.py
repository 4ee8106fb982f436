# fhir/models/endpoints.py
from django.db import models
from healthcare.fields import EncryptedCharField

from fhir.constants import DataType


class DataRequestEndpoint(models.Model):
    """
    Where a hospital serves one data type.

    ``endpoint_url`` is a template: ``{patientId}`` plus any placeholder named
    by an entry of ``endpoint_parameters`` (``template_placeholder``).
    """

    class HttpMethod(models.TextChoices):
        GET = 'GET', 'GET'
        POST = 'POST', 'POST'

    hospital = models.ForeignKey(
        'healthcare.Hospital',
        on_delete=models.CASCADE,
        related_name='data_request_endpoints'
    )
    data_type = models.CharField(max_length=50, choices=DataType.choices)
    data_type_display_name = models.CharField(max_length=100, blank=True)
    endpoint_url = models.CharField(max_length=500)
    fhir_resource_type = models.CharField(max_length=50, blank=True)

    api_key = EncryptedCharField(max_length=500, blank=True, null=True)
    auth_token = EncryptedCharField(max_length=1000, blank=True, null=True)
    http_method = models.CharField(max_length=10, choices=HttpMethod.choices, default=HttpMethod.GET)
    description = models.CharField(max_length=500, blank=True)

    is_active = models.BooleanField(default=True)
    is_endpoint_valid = models.BooleanField(default=False)
    last_validation_date = models.DateTimeField(null=True, blank=True)
    last_validation_error = models.TextField(blank=True)

    # [{name, type, required, description, example, default_value, template_placeholder}]
    endpoint_parameters = models.JSONField(default=list, blank=True)
    # Role values allowed to receive this data type; empty means no restriction
    allowed_roles = models.JSONField(default=list, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['hospital', 'data_type']
        constraints = [
            models.UniqueConstraint(fields=['hospital', 'data_type'], name='unique_endpoint_per_hospital_data_type'),
        ]
        indexes = [
            models.Index(fields=['hospital', 'is_active']),
        ]

    def __str__(self):
        return f"{self.hospital} {self.data_type} -> {self.endpoint_url}"

