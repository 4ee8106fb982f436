import uuid
from django.db import models
from django.conf import settings
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _
from healthcare.fields import EncryptedCharField
from fhir.constants import DataType


class Hospital(models.Model):
    """A hospital taking part in the exchange."""
    name = models.CharField(max_length=200)
    address = models.CharField(max_length=500, blank=True)
    email = models.EmailField(blank=True)
    phone_number = models.CharField(max_length=20, blank=True)
    license_number = models.CharField(max_length=100, blank=True)
    is_active = models.BooleanField(default=True)
    is_approved = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class Patient(models.Model):
    """
    Patient registered at a hospital.

    ``patient_identifier`` is the external id used in FHIR references and in
    remote endpoint URLs (for example ``P001``).
    """
    class Gender(models.TextChoices):
        MALE = 'male', _('Male')
        FEMALE = 'female', _('Female')
        OTHER = 'other', _('Other')
        UNKNOWN = 'unknown', _('Unknown')

    patient_identifier = models.CharField(max_length=64, unique=True)
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=10, choices=Gender.choices, default=Gender.UNKNOWN)
    email = models.EmailField(blank=True)
    phone_number = models.CharField(max_length=20, blank=True)
    hospital = models.ForeignKey(Hospital, on_delete=models.PROTECT, related_name='patients')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['last_name', 'first_name']
        indexes = [
            models.Index(fields=['hospital']),
        ]

    def __str__(self):
        return f"{self.first_name} {self.last_name} ({self.patient_identifier})"


class PatientConsentQuerySet(models.QuerySet):
    def valid(self, at=None):
        """Consents that are granted, active and not expired."""
        at = at or timezone.now()
        return self.filter(is_consented=True, is_active=True).filter(
            Q(expiry_date__isnull=True) | Q(expiry_date__gt=at)
        )

    def has_valid_consent(self, patient_id, requesting_user_id, requesting_hospital_id, data_type):
        return self.valid().filter(
            patient_id=patient_id,
            requesting_user_id=requesting_user_id,
            requesting_hospital_id=requesting_hospital_id,
            data_type=data_type,
        ).exists()


class PatientConsent(models.Model):
    """Patient permission for one requester to receive one data type."""
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='consents')
    requesting_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='patient_consents'
    )
    requesting_hospital = models.ForeignKey(
        Hospital,
        on_delete=models.CASCADE,
        related_name='granted_consents'
    )
    data_type = models.CharField(max_length=50, choices=DataType.choices)
    purpose = models.CharField(max_length=500, blank=True)
    is_consented = models.BooleanField(default=False)
    consent_date = models.DateTimeField(default=timezone.now)
    expiry_date = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)

    objects = PatientConsentQuerySet.as_manager()

    class Meta:
        ordering = ['-consent_date']
        indexes = [
            models.Index(fields=['patient', 'requesting_user', 'requesting_hospital', 'data_type']),
        ]

    def __str__(self):
        status = "Granted" if self.is_consented else "Declined"
        return f"{self.get_data_type_display()}: {status} for {self.patient.patient_identifier}"

    @property
    def is_valid(self):
        if not (self.is_consented and self.is_active):
            return False
        return self.expiry_date is None or self.expiry_date > timezone.now()


class HospitalSettings(models.Model):
    """
    Hospital-wide FHIR endpoint configuration.

    ``data_request_endpoint`` is the generic "patient everything" URL used when
    no per-data-type endpoint is configured. Deleting settings deactivates them.
    """
    # endpoint type -> field holding its URL
    ENDPOINT_FIELDS = {
        'DataRequest': 'data_request_endpoint',
        'Patient': 'patient_endpoint',
        'Observation': 'observation_endpoint',
        'Condition': 'condition_endpoint',
        'Medication': 'medication_endpoint',
        'DiagnosticReport': 'diagnostic_report_endpoint',
        'Procedure': 'procedure_endpoint',
        'Encounter': 'encounter_endpoint',
        'AllergyIntolerance': 'allergy_intolerance_endpoint',
        'Immunization': 'immunization_endpoint',
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    hospital = models.ForeignKey(Hospital, on_delete=models.CASCADE, related_name='settings')

    data_request_endpoint = models.CharField(max_length=500, blank=True)
    patient_endpoint = models.CharField(max_length=500, blank=True)
    observation_endpoint = models.CharField(max_length=500, blank=True)
    condition_endpoint = models.CharField(max_length=500, blank=True)
    medication_endpoint = models.CharField(max_length=500, blank=True)
    diagnostic_report_endpoint = models.CharField(max_length=500, blank=True)
    procedure_endpoint = models.CharField(max_length=500, blank=True)
    encounter_endpoint = models.CharField(max_length=500, blank=True)
    allergy_intolerance_endpoint = models.CharField(max_length=500, blank=True)
    immunization_endpoint = models.CharField(max_length=500, blank=True)

    api_key = EncryptedCharField(max_length=500, blank=True, null=True)
    auth_token = EncryptedCharField(max_length=1000, blank=True, null=True)

    is_active = models.BooleanField(default=True)
    validation_status = models.JSONField(default=dict, blank=True)
    last_validation_date = models.DateTimeField(null=True, blank=True)
    last_validation_error = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Hospital Settings'
        verbose_name_plural = 'Hospital Settings'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['hospital'],
                condition=Q(is_active=True),
                name='unique_active_settings_per_hospital',
            ),
        ]

    def __str__(self):
        return f"Settings for {self.hospital}"

    def configured_endpoints(self, endpoint_types=None):
        """Return ``{endpoint_type: url}`` for every non-empty URL."""
        if endpoint_types is None:
            endpoint_types = list(self.ENDPOINT_FIELDS)
        endpoints = {}
        for endpoint_type in endpoint_types:
            field = self.ENDPOINT_FIELDS.get(endpoint_type)
            if field and getattr(self, field):
                endpoints[endpoint_type] = getattr(self, field)
        return endpoints
