# healthcare/services/hospital_settings.py
import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from audit.models import AuditEvent
from audit.utils import record_audit_event
from fhir.services.endpoint_registry import EndpointRegistry, EndpointTarget
from fhir.services.fhir_validation import FHIRValidationService
from healthcare.models import Hospital, HospitalSettings

logger = logging.getLogger(__name__)

# Fields a client may write; everything else on the row is managed here
WRITABLE_FIELDS = tuple(HospitalSettings.ENDPOINT_FIELDS.values()) + ('api_key', 'auth_token')


class HospitalSettingsError(Exception):
    """Base error for hospital settings operations."""
    pass


class SettingsNotFoundError(HospitalSettingsError):
    pass


class SettingsConflictError(HospitalSettingsError):
    pass


class HospitalSettingsService:
    """
    Hospital-wide endpoint settings.

    Only one active row exists per hospital. Deleting deactivates the row,
    after which new settings can be created.
    """

    @classmethod
    def get_settings(cls, hospital_id):
        return HospitalSettings.objects.select_related('hospital').filter(
            hospital_id=hospital_id, is_active=True
        ).first()

    @classmethod
    def _require_settings(cls, hospital_id):
        hospital_settings = cls.get_settings(hospital_id)
        if hospital_settings is None:
            raise SettingsNotFoundError(f"Hospital settings not found for hospital {hospital_id}")
        return hospital_settings

    @classmethod
    def create_settings(cls, hospital_id, data, user=None):
        """
        Create the active settings row for a hospital.

        Raises:
            SettingsNotFoundError: unknown hospital
            SettingsConflictError: the hospital already has active settings
        """
        if not Hospital.objects.filter(pk=hospital_id).exists():
            raise SettingsNotFoundError(f"Hospital with ID {hospital_id} not found")
        if cls.get_settings(hospital_id) is not None:
            raise SettingsConflictError(f"Settings already exist for hospital {hospital_id}")

        values = {name: value for name, value in data.items() if name in WRITABLE_FIELDS}
        try:
            with transaction.atomic():
                hospital_settings = HospitalSettings.objects.create(hospital_id=hospital_id, **values)
        except IntegrityError as e:
            raise SettingsConflictError(f"Settings already exist for hospital {hospital_id}") from e

        cls._audit(hospital_settings, user, f"Created hospital settings for hospital {hospital_id}",
                   changed_fields=sorted(values))
        logger.info(f"Created hospital settings for hospital {hospital_id}")
        return hospital_settings

    @classmethod
    def update_settings(cls, hospital_id, data, user=None):
        """Apply the fields present in ``data``; missing fields are left alone."""
        hospital_settings = cls._require_settings(hospital_id)
        changed = []
        for name, value in data.items():
            if name in WRITABLE_FIELDS and value is not None:
                setattr(hospital_settings, name, value)
                changed.append(name)
        hospital_settings.save()

        cls._audit(hospital_settings, user, f"Updated hospital settings for hospital {hospital_id}",
                   changed_fields=sorted(changed))
        logger.info(f"Updated hospital settings for hospital {hospital_id}")
        return hospital_settings

    @classmethod
    def delete_settings(cls, hospital_id, user=None):
        """
        Deactivate the hospital's settings.

        Returns:
            bool: False when there was nothing to delete
        """
        hospital_settings = cls.get_settings(hospital_id)
        if hospital_settings is None:
            return False
        hospital_settings.is_active = False
        hospital_settings.save(update_fields=['is_active', 'updated_at'])

        cls._audit(hospital_settings, user, f"Deactivated hospital settings for hospital {hospital_id}")
        logger.info(f"Deleted hospital settings for hospital {hospital_id}")
        return True

    # Validation

    @staticmethod
    def validate_endpoint(url, endpoint_type=''):
        """Ad hoc validation of an arbitrary URL; nothing is stored."""
        return FHIRValidationService.validate(url, endpoint_type)

    @classmethod
    def validate_all(cls, hospital_id, user=None):
        """
        Validate every configured URL concurrently and store the outcome.

        Returns:
            (HospitalSettings, list of EndpointValidationResult)
        """
        hospital_settings = cls._require_settings(hospital_id)
        results = cls._validate(hospital_settings, hospital_settings.configured_endpoints())

        hospital_settings.validation_status = {
            result.endpoint_type: result.is_valid for result in results
        }
        failures = [f"{result.endpoint_type}: {result.error_message}" for result in results if not result.is_valid]
        hospital_settings.last_validation_error = '; '.join(failures)
        hospital_settings.last_validation_date = timezone.now()
        hospital_settings.save(update_fields=['validation_status', 'last_validation_error',
                                              'last_validation_date', 'updated_at'])

        cls._audit(
            hospital_settings, user, f"Validated {len(results)} settings endpoints for hospital {hospital_id}",
            success=not failures,
            error_message=hospital_settings.last_validation_error,
            validation_status=hospital_settings.validation_status,
        )
        logger.info(f"Validated all endpoints for hospital {hospital_id}: "
                    f"{len(results) - len(failures)}/{len(results)} valid")
        return hospital_settings, results

    @classmethod
    def validate_specific(cls, hospital_id, endpoint_types):
        """Validate the named endpoint types; unknown or empty ones are skipped."""
        hospital_settings = cls._require_settings(hospital_id)
        return cls._validate(hospital_settings, hospital_settings.configured_endpoints(list(endpoint_types)))

    @staticmethod
    def _validate(hospital_settings, endpoints):
        headers = EndpointRegistry.build_headers(EndpointTarget(
            url_template='',
            api_key=hospital_settings.api_key,
            auth_token=hospital_settings.auth_token,
        ))
        targets = [
            {
                'url': EndpointRegistry.preview_url(EndpointTarget(url_template=url)),
                'endpoint_type': endpoint_type,
                'headers': headers,
            }
            for endpoint_type, url in endpoints.items()
        ]
        return FHIRValidationService.validate_many(targets)

    @staticmethod
    def _audit(hospital_settings, user, description, **kwargs):
        record_audit_event(
            AuditEvent.Action.SETTINGS_CHANGED,
            'HospitalSettings',
            description,
            resource_id=hospital_settings.pk,
            user=user,
            hospital_id=hospital_settings.hospital_id,
            **kwargs,
        )
