# fhir/services/endpoint_registry.py
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from django.db import IntegrityError, transaction
from django.utils import timezone

from audit.models import AuditEvent
from audit.utils import record_audit_event
from fhir.constants import DataType, FHIR_RESOURCE_TYPES, SUPPORTED_FHIR_RESOURCE_TYPES
from fhir.models import DataRequestEndpoint
from fhir.services.fhir_validation import FHIRValidationService, PLACEHOLDER_RE, FHIR_ACCEPT
from fhir.utils import get_exchange_setting
from healthcare.models import HospitalSettings

logger = logging.getLogger(__name__)

PATIENT_ID_PLACEHOLDER = '{patientId}'


class EndpointResolutionError(Exception):
    """Raised when no usable URL can be built for a hospital/data type."""
    pass


class DuplicateEndpointError(Exception):
    """Raised when a hospital already has an endpoint for the data type."""
    pass


@dataclass
class EndpointTarget:
    """Everything needed to call a hospital for one data type."""
    url_template: str
    http_method: str = 'GET'
    api_key: Optional[str] = None
    auth_token: Optional[str] = None
    parameters: List[Dict[str, Any]] = field(default_factory=list)
    allowed_roles: List[str] = field(default_factory=list)
    source: str = 'endpoint'
    endpoint_id: Optional[int] = None


def _placeholder(parameter):
    placeholder = parameter.get('template_placeholder') or parameter.get('name', '')
    if not placeholder.startswith('{'):
        placeholder = '{' + placeholder + '}'
    return placeholder


def _is_patient_parameter(parameter):
    return _placeholder(parameter) == PATIENT_ID_PLACEHOLDER


class EndpointRegistry:
    """
    Per-hospital, per-data-type endpoint configuration.

    Endpoint rows are hard-deleted; the hospital-level settings that act as
    the fallback are only ever deactivated.
    """

    # CRUD

    @classmethod
    def list_endpoints(cls, hospital_id=None):
        queryset = DataRequestEndpoint.objects.select_related('hospital')
        if hospital_id is not None:
            queryset = queryset.filter(hospital_id=hospital_id)
        return queryset.order_by('data_type')

    @classmethod
    def get_endpoint(cls, endpoint_id):
        return DataRequestEndpoint.objects.select_related('hospital').filter(pk=endpoint_id).first()

    @classmethod
    def get_active_endpoint(cls, hospital_id, data_type):
        return DataRequestEndpoint.objects.filter(
            hospital_id=hospital_id, data_type=data_type, is_active=True
        ).first()

    @classmethod
    def create_endpoint(cls, data, user=None):
        """
        Create an endpoint from validated data.

        Raises:
            DuplicateEndpointError: (hospital, data_type) already configured
        """
        data = dict(data)
        data.setdefault('fhir_resource_type', FHIR_RESOURCE_TYPES.get(data.get('data_type'), ''))
        if not data.get('data_type_display_name') and data.get('data_type') in DataType.values:
            data['data_type_display_name'] = str(DataType(data['data_type']).label)
        try:
            with transaction.atomic():
                endpoint = DataRequestEndpoint.objects.create(**data)
        except IntegrityError as e:
            raise DuplicateEndpointError(
                f"An endpoint for {data.get('data_type')} already exists for this hospital"
            ) from e

        record_audit_event(
            AuditEvent.Action.ENDPOINT_CREATED,
            'DataRequestEndpoint',
            f"Created {endpoint.data_type} endpoint {endpoint.endpoint_url}",
            resource_id=endpoint.pk,
            user=user,
            hospital_id=endpoint.hospital_id,
        )
        return endpoint

    @classmethod
    def update_endpoint(cls, endpoint, data, user=None):
        """Apply validated changes; a changed URL invalidates the last validation."""
        url_changed = 'endpoint_url' in data and data['endpoint_url'] != endpoint.endpoint_url
        for attr, value in data.items():
            setattr(endpoint, attr, value)
        if url_changed:
            endpoint.is_endpoint_valid = False
            endpoint.last_validation_error = ''
        try:
            with transaction.atomic():
                endpoint.save()
        except IntegrityError as e:
            raise DuplicateEndpointError(
                f"An endpoint for {endpoint.data_type} already exists for this hospital"
            ) from e

        record_audit_event(
            AuditEvent.Action.ENDPOINT_UPDATED,
            'DataRequestEndpoint',
            f"Updated {endpoint.data_type} endpoint",
            resource_id=endpoint.pk,
            user=user,
            hospital_id=endpoint.hospital_id,
            changed_fields=sorted(data.keys()),
        )
        return endpoint

    @classmethod
    def delete_endpoint(cls, endpoint, user=None):
        endpoint_id, hospital_id, data_type = endpoint.pk, endpoint.hospital_id, endpoint.data_type
        endpoint.delete()
        record_audit_event(
            AuditEvent.Action.ENDPOINT_DELETED,
            'DataRequestEndpoint',
            f"Deleted {data_type} endpoint",
            resource_id=endpoint_id,
            user=user,
            hospital_id=hospital_id,
        )

    # Resolution

    @classmethod
    def resolve_target(cls, hospital_id, data_type):
        """
        Find where ``hospital_id`` serves ``data_type``.

        Falls back to the hospital's generic data-request endpoint.

        Returns:
            EndpointTarget or None
        """
        endpoint = cls.get_active_endpoint(hospital_id, data_type)
        if endpoint is not None:
            return cls.target_for(endpoint)

        hospital_settings = HospitalSettings.objects.filter(hospital_id=hospital_id, is_active=True).first()
        if hospital_settings and hospital_settings.data_request_endpoint:
            return EndpointTarget(
                url_template=hospital_settings.data_request_endpoint,
                api_key=hospital_settings.api_key,
                auth_token=hospital_settings.auth_token,
                source='hospital_settings',
            )
        return None

    @staticmethod
    def target_for(endpoint):
        return EndpointTarget(
            url_template=endpoint.endpoint_url,
            http_method=endpoint.http_method,
            api_key=endpoint.api_key,
            auth_token=endpoint.auth_token,
            parameters=list(endpoint.endpoint_parameters or []),
            allowed_roles=list(endpoint.allowed_roles or []),
            source='endpoint',
            endpoint_id=endpoint.pk,
        )

    @staticmethod
    def build_url(target, patient_id):
        """
        Production URL: ``{patientId}`` plus parameter default values.

        Example values are never used here.

        Raises:
            EndpointResolutionError: placeholders left without a value
        """
        url = target.url_template.replace(PATIENT_ID_PLACEHOLDER, quote(str(patient_id), safe=''))
        for parameter in target.parameters:
            if _is_patient_parameter(parameter):
                continue
            default_value = parameter.get('default_value')
            if default_value not in (None, ''):
                url = url.replace(_placeholder(parameter), quote(str(default_value), safe=''))

        unresolved = PLACEHOLDER_RE.findall(url)
        if unresolved:
            raise EndpointResolutionError(
                f"Endpoint URL has unresolved placeholders: {', '.join(unresolved)}"
            )
        return url

    @classmethod
    def resolve_url(cls, hospital_id, data_type, patient_id):
        """
        Resolve the production URL for a hospital/data type/patient.

        Raises:
            EndpointResolutionError: nothing configured or placeholders left
        """
        target = cls.resolve_target(hospital_id, data_type)
        if target is None:
            raise EndpointResolutionError(f"No endpoint configured for {data_type} at hospital {hospital_id}")
        return cls.build_url(target, patient_id)

    @staticmethod
    def preview_url(target, sample_patient_id=None):
        """
        Pre-flight URL used for validation: every placeholder gets its example.

        ``{patientId}`` uses ``sample_patient_id``, then the patientId
        parameter's example, then the configured sample id.
        """
        parameters = target.parameters or []
        patient_example = next(
            (p.get('example') for p in parameters if _is_patient_parameter(p) and p.get('example')),
            None,
        )
        patient_id = sample_patient_id or patient_example or get_exchange_setting('SAMPLE_PATIENT_ID')

        url = target.url_template.replace(PATIENT_ID_PLACEHOLDER, quote(str(patient_id), safe=''))
        for parameter in parameters:
            if _is_patient_parameter(parameter):
                continue
            value = parameter.get('example') or parameter.get('default_value')
            if value not in (None, ''):
                url = url.replace(_placeholder(parameter), quote(str(value), safe=''))
        return url

    @staticmethod
    def build_headers(target):
        headers = {'Accept': FHIR_ACCEPT}
        if target.api_key:
            headers['X-API-Key'] = target.api_key
        if target.auth_token:
            headers['Authorization'] = f"Bearer {target.auth_token}"
        return headers

    # Validation

    @classmethod
    def validate_endpoint(cls, endpoint, sample_patient_id=None, user=None):
        """
        Validate one endpoint with example values and store the outcome.

        Returns:
            EndpointValidationResult
        """
        target = cls.target_for(endpoint)
        result = FHIRValidationService.validate(
            cls.preview_url(target, sample_patient_id),
            endpoint.data_type,
            cls.build_headers(target),
        )
        result.endpoint_id = str(endpoint.pk)
        cls._store_validation(endpoint, result, user)
        return result

    @classmethod
    def validate_hospital_endpoints(cls, hospital_id, user=None):
        """
        Validate every active endpoint of a hospital concurrently.

        Only the HTTP probes run in worker threads; results are stored here
        after all of them have finished.

        Returns:
            list of EndpointValidationResult
        """
        endpoints = list(cls.list_endpoints(hospital_id).filter(is_active=True))
        targets = []
        for endpoint in endpoints:
            target = cls.target_for(endpoint)
            targets.append({
                'url': cls.preview_url(target),
                'endpoint_type': endpoint.data_type,
                'headers': cls.build_headers(target),
            })

        results = FHIRValidationService.validate_many(targets)
        for endpoint, result in zip(endpoints, results):
            result.endpoint_id = str(endpoint.pk)
            cls._store_validation(endpoint, result, user)

        valid = sum(1 for result in results if result.is_valid)
        logger.info(f"Validated {len(results)} endpoints for hospital {hospital_id}: {valid} valid")
        return results

    @staticmethod
    def _store_validation(endpoint, result, user=None):
        endpoint.is_endpoint_valid = result.is_valid
        endpoint.last_validation_date = timezone.now()
        endpoint.last_validation_error = result.error_message or ''
        endpoint.save(update_fields=['is_endpoint_valid', 'last_validation_date',
                                     'last_validation_error', 'updated_at'])
        record_audit_event(
            AuditEvent.Action.ENDPOINT_VALIDATED,
            'DataRequestEndpoint',
            f"Validated {endpoint.data_type} endpoint {result.endpoint_url}",
            resource_id=endpoint.pk,
            user=user,
            hospital_id=endpoint.hospital_id,
            success=result.is_valid,
            error_message=result.error_message or '',
            response_time_ms=result.response_time_ms,
        )

    # Reference data

    @staticmethod
    def available_data_types():
        return [
            {
                'value': value,
                'label': label,
                'fhir_resource_type': FHIR_RESOURCE_TYPES[DataType(value)],
            }
            for value, label in DataType.choices
        ]

    @staticmethod
    def available_fhir_resource_types():
        return list(SUPPORTED_FHIR_RESOURCE_TYPES)
