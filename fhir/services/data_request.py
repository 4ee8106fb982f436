# fhir/services/data_request.py
import logging
import time
import uuid
from datetime import timedelta

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from audit.models import AuditEvent
from audit.utils import record_audit_event
from fhir.constants import is_role_authorized
from fhir.models import DataRequest
from fhir.services.events import emit_request_received
from fhir.services.resource_templates import ResourceSerializationError, serialize_resource
from fhir.services.results import DataRequestResult, ErrorCode
from fhir.utils import elapsed_ms, get_exchange_setting
from healthcare.models import Patient, PatientConsent
from users.models import User

logger = logging.getLogger(__name__)

INSUFFICIENT_ROLE_REASON = "Insufficient role permissions"
CONSENT_MISSING_REASON = "Patient consent not found or expired"

TERMINAL_AUDIT_ACTIONS = {
    DataRequest.Status.COMPLETED: AuditEvent.Action.DATA_REQUEST_COMPLETED,
    DataRequest.Status.DENIED: AuditEvent.Action.DATA_REQUEST_DENIED,
    DataRequest.Status.ERROR: AuditEvent.Action.DATA_REQUEST_FAILED,
}


def audit_data_request(data_request, user=None, request=None, description=None):
    """Write the single audit event for a data request state change."""
    if data_request.status == DataRequest.Status.PENDING:
        action = AuditEvent.Action.DATA_REQUEST_RECEIVED
    else:
        action = TERMINAL_AUDIT_ACTIONS[data_request.status]
    return record_audit_event(
        action,
        'DataRequest',
        description or f"{data_request.data_type} request {data_request.status}",
        resource_id=data_request.pk,
        user=user,
        hospital_id=data_request.requesting_hospital_id,
        success=data_request.status in (DataRequest.Status.PENDING, DataRequest.Status.COMPLETED),
        error_message=data_request.denial_reason or '',
        response_time_ms=data_request.response_time_ms,
        request=request,
        status=data_request.status,
        error_code=data_request.error_code,
        patient_hospital_id=data_request.patient_hospital_id,
        cross_hospital=data_request.is_cross_hospital_request,
    )


class DataRequestService:
    """
    Request lifecycle for patient data.

    Same-hospital requests are answered synchronously from local templates;
    cross-hospital requests are parked as Pending for the patient's hospital
    to approve through ``ApprovalService``.
    """

    @classmethod
    def submit_request(cls, requester_id, patient_identifier, data_type, purpose=None, request=None):
        """
        Submit a data request.

        Args:
            requester_id: Id of the requesting user
            patient_identifier: External patient id (e.g. "P001")
            data_type: DataType value
            purpose: Free-text purpose of use
            request: Current HTTP request, for the audit trail

        Returns:
            DataRequestResult
        """
        started = time.monotonic()

        requester = User.objects.filter(pk=requester_id, is_active=True).first()
        if requester is None or requester.hospital_id is None:
            return cls._reject(
                ErrorCode.INVALID_USER,
                "Requesting user not found or not assigned to a hospital",
                requester, patient_identifier, data_type, request,
            )

        patient = Patient.objects.filter(patient_identifier=patient_identifier, is_active=True).first()
        if patient is None:
            return cls._reject(
                ErrorCode.PATIENT_NOT_FOUND,
                f"Patient {patient_identifier} not found",
                requester, patient_identifier, data_type, request,
            )

        data_request = DataRequest(
            id=uuid.uuid4(),
            requesting_user_id=requester.pk,
            requesting_hospital_id=requester.hospital_id,
            patient_id=patient.pk,
            patient_hospital_id=patient.hospital_id,
            data_type=data_type,
            purpose=purpose or '',
            is_cross_hospital_request=requester.hospital_id != patient.hospital_id,
            is_role_authorized=is_role_authorized(requester.role, data_type),
            is_consent_valid=PatientConsent.objects.has_valid_consent(
                patient.pk, requester.pk, requester.hospital_id, data_type
            ),
        )

        if not data_request.is_role_authorized:
            return cls._finish(
                data_request, DataRequest.Status.DENIED, started, requester, request,
                error_code=ErrorCode.INSUFFICIENT_ROLE, reason=INSUFFICIENT_ROLE_REASON,
            )

        if data_request.is_cross_hospital_request:
            return cls._submit_cross_hospital(data_request, requester, request)

        if get_exchange_setting('REQUIRE_CONSENT_FOR_LOCAL_REQUESTS') and not data_request.is_consent_valid:
            return cls._finish(
                data_request, DataRequest.Status.DENIED, started, requester, request,
                error_code=ErrorCode.CONSENT_MISSING, reason=CONSENT_MISSING_REASON,
            )

        try:
            payload = serialize_resource(data_type, patient, data_request.pk)
        except ResourceSerializationError as e:
            logger.warning(f"Local synthesis failed for {data_type} / patient {patient_identifier}: {str(e)}")
            return cls._finish(
                data_request, DataRequest.Status.ERROR, started, requester, request,
                error_code=ErrorCode.SERIALIZATION_ERROR, reason=str(e),
            )

        return cls._finish(data_request, DataRequest.Status.COMPLETED, started, requester, request,
                           response_data=payload)

    @classmethod
    def _submit_cross_hospital(cls, data_request, requester, request):
        duplicate = cls.find_duplicate_pending(
            data_request.requesting_user_id, data_request.patient_id, data_request.data_type
        )
        if duplicate is not None:
            logger.info(f"Returning pending request {duplicate.pk} for duplicate submission by user {requester.pk}")
            return DataRequestResult(
                data_request=duplicate,
                duplicate=True,
                message="An identical request is already awaiting approval",
            )

        data_request.status = DataRequest.Status.PENDING
        with transaction.atomic():
            data_request.save(force_insert=True)
            audit_data_request(
                data_request, requester, request,
                description=f"{data_request.data_type} request sent to hospital {data_request.patient_hospital_id}",
            )
            emit_request_received(data_request)

        logger.info(f"Data request {data_request.pk} pending approval at hospital {data_request.patient_hospital_id}")
        return DataRequestResult(
            data_request=data_request,
            message="Request sent to the patient's hospital for approval",
        )

    @classmethod
    def _finish(cls, data_request, status, started, requester, request,
                error_code=None, reason=None, response_data=None):
        """Persist a request directly in its terminal state."""
        data_request.status = status
        data_request.error_code = error_code.value if error_code else ''
        data_request.denial_reason = reason
        data_request.response_data = response_data
        data_request.response_date = timezone.now()
        data_request.response_time_ms = elapsed_ms(started)

        with transaction.atomic():
            data_request.save(force_insert=True)
            audit_data_request(data_request, requester, request)

        return DataRequestResult(
            data_request=data_request,
            error_code=error_code,
            message=reason or f"Request {status.lower()}",
        )

    @classmethod
    def _reject(cls, error_code, message, requester, patient_identifier, data_type, request):
        """Refuse a submission without persisting a data request."""
        record_audit_event(
            AuditEvent.Action.DATA_REQUEST_REJECTED,
            'DataRequest',
            f"Rejected {data_type} request for patient {patient_identifier}",
            user=requester,
            hospital_id=getattr(requester, 'hospital_id', None),
            success=False,
            error_message=message,
            request=request,
            error_code=error_code.value,
        )
        return DataRequestResult.reject(error_code, message)

    @classmethod
    def find_duplicate_pending(cls, requester_id, patient_id, data_type):
        window = get_exchange_setting('DUPLICATE_WINDOW_SECONDS')
        if not window:
            return None
        return DataRequest.objects.filter(
            requesting_user_id=requester_id,
            patient_id=patient_id,
            data_type=data_type,
            status=DataRequest.Status.PENDING,
            request_date__gte=timezone.now() - timedelta(seconds=window),
        ).order_by('-request_date').first()

    # Queries

    @classmethod
    def get_request(cls, request_id):
        return cls._base_queryset().filter(pk=request_id).first()

    @classmethod
    def get_pending_requests(cls, hospital_id):
        """Requests waiting for ``hospital_id`` to approve, newest first."""
        return cls._base_queryset().filter(
            patient_hospital_id=hospital_id,
            status=DataRequest.Status.PENDING,
        ).order_by('-request_date')

    @classmethod
    def get_request_history(cls, user_id):
        """Requests the user made or resolved, newest first."""
        return cls._base_queryset().filter(
            Q(requesting_user_id=user_id) | Q(approving_user_id=user_id)
        ).order_by('-request_date')

    @staticmethod
    def _base_queryset():
        return DataRequest.objects.select_related(
            'requesting_user', 'requesting_hospital', 'patient', 'patient_hospital', 'approving_user'
        )
