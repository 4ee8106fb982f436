# fhir/services/approval.py
import logging
import time

import requests
from django.db import transaction
from django.utils import timezone

from audit.models import AuditEvent
from audit.utils import record_audit_event
from fhir.models import DataRequest
from fhir.services.data_request import audit_data_request, CONSENT_MISSING_REASON, INSUFFICIENT_ROLE_REASON
from fhir.services.endpoint_registry import EndpointRegistry, EndpointResolutionError
from fhir.services.events import emit_request_resolved
from fhir.services.fhir_validation import FHIRValidationService
from fhir.services.results import DataRequestResult, ErrorCode
from fhir.utils import elapsed_ms, get_exchange_setting
from healthcare.models import PatientConsent
from users.models import User

logger = logging.getLogger(__name__)

DEFAULT_DENIAL_REASON = "Request denied by the patient's hospital"
ALREADY_RESOLVED_MESSAGE = "Data request has already been resolved"


class ApprovalService:
    """
    Resolution of Pending cross-hospital requests by the patient's hospital.

    Approving fetches the data from the hospital's configured FHIR endpoint
    in a single outbound call.
    """

    @classmethod
    def resolve_request(cls, request_id, approver_id, is_approved, reason=None, request=None):
        """
        Approve or deny a Pending request.

        Args:
            request_id: DataRequest id
            approver_id: Id of the user resolving the request
            is_approved: True to fetch and release the data, False to deny
            reason: Denial reason
            request: Current HTTP request, for the audit trail

        Returns:
            DataRequestResult
        """
        started = time.monotonic()

        data_request = DataRequest.objects.select_related('patient', 'requesting_user').filter(pk=request_id).first()
        if data_request is None:
            return cls._reject(ErrorCode.REQUEST_NOT_FOUND, f"Data request {request_id} not found",
                               request_id, None, request)
        if data_request.status != DataRequest.Status.PENDING:
            return cls._reject(ErrorCode.ALREADY_RESOLVED, ALREADY_RESOLVED_MESSAGE,
                               request_id, None, request, data_request)

        approver = User.objects.filter(pk=approver_id, is_active=True).first()
        if approver is None:
            return cls._reject(ErrorCode.INVALID_USER, "Approving user not found",
                               request_id, None, request, data_request)
        if approver.hospital_id is None or approver.hospital_id != data_request.patient_hospital_id:
            return cls._reject(
                ErrorCode.UNAUTHORIZED_APPROVER,
                "Only staff of the patient's hospital can resolve this request",
                request_id, approver, request, data_request,
            )

        if not is_approved:
            return cls._complete(
                data_request, approver, started, request,
                status=DataRequest.Status.DENIED,
                error_code=None,
                reason=reason or DEFAULT_DENIAL_REASON,
            )

        if not PatientConsent.objects.has_valid_consent(
                data_request.patient_id, data_request.requesting_user_id,
                data_request.requesting_hospital_id, data_request.data_type):
            return cls._complete(
                data_request, approver, started, request,
                status=DataRequest.Status.DENIED,
                error_code=ErrorCode.CONSENT_MISSING,
                reason=CONSENT_MISSING_REASON,
            )

        target = EndpointRegistry.resolve_target(data_request.patient_hospital_id, data_request.data_type)
        if target is None:
            return cls._complete(
                data_request, approver, started, request,
                status=DataRequest.Status.ERROR,
                error_code=ErrorCode.ENDPOINT_NOT_CONFIGURED,
                reason=f"No endpoint configured for {data_request.data_type} at the patient's hospital",
            )

        if target.allowed_roles and data_request.requesting_user.role not in target.allowed_roles:
            return cls._complete(
                data_request, approver, started, request,
                status=DataRequest.Status.DENIED,
                error_code=ErrorCode.INSUFFICIENT_ROLE,
                reason=INSUFFICIENT_ROLE_REASON,
            )

        try:
            url = EndpointRegistry.build_url(target, data_request.patient.patient_identifier)
        except EndpointResolutionError as e:
            return cls._complete(
                data_request, approver, started, request,
                status=DataRequest.Status.ERROR,
                error_code=ErrorCode.ENDPOINT_NOT_CONFIGURED,
                reason=str(e),
            )

        error_code, body_or_reason = cls._fetch(url, target)
        if error_code is not None:
            return cls._complete(
                data_request, approver, started, request,
                status=DataRequest.Status.ERROR,
                error_code=error_code,
                reason=body_or_reason,
            )

        return cls._complete(
            data_request, approver, started, request,
            status=DataRequest.Status.COMPLETED,
            response_data=body_or_reason,
        )

    @classmethod
    def _fetch(cls, url, target):
        """
        Single outbound call to the patient's hospital.

        Returns:
            (None, body) on success, (ErrorCode, reason) on failure
        """
        logger.info(f"Fetching {url} ({target.source})")
        try:
            response = requests.request(
                target.http_method or 'GET',
                url,
                headers=EndpointRegistry.build_headers(target),
                timeout=get_exchange_setting('OUTBOUND_TIMEOUT_SECONDS'),
            )
        except requests.Timeout:
            logger.warning(f"Timeout fetching {url}")
            return ErrorCode.TRANSPORT_ERROR, "Request timeout - endpoint may be unreachable"
        except requests.RequestException as e:
            logger.warning(f"Network error fetching {url}: {str(e)}")
            return ErrorCode.TRANSPORT_ERROR, f"Network error: {str(e)}"

        if not 200 <= response.status_code < 300:
            logger.warning(f"Remote endpoint {url} answered HTTP {response.status_code}")
            return ErrorCode.UPSTREAM_HTTP_ERROR, f"HTTP {response.status_code}: {response.reason}"

        body = response.text
        payload_error = FHIRValidationService.check_resource_payload(body)
        if payload_error:
            return ErrorCode.MALFORMED_FHIR_RESPONSE, payload_error
        return None, body

    @classmethod
    def _complete(cls, data_request, approver, started, request, status,
                  error_code=None, reason=None, response_data=None):
        """
        Write the terminal state if the request is still Pending.

        The status filter on the update makes concurrent resolutions race on
        the row: exactly one update matches, the others get AlreadyResolved.
        """
        now = timezone.now()
        changes = {
            'status': status,
            'error_code': error_code.value if error_code else '',
            'denial_reason': reason if status != DataRequest.Status.COMPLETED else None,
            'response_data': response_data if status == DataRequest.Status.COMPLETED else None,
            'approving_user_id': approver.pk,
            'approval_date': now,
            'response_date': now,
            'response_time_ms': elapsed_ms(started),
        }

        with transaction.atomic():
            updated = DataRequest.objects.filter(
                pk=data_request.pk, status=DataRequest.Status.PENDING
            ).update(**changes)
            if not updated:
                logger.info(f"Data request {data_request.pk} was resolved concurrently; discarding {status}")
                return cls._reject(ErrorCode.ALREADY_RESOLVED, ALREADY_RESOLVED_MESSAGE,
                                   data_request.pk, approver, request, data_request)

            data_request.refresh_from_db()
            audit_data_request(data_request, approver, request)
            emit_request_resolved(data_request)

        logger.info(f"Data request {data_request.pk} resolved as {status} by user {approver.pk}")
        return DataRequestResult(
            data_request=data_request,
            error_code=error_code,
            message=reason or f"Request {status.lower()}",
        )

    @classmethod
    def _reject(cls, error_code, message, request_id, approver, request, data_request=None):
        """Refuse a resolution attempt; the data request is left untouched."""
        record_audit_event(
            AuditEvent.Action.APPROVAL_REJECTED,
            'DataRequest',
            f"Rejected resolution of data request {request_id}",
            resource_id=request_id,
            user=approver,
            hospital_id=getattr(approver, 'hospital_id', None),
            success=False,
            error_message=message,
            request=request,
            error_code=error_code.value,
        )
        return DataRequestResult.reject(error_code, message, data_request)
