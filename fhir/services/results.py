"""
Result objects returned by the exchange services.

Services never raise for expected outcomes; they hand back one of these and
the views translate them to HTTP.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from django.utils import timezone


class ErrorCode(str, Enum):
    INVALID_USER = 'InvalidUser'
    PATIENT_NOT_FOUND = 'PatientNotFound'
    INSUFFICIENT_ROLE = 'InsufficientRole'
    CONSENT_MISSING = 'ConsentMissing'
    UNAUTHORIZED_APPROVER = 'UnauthorizedApprover'
    REQUEST_NOT_FOUND = 'RequestNotFound'
    ALREADY_RESOLVED = 'AlreadyResolved'
    ENDPOINT_NOT_CONFIGURED = 'EndpointNotConfigured'
    TRANSPORT_ERROR = 'TransportError'
    UPSTREAM_HTTP_ERROR = 'UpstreamHttpError'
    MALFORMED_FHIR_RESPONSE = 'MalformedFhirResponse'
    SERIALIZATION_ERROR = 'SerializationError'


# Codes that are rejected before (or without) touching a data request
REJECTION_CODES = frozenset({
    ErrorCode.INVALID_USER,
    ErrorCode.PATIENT_NOT_FOUND,
    ErrorCode.UNAUTHORIZED_APPROVER,
    ErrorCode.REQUEST_NOT_FOUND,
    ErrorCode.ALREADY_RESOLVED,
})


@dataclass
class DataRequestResult:
    """Outcome of a submit or resolve call."""
    data_request: Any = None
    error_code: Optional[ErrorCode] = None
    message: str = ''
    duplicate: bool = False

    @property
    def rejected(self):
        """True when the call was refused and no request changed state."""
        return self.error_code in REJECTION_CODES

    @property
    def status(self):
        return self.data_request.status if self.data_request is not None else None

    @classmethod
    def reject(cls, error_code, message, data_request=None):
        return cls(data_request=data_request, error_code=error_code, message=message)


@dataclass
class EndpointValidationResult:
    """Outcome of probing one FHIR endpoint."""
    endpoint_url: str
    endpoint_type: str = ''
    is_valid: bool = False
    error_message: Optional[str] = None
    response_sample: Optional[str] = None
    response_time_ms: Optional[int] = None
    validated_at: datetime = field(default_factory=timezone.now)
    endpoint_id: Optional[str] = None
