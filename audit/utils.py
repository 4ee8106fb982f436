import logging

from .models import AuditEvent

logger = logging.getLogger(__name__)

# Fields masked before request data lands in an audit row
SENSITIVE_FIELDS = [
    'password', 'token', 'authorization', 'auth', 'key', 'secret', 'credential',
    'ssn', 'social_security', 'dob', 'date_of_birth',
]


def record_audit_event(action, resource_type, description, resource_id='', user=None,
                       hospital_id=None, success=True, error_message='', response_time_ms=None,
                       request=None, **additional_data):
    """
    Append one audit event. The only write path into the audit trail.

    Args:
        action: AuditEvent.Action value
        resource_type: Type of the audited object, e.g. 'DataRequest'
        description: Human-readable summary
        resource_id: Id of the audited object
        user: Acting user, if any
        hospital_id: Hospital the event belongs to
        success: Outcome of the audited operation
        error_message: Failure detail for unsuccessful outcomes
        response_time_ms: Latency of the audited operation
        request: Current HTTP request, used for ip/user agent
        **additional_data: Extra JSON-serializable context

    Returns:
        AuditEvent: The stored event
    """
    if user is not None and not getattr(user, 'is_authenticated', False):
        user = None

    event = AuditEvent.objects.create(
        action=action,
        user=user,
        hospital_id=hospital_id,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id else '',
        description=description,
        outcome=AuditEvent.Outcome.SUCCESS if success else AuditEvent.Outcome.FAILED,
        error_message=error_message or '',
        response_time_ms=response_time_ms,
        ip_address=get_client_ip(request) if request is not None else None,
        user_agent=request.META.get('HTTP_USER_AGENT', '') if request is not None else '',
        additional_data=sanitize_request_data(additional_data),
    )

    log = logger.info if success else logger.warning
    log(f"[{event.action}] {resource_type} {event.resource_id}: {description}"
        f"{' - ' + error_message if error_message else ''}")
    return event


def get_client_ip(request):
    """Get client IP address."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR', '')
    return ip or None


def sanitize_request_data(request_data):
    """
    Mask sensitive values in request data.

    Args:
        request_data: Dictionary of request data

    Returns:
        dict: Copy with sensitive fields masked
    """
    if not request_data:
        return {}
    if not isinstance(request_data, dict):
        return request_data

    sanitized = {}
    for key, value in request_data.items():
        if any(field in key.lower() for field in SENSITIVE_FIELDS):
            sanitized[key] = '********'
        elif isinstance(value, dict):
            sanitized[key] = sanitize_request_data(value)
        elif isinstance(value, list) and all(isinstance(item, dict) for item in value):
            sanitized[key] = [sanitize_request_data(item) for item in value]
        else:
            sanitized[key] = value
    return sanitized
