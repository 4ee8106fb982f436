import re
from django.conf import settings

from .models import AuditEvent
from .utils import record_audit_event


UUID_RE = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.IGNORECASE)


class AuditMiddleware:
    """
    Middleware that records one audit event per API call.

    Business events (request submitted, approved, ...) are written by the
    services themselves; this only keeps the access trail.
    """

    def __init__(self, get_response):
        self.get_response = get_response
        self.skip_re = [re.compile(pattern) for pattern in getattr(settings, 'AUDIT_SKIP_PATHS', [])]

    def __call__(self, request):
        response = self.get_response(request)

        path = request.path
        if not path.startswith('/api/') or request.method == 'OPTIONS':
            return response
        if any(regex.match(path) for regex in self.skip_re):
            return response

        self._log_api_request(request, response)
        return response

    def _log_api_request(self, request, response):
        """Log API request as audit event."""
        resource_type, resource_id = self._get_resource_info(request)
        user = getattr(request, 'user', None)
        record_audit_event(
            AuditEvent.Action.API_REQUEST,
            resource_type,
            f"{request.method} {request.path}",
            resource_id=resource_id,
            user=user,
            hospital_id=getattr(user, 'hospital_id', None),
            success=response.status_code < 400,
            request=request,
            status_code=response.status_code,
            query_params=dict(request.GET),
        )

    def _get_resource_info(self, request):
        """Resource name and id from ``/api/<resource>/<id>/...``."""
        parts = [part for part in request.path.split('/') if part]
        resource_type = parts[1] if len(parts) > 1 else 'api'
        resource_id = ''
        for part in parts[2:]:
            if UUID_RE.match(part) or part.isdigit():
                resource_id = part
                break
        return resource_type, resource_id
