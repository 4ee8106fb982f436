# fhir/services/events.py
"""
Outbound data-request events.

Events are queued only after the surrounding transaction commits, so a
failed notification can never roll back or block a request decision.
"""
import logging

from django.db import transaction

logger = logging.getLogger(__name__)


def _dispatch(task, request_id):
    try:
        task.delay(str(request_id))
    except Exception as e:
        # Broker outages are logged; the data request itself is already final
        logger.error(f"Could not queue {task.name} for data request {request_id}: {str(e)}")


def emit_request_received(data_request):
    """Patient's hospital: a cross-hospital request awaits approval."""
    from fhir.tasks import notify_data_request_received
    request_id = data_request.pk
    transaction.on_commit(lambda: _dispatch(notify_data_request_received, request_id))


def emit_request_resolved(data_request):
    """Requesting hospital: the request reached a terminal state."""
    from fhir.tasks import notify_data_request_resolved
    request_id = data_request.pk
    transaction.on_commit(lambda: _dispatch(notify_data_request_resolved, request_id))
