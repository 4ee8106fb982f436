# fhir/tasks.py
from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task
def notify_data_request_received(request_id):
    """Tell the patient's hospital that a cross-hospital request awaits approval."""
    from communication.models import Notification
    from communication.services.notification_service import notify_hospital_managers
    from .models import DataRequest

    try:
        data_request = DataRequest.objects.select_related(
            'requesting_hospital', 'patient_hospital', 'patient'
        ).get(pk=request_id)
    except DataRequest.DoesNotExist:
        logger.warning(f"Data request {request_id} vanished before notification")
        return {'success': False, 'error': 'not_found'}

    count = notify_hospital_managers(
        hospital=data_request.patient_hospital,
        title='New data request awaiting approval',
        message=(
            f"{data_request.requesting_hospital.name} requested {data_request.get_data_type_display()} "
            f"for patient {data_request.patient.patient_identifier}. "
            f"Purpose: {data_request.purpose or 'not stated'}."
        ),
        notification_type=Notification.NotificationType.DATA_REQUEST_RECEIVED,
        related_object_id=data_request.pk,
        related_object_type='data_request',
    )
    return {'success': True, 'notified': count}


@shared_task
def notify_data_request_resolved(request_id):
    """Tell the requesting hospital how its request ended."""
    from communication.models import Notification
    from communication.services.notification_service import notify_hospital_managers
    from .models import DataRequest

    try:
        data_request = DataRequest.objects.select_related(
            'requesting_hospital', 'patient_hospital', 'patient'
        ).get(pk=request_id)
    except DataRequest.DoesNotExist:
        logger.warning(f"Data request {request_id} vanished before notification")
        return {'success': False, 'error': 'not_found'}

    message = (
        f"Your {data_request.get_data_type_display()} request for patient "
        f"{data_request.patient.patient_identifier} at {data_request.patient_hospital.name} "
        f"is {data_request.status}."
    )
    if data_request.denial_reason:
        message += f" Reason: {data_request.denial_reason}"

    count = notify_hospital_managers(
        hospital=data_request.requesting_hospital,
        title=f"Data request {data_request.status.lower()}",
        message=message,
        notification_type=Notification.NotificationType.DATA_REQUEST_RESOLVED,
        related_object_id=data_request.pk,
        related_object_type='data_request',
    )
    return {'success': True, 'notified': count}
