from .notification_service import (
    NotificationException,
    create_notification,
    notify_hospital_managers,
    send_email_notification,
)

__all__ = [
    'NotificationException',
    'create_notification',
    'notify_hospital_managers',
    'send_email_notification',
]
