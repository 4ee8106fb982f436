import logging
from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)


class NotificationException(Exception):
    """Exception for notification errors."""
    pass


def create_notification(user, title, message, notification_type, related_object_id=None, related_object_type=None):
    """
    Create an in-app notification for a user.

    Args:
        user: Recipient
        title: Notification title
        message: Notification body
        notification_type: Notification.NotificationType value
        related_object_id: Id of the object the notification is about
        related_object_type: Type of that object

    Returns:
        Notification: The stored notification
    """
    from ..models import Notification

    return Notification.objects.create(
        user=user,
        title=title,
        message=message,
        notification_type=notification_type,
        related_object_id=str(related_object_id) if related_object_id else '',
        related_object_type=related_object_type or '',
    )


def send_email_notification(recipient, title, message):
    """
    Send a plain-text notification email.

    Args:
        recipient: Email address
        title: Email subject
        message: Email body

    Returns:
        bool: True if an email was sent

    Raises:
        NotificationException: If email sending fails
    """
    if not recipient:
        logger.warning(f"Cannot send email notification '{title}' - no recipient address")
        return False
    try:
        send_mail(title, message, settings.DEFAULT_FROM_EMAIL, [recipient], fail_silently=False)
    except Exception as e:
        logger.error(f"Failed to send email notification to {recipient}: {str(e)}")
        raise NotificationException(f"Failed to send email notification: {str(e)}") from e
    logger.info(f"Email notification sent to {recipient}")
    return True


def notify_hospital_managers(hospital, title, message, notification_type, related_object_id=None,
                             related_object_type=None):
    """
    Notify every active hospital manager of ``hospital``.

    In-app notifications are always created; the hospital's contact address
    also gets an email when EMAIL_NOTIFICATIONS_ENABLED is set.

    Returns:
        int: Number of in-app notifications created
    """
    from users.models import User

    managers = User.objects.filter(
        hospital=hospital,
        role=User.Role.HOSPITAL_MANAGER,
        is_active=True,
    )
    count = 0
    for manager in managers:
        create_notification(
            user=manager,
            title=title,
            message=message,
            notification_type=notification_type,
            related_object_id=related_object_id,
            related_object_type=related_object_type,
        )
        count += 1

    if getattr(settings, 'EMAIL_NOTIFICATIONS_ENABLED', False):
        try:
            send_email_notification(hospital.email, title, message)
        except NotificationException as e:
            # Email is best effort; in-app notifications are already stored
            logger.warning(f"Email notification failed for hospital {hospital.pk}: {str(e)}")

    logger.info(f"Created {count} '{notification_type}' notifications for hospital {hospital.pk}")
    return count
