from django.db import models
from django.contrib.auth.models import AbstractUser
from django.utils.translation import gettext_lazy as _


class User(AbstractUser):
    """Custom user model for CareExchange staff accounts."""

    class Role(models.TextChoices):
        HOSPITAL_MANAGER = 'hospital_manager', _('Hospital Manager')
        DOCTOR = 'doctor', _('Doctor')
        STAFF = 'staff', _('Staff')
        SYSTEM_ADMIN = 'system_admin', _('System Administrator')

    email = models.EmailField(_('email address'), blank=True)
    phone_number = models.CharField(max_length=20, blank=True)
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.STAFF)
    hospital = models.ForeignKey(
        'healthcare.Hospital',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='users'
    )

    class Meta:
        ordering = ['username']
        indexes = [
            models.Index(fields=['role']),
            models.Index(fields=['hospital', 'role']),
        ]

    def __str__(self):
        return f"{self.username} ({self.get_role_display()})"

    @property
    def is_system_admin(self):
        return self.role == self.Role.SYSTEM_ADMIN or self.is_superuser

    @property
    def is_hospital_manager(self):
        return self.role == self.Role.HOSPITAL_MANAGER
