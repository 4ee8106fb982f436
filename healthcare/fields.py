# healthcare/fields.py
import binascii
import logging
from django.db import models
from security.encryption import AES256Encryption

logger = logging.getLogger(__name__)


class EncryptedMixin:
    """Mixin that stores the field value AES-256 encrypted."""

    def from_db_value(self, value, expression, connection):
        if value is None or value == '':
            return value
        try:
            return AES256Encryption.decrypt(value)
        except (ValueError, binascii.Error):
            # Rows written before encryption was enabled hold plaintext
            logger.warning(f"Could not decrypt {self.model.__name__}.{self.name}; returning stored value")
            return value

    def get_prep_value(self, value):
        value = super().get_prep_value(value)
        if value is None or value == '':
            return value
        return AES256Encryption.encrypt(str(value))


class EncryptedCharField(EncryptedMixin, models.TextField):
    """Encrypted CharField stored as TextField"""

    def __init__(self, max_length=None, **kwargs):
        # Store max_length for validation but don't pass to TextField
        self.plain_max_length = max_length
        super().__init__(**kwargs)

    def deconstruct(self):
        name, path, args, kwargs = super().deconstruct()
        if self.plain_max_length is not None:
            kwargs['max_length'] = self.plain_max_length
        return name, path, args, kwargs
