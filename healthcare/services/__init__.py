# healthcare/services/__init__.py
from .hospital_settings import (
    HospitalSettingsService,
    HospitalSettingsError,
    SettingsNotFoundError,
    SettingsConflictError,
)

__all__ = [
    'HospitalSettingsService',
    'HospitalSettingsError',
    'SettingsNotFoundError',
    'SettingsConflictError',
]
