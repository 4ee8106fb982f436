import time

from django.conf import settings

EXCHANGE_DEFAULTS = {
    'OUTBOUND_TIMEOUT_SECONDS': 30,
    'RESPONSE_SAMPLE_LENGTH': 500,
    'DUPLICATE_WINDOW_SECONDS': 300,
    'REQUIRE_CONSENT_FOR_LOCAL_REQUESTS': False,
    'VALIDATION_MAX_WORKERS': 8,
    'USER_AGENT': 'CareExchange-FHIR-Validator/1.0',
    'SAMPLE_PATIENT_ID': 'example',
}


def get_exchange_setting(name):
    """
    Read a key from ``settings.DATA_EXCHANGE`` falling back to the defaults.

    Args:
        name: Key inside DATA_EXCHANGE

    Returns:
        Setting value
    """
    overrides = getattr(settings, 'DATA_EXCHANGE', {})
    if name in overrides:
        return overrides[name]
    return EXCHANGE_DEFAULTS[name]


def elapsed_ms(started):
    """Milliseconds since a ``time.monotonic()`` reading."""
    return int((time.monotonic() - started) * 1000)
