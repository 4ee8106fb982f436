"""
Models for the FHIR exchange core.
"""

from fhir.models.data_requests import DataRequest
from fhir.models.endpoints import DataRequestEndpoint

__all__ = [
    'DataRequest',
    'DataRequestEndpoint',
]
