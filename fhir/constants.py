"""
Closed vocabularies shared by the exchange core.
"""
from django.db import models
from django.utils.translation import gettext_lazy as _


class DataType(models.TextChoices):
    LAB_RESULTS = 'LabResults', _('Lab Results')
    MEDICAL_HISTORY = 'MedicalHistory', _('Medical History')
    TREATMENT_RECORDS = 'TreatmentRecords', _('Treatment Records')
    PATIENT_DEMOGRAPHICS = 'PatientDemographics', _('Patient Demographics')
    VITAL_SIGNS = 'VitalSigns', _('Vital Signs')
    MEDICATIONS = 'Medications', _('Medications')
    PROCEDURES = 'Procedures', _('Procedures')
    DIAGNOSTIC_REPORTS = 'DiagnosticReports', _('Diagnostic Reports')
    ENCOUNTERS = 'Encounters', _('Encounters')
    CONDITIONS = 'Conditions', _('Conditions')
    ALLERGIES = 'Allergies', _('Allergies')
    IMMUNIZATIONS = 'Immunizations', _('Immunizations')


# FHIR resource type served for each data type
FHIR_RESOURCE_TYPES = {
    DataType.LAB_RESULTS: 'DiagnosticReport',
    DataType.MEDICAL_HISTORY: 'Condition',
    DataType.TREATMENT_RECORDS: 'Procedure',
    DataType.PATIENT_DEMOGRAPHICS: 'Patient',
    DataType.VITAL_SIGNS: 'Observation',
    DataType.MEDICATIONS: 'MedicationRequest',
    DataType.PROCEDURES: 'Procedure',
    DataType.DIAGNOSTIC_REPORTS: 'DiagnosticReport',
    DataType.ENCOUNTERS: 'Encounter',
    DataType.CONDITIONS: 'Condition',
    DataType.ALLERGIES: 'AllergyIntolerance',
    DataType.IMMUNIZATIONS: 'Immunization',
}

SUPPORTED_FHIR_RESOURCE_TYPES = [
    'Patient',
    'Observation',
    'Condition',
    'DiagnosticReport',
    'Procedure',
    'MedicationRequest',
    'MedicationStatement',
    'Encounter',
    'AllergyIntolerance',
    'Immunization',
    'Bundle',
]

# Role -> data types the role may request. Keys cover every role.
ROLE_DATA_PERMISSIONS = {
    'hospital_manager': frozenset(DataType.values),
    'doctor': frozenset({
        DataType.LAB_RESULTS,
        DataType.MEDICAL_HISTORY,
        DataType.TREATMENT_RECORDS,
    }),
    'staff': frozenset({DataType.LAB_RESULTS}),
    'system_admin': frozenset(),
}


def is_role_authorized(role, data_type):
    """Check the role permission table; unknown roles get nothing."""
    return data_type in ROLE_DATA_PERMISSIONS.get(role, frozenset())
