# fhir/services/resource_templates.py
"""
FHIR resources synthesized for same-hospital requests.

One builder per data type. Resource ids are UUID5 values derived from the
data request id so that the same request always renders the same resource.
"""
import json
import uuid
from typing import Any, Callable, Dict

from django.utils import timezone

from fhir.constants import DataType

FHIR_DATETIME_FORMAT = '%Y-%m-%dT%H:%M:%SZ'

CONDITION_CLINICAL_SYSTEM = 'http://terminology.hl7.org/CodeSystem/condition-clinical'
OBSERVATION_CATEGORY_SYSTEM = 'http://terminology.hl7.org/CodeSystem/observation-category'
LOINC_SYSTEM = 'http://loinc.org'


class ResourceSerializationError(Exception):
    """Raised when a resource cannot be built or rendered as JSON."""
    pass


def _resource_id(request_id, suffix=''):
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"careexchange:{request_id}:{suffix}"))


def _stamp(moment):
    return moment.strftime(FHIR_DATETIME_FORMAT)


def _patient_ref(patient):
    return {'reference': f"Patient/{patient.patient_identifier}"}


def _organization_ref(patient):
    return {'reference': f"Organization/{patient.hospital_id}"}


def _coding(system, code, display):
    return {'coding': [{'system': system, 'code': code, 'display': display}]}


def _diagnostic_report(patient, request_id, moment, category_code, category_display):
    return {
        'resourceType': 'DiagnosticReport',
        'id': _resource_id(request_id),
        'status': 'final',
        'category': [_coding(LOINC_SYSTEM, category_code, category_display)],
        'code': _coding(LOINC_SYSTEM, category_code, category_display),
        'subject': _patient_ref(patient),
        'effectiveDateTime': _stamp(moment),
        'issued': _stamp(moment),
        'performer': [_organization_ref(patient)],
        'result': [
            {'reference': f"Observation/lab-{_resource_id(request_id, 'result')}"}
        ],
    }


def build_lab_results(patient, request_id, moment):
    return _diagnostic_report(patient, request_id, moment, '11502-2', 'Laboratory report')


def build_diagnostic_reports(patient, request_id, moment):
    return _diagnostic_report(patient, request_id, moment, '47045-0', 'Study report')


def _condition(patient, request_id, moment, category):
    return {
        'resourceType': 'Condition',
        'id': _resource_id(request_id),
        'clinicalStatus': {'coding': [{'system': CONDITION_CLINICAL_SYSTEM, 'code': 'active'}]},
        'category': [_coding(
            'http://terminology.hl7.org/CodeSystem/condition-category', category,
            'Problem List Item' if category == 'problem-list-item' else 'Encounter Diagnosis',
        )],
        'subject': _patient_ref(patient),
        'recordedDate': _stamp(moment),
        'recorder': _organization_ref(patient),
    }


def build_medical_history(patient, request_id, moment):
    return _condition(patient, request_id, moment, 'problem-list-item')


def build_conditions(patient, request_id, moment):
    return _condition(patient, request_id, moment, 'encounter-diagnosis')


def build_procedure(patient, request_id, moment):
    return {
        'resourceType': 'Procedure',
        'id': _resource_id(request_id),
        'status': 'completed',
        'subject': _patient_ref(patient),
        'performedDateTime': _stamp(moment),
        'performer': [{'actor': _organization_ref(patient)}],
    }


def build_patient_demographics(patient, request_id, moment):
    if not (patient.first_name or patient.last_name):
        raise ResourceSerializationError(f"Patient {patient.patient_identifier} has no name on record")
    resource = {
        'resourceType': 'Patient',
        'id': patient.patient_identifier,
        'identifier': [{'system': 'urn:careexchange:patient-id', 'value': patient.patient_identifier}],
        'active': patient.is_active,
        'name': [{'family': patient.last_name, 'given': [patient.first_name]}],
        'gender': patient.gender or 'unknown',
        'managingOrganization': _organization_ref(patient),
        'meta': {'lastUpdated': _stamp(moment)},
    }
    if patient.date_of_birth:
        resource['birthDate'] = patient.date_of_birth.isoformat()
    return resource


def build_vital_signs(patient, request_id, moment):
    return {
        'resourceType': 'Observation',
        'id': _resource_id(request_id),
        'status': 'final',
        'category': [_coding(OBSERVATION_CATEGORY_SYSTEM, 'vital-signs', 'Vital Signs')],
        'code': _coding(LOINC_SYSTEM, '85353-1', 'Vital signs, weight, height, head circumference, oxygen saturation and BMI panel'),
        'subject': _patient_ref(patient),
        'effectiveDateTime': _stamp(moment),
        'performer': [_organization_ref(patient)],
    }


def build_medications(patient, request_id, moment):
    return {
        'resourceType': 'MedicationRequest',
        'id': _resource_id(request_id),
        'status': 'active',
        'intent': 'order',
        'subject': _patient_ref(patient),
        'authoredOn': _stamp(moment),
        'requester': _organization_ref(patient),
    }


def build_encounters(patient, request_id, moment):
    return {
        'resourceType': 'Encounter',
        'id': _resource_id(request_id),
        'status': 'finished',
        'class': {
            'system': 'http://terminology.hl7.org/CodeSystem/v3-ActCode',
            'code': 'AMB',
            'display': 'ambulatory',
        },
        'subject': _patient_ref(patient),
        'period': {'end': _stamp(moment)},
        'serviceProvider': _organization_ref(patient),
    }


def build_allergies(patient, request_id, moment):
    return {
        'resourceType': 'AllergyIntolerance',
        'id': _resource_id(request_id),
        'clinicalStatus': {'coding': [{
            'system': 'http://terminology.hl7.org/CodeSystem/allergyintolerance-clinical',
            'code': 'active',
        }]},
        'patient': _patient_ref(patient),
        'recordedDate': _stamp(moment),
        'recorder': _organization_ref(patient),
    }


def build_immunizations(patient, request_id, moment):
    return {
        'resourceType': 'Immunization',
        'id': _resource_id(request_id),
        'status': 'completed',
        'vaccineCode': {'text': 'Immunization record'},
        'patient': _patient_ref(patient),
        'occurrenceDateTime': _stamp(moment),
        'performer': [{'actor': _organization_ref(patient)}],
    }


RESOURCE_BUILDERS: Dict[str, Callable[..., Dict[str, Any]]] = {
    DataType.LAB_RESULTS: build_lab_results,
    DataType.MEDICAL_HISTORY: build_medical_history,
    DataType.TREATMENT_RECORDS: build_procedure,
    DataType.PATIENT_DEMOGRAPHICS: build_patient_demographics,
    DataType.VITAL_SIGNS: build_vital_signs,
    DataType.MEDICATIONS: build_medications,
    DataType.PROCEDURES: build_procedure,
    DataType.DIAGNOSTIC_REPORTS: build_diagnostic_reports,
    DataType.ENCOUNTERS: build_encounters,
    DataType.CONDITIONS: build_conditions,
    DataType.ALLERGIES: build_allergies,
    DataType.IMMUNIZATIONS: build_immunizations,
}


def build_resource(data_type, patient, request_id, moment=None) -> Dict[str, Any]:
    """
    Build the FHIR resource served locally for ``data_type``.

    Raises:
        ResourceSerializationError: unsupported data type or incomplete patient record
    """
    builder = RESOURCE_BUILDERS.get(data_type)
    if builder is None:
        raise ResourceSerializationError(f"Unsupported data type: {data_type}")
    return builder(patient, request_id, moment or timezone.now())


def serialize_resource(data_type, patient, request_id, moment=None) -> str:
    """Build and render the resource as a JSON string."""
    resource = build_resource(data_type, patient, request_id, moment)
    try:
        return json.dumps(resource)
    except (TypeError, ValueError) as e:
        raise ResourceSerializationError(f"Failed to serialize {resource.get('resourceType')}: {str(e)}") from e
