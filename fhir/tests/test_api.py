"""
API tests for the data-request and endpoint routes.

Covers the end-to-end request scenarios, the HTTP mapping of rejected calls
and hospital scoping of endpoint configuration.
"""
import json
from unittest import mock

from rest_framework import status

from audit.models import AuditEvent
from fhir.constants import DataType
from fhir.models import DataRequest, DataRequestEndpoint
from .base import ExchangeTestCase, fhir_response, searchset, PATIENT_RESOURCE


class DataRequestAPITests(ExchangeTestCase):
    def submit(self, user, patient_id, data_type, **extra):
        self.client.force_authenticate(user=user)
        return self.client.post('/api/datarequest/request',
                                {'patientId': patient_id, 'dataType': data_type, **extra}, format='json')

    def test_scenario_local_lab_results_completed(self):
        response = self.submit(self.doctor_a, 'P001', 'LabResults')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.data['status'], 'Completed')
        self.assertFalse(response.data['isCrossHospitalRequest'])
        self.assertEqual(json.loads(response.data['responseData'])['resourceType'], 'DiagnosticReport')

    def test_scenario_cross_hospital_pending_and_notified(self):
        with mock.patch('fhir.tasks.notify_data_request_received.delay') as delay:
            with self.captureOnCommitCallbacks(execute=True):
                response = self.submit(self.doctor_a, 'P002', 'MedicalHistory', purpose='Second opinion')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'Pending')
        self.assertIsNone(response.data['responseData'])
        self.assertEqual(response.data['patientHospitalId'], self.hospital_b.pk)
        delay.assert_called_once_with(response.data['id'])

    def test_scenario_staff_denied_medical_history(self):
        response = self.submit(self.staff_a, 'P002', 'MedicalHistory')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['success'])
        self.assertEqual(response.data['status'], 'Denied')
        self.assertEqual(response.data['errorCode'], 'InsufficientRole')
        self.assertEqual(response.data['denialReason'], 'Insufficient role permissions')

    def test_unknown_patient_is_404(self):
        response = self.submit(self.doctor_a, 'P404', 'LabResults')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['errorCode'], 'PatientNotFound')

    def test_user_without_hospital_is_401(self):
        response = self.submit(self.admin, 'P001', 'LabResults')

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['errorCode'], 'InvalidUser')

    def test_unknown_data_type_is_400(self):
        response = self.submit(self.doctor_a, 'P001', 'GeneticProfile')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'validation_error')

    def test_anonymous_is_401(self):
        response = self.client.post('/api/datarequest/request',
                                    {'patientId': 'P001', 'dataType': 'LabResults'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_trailing_slash_is_optional(self):
        self.client.force_authenticate(user=self.doctor_a)
        response = self.client.post('/api/datarequest/request/',
                                    {'patientId': 'P001', 'dataType': 'LabResults'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_api_calls_are_audited(self):
        self.submit(self.doctor_a, 'P001', 'LabResults')

        event = AuditEvent.objects.get(action=AuditEvent.Action.API_REQUEST)
        self.assertEqual(event.resource_type, 'datarequest')
        self.assertEqual(event.additional_data['status_code'], 200)
        self.assertEqual(event.user, self.doctor_a)


class ApprovalAPITests(ExchangeTestCase):
    def setUp(self) -> None:
        super().setUp()
        DataRequestEndpoint.objects.create(
            hospital=self.hospital_b,
            data_type=DataType.LAB_RESULTS,
            endpoint_url="https://fhir.lakeside.test/Patient/{patientId}/$everything",
        )
        self.grant_consent(self.doctor_a, DataType.LAB_RESULTS)
        self.client.force_authenticate(user=self.doctor_a)
        response = self.client.post('/api/datarequest/request',
                                    {'patientId': 'P002', 'dataType': 'LabResults'}, format='json')
        self.request_id = response.data['id']

    def approve(self, user, is_approved=True, **extra):
        self.client.force_authenticate(user=user)
        return self.client.post(f'/api/datarequest/{self.request_id}/approve',
                                {'isApproved': is_approved, **extra}, format='json')

    def test_scenario_upstream_503_is_error(self):
        response_503 = fhir_response(status_code=503, reason='Service Unavailable', text='')
        with mock.patch('fhir.services.approval.requests.request', return_value=response_503):
            response = self.approve(self.manager_b)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'Error')
        self.assertEqual(response.data['errorCode'], 'UpstreamHttpError')
        self.assertIn('503', response.data['denialReason'])

    def test_approval_completes_and_can_be_polled(self):
        with mock.patch('fhir.services.approval.requests.request',
                        return_value=fhir_response(searchset(PATIENT_RESOURCE))):
            self.approve(self.manager_b)

        self.client.force_authenticate(user=self.doctor_a)
        response = self.client.get(f'/api/datarequest/{self.request_id}')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'Completed')
        self.assertEqual(response.data['approvingUserId'], self.manager_b.pk)
        self.assertEqual(json.loads(response.data['responseData'])['resourceType'], 'Bundle')

    def test_approver_from_requesting_hospital_is_403(self):
        response = self.approve(self.manager_a)

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['errorCode'], 'UnauthorizedApprover')

    def test_second_resolution_is_409(self):
        self.approve(self.manager_b, is_approved=False, reason='Out of scope')

        response = self.approve(self.manager_b)

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['errorCode'], 'AlreadyResolved')
        self.assertEqual(DataRequest.objects.get(pk=self.request_id).denial_reason, 'Out of scope')

    def test_unknown_request_is_404(self):
        self.client.force_authenticate(user=self.manager_b)
        response = self.client.post('/api/datarequest/00000000-0000-0000-0000-000000000000/approve',
                                    {'isApproved': True}, format='json')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_pending_list_for_patient_hospital(self):
        self.client.force_authenticate(user=self.manager_b)
        response = self.client.get('/api/datarequest/pending')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([item['id'] for item in response.data], [self.request_id])

    def test_pending_list_of_other_hospital_is_forbidden(self):
        self.client.force_authenticate(user=self.doctor_a)
        response = self.client.get(f'/api/datarequest/pending?hospitalId={self.hospital_b.pk}')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_history_defaults_to_caller(self):
        self.client.force_authenticate(user=self.doctor_a)
        response = self.client.get('/api/datarequest/history')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)

    def test_history_of_other_hospital_staff_is_forbidden(self):
        self.client.force_authenticate(user=self.manager_b)
        response = self.client.get(f'/api/datarequest/history?userId={self.doctor_a.pk}')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_non_numeric_hospital_id_is_bad_request(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.get('/api/datarequest/pending?hospitalId=abc')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'validation_error')

    def test_non_numeric_user_id_is_bad_request(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.get('/api/datarequest/history?userId=abc')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'validation_error')

    def test_admin_pending_list_by_hospital_id(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.get(f'/api/datarequest/pending?hospitalId={self.hospital_b.pk}')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([item['id'] for item in response.data], [self.request_id])

    def test_poll_accepts_uppercase_id(self):
        self.client.force_authenticate(user=self.doctor_a)
        response = self.client.get(f'/api/datarequest/{self.request_id.upper()}')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['id'], self.request_id)

    def test_uninvolved_user_cannot_poll(self):
        outsider_hospital = type(self.hospital_a).objects.create(name="Hilltop")
        outsider = type(self.doctor_a).objects.create_user(
            username="outsider", password="pass", role='doctor', hospital=outsider_hospital,
        )
        self.client.force_authenticate(user=outsider)

        response = self.client.get(f'/api/datarequest/{self.request_id}')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class EndpointAPITests(ExchangeTestCase):
    def endpoint_payload(self, **overrides):
        payload = {
            'hospitalId': self.hospital_b.pk,
            'dataType': 'VitalSigns',
            'endpointUrl': 'https://fhir.lakeside.test/Observation?patient={patientId}&date=ge{since}',
            'apiKey': 'lakeside-key',
            'endpointParameters': [
                {'name': 'patientId', 'required': True, 'example': 'P900'},
                {'name': 'since', 'example': '2024-01-01', 'defaultValue': '2020-01-01'},
            ],
        }
        payload.update(overrides)
        return payload

    def create(self, user=None, **overrides):
        self.client.force_authenticate(user=user or self.manager_b)
        return self.client.post('/api/datarequestendpoint', self.endpoint_payload(**overrides), format='json')

    def test_manager_creates_endpoint(self):
        response = self.create()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['fhirResourceType'], 'Observation')
        self.assertTrue(response.data['hasApiKey'])
        self.assertNotIn('apiKey', response.data)
        self.assertEqual(response.data['endpointParameters'][1]['templatePlaceholder'], '{since}')
        self.assertEqual(response.data['endpointParameters'][1]['defaultValue'], '2020-01-01')

    def test_duplicate_data_type_is_rejected(self):
        self.create()

        response = self.create()

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(DataRequestEndpoint.objects.count(), 1)

    def test_invalid_url_is_rejected(self):
        response = self.create(endpointUrl='fhir.lakeside.test/{patientId}')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_list_with_non_numeric_hospital_id_is_bad_request(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.get('/api/datarequestendpoint?hospitalId=abc')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_doctor_cannot_create(self):
        self.doctor_a.hospital = self.hospital_b
        self.doctor_a.save()

        response = self.create(user=self.doctor_a)

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_manager_cannot_configure_other_hospital(self):
        response = self.create(user=self.manager_a)

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(DataRequestEndpoint.objects.exists())

    def test_update_and_delete(self):
        endpoint_id = self.create().data['id']

        response = self.client.put(f'/api/datarequestendpoint/{endpoint_id}',
                                   {'description': 'Vitals feed', 'isActive': False}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['description'], 'Vitals feed')
        self.assertFalse(response.data['isActive'])

        response = self.client.delete(f'/api/datarequestendpoint/{endpoint_id}')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(DataRequestEndpoint.objects.exists())

    def test_list_by_hospital(self):
        self.create()

        response = self.client.get(f'/api/datarequestendpoint/hospital/{self.hospital_b.pk}')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([item['dataType'] for item in response.data], ['VitalSigns'])

    def test_other_hospital_endpoints_are_hidden(self):
        endpoint_id = self.create().data['id']
        self.client.force_authenticate(user=self.manager_a)

        self.assertEqual(self.client.get(f'/api/datarequestendpoint/{endpoint_id}').status_code,
                         status.HTTP_404_NOT_FOUND)
        self.assertEqual(self.client.get(f'/api/datarequestendpoint/hospital/{self.hospital_b.pk}').status_code,
                         status.HTTP_403_FORBIDDEN)

    def test_validate_uses_example_values(self):
        endpoint_id = self.create().data['id']

        with mock.patch('fhir.services.fhir_validation.requests.get',
                        return_value=fhir_response(searchset(PATIENT_RESOURCE))) as get:
            response = self.client.post(f'/api/datarequestendpoint/{endpoint_id}/validate', {}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['isValid'])
        self.assertEqual(get.call_args[0][0],
                         'https://fhir.lakeside.test/Observation?patient=P900&date=ge2024-01-01')
        self.assertEqual(get.call_args[1]['headers']['X-API-Key'], 'lakeside-key')
        self.assertTrue(DataRequestEndpoint.objects.get(pk=endpoint_id).is_endpoint_valid)

    def test_validate_all(self):
        self.create()
        self.create(dataType='Immunizations', endpointUrl='https://fhir.lakeside.test/Immunization?patient={patientId}',
                    endpointParameters=[])

        with mock.patch('fhir.services.fhir_validation.requests.get',
                        return_value=fhir_response({'resourceType': 'Patient'})):
            response = self.client.post(f'/api/datarequestendpoint/hospital/{self.hospital_b.pk}/validate-all')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total'], 2)
        self.assertEqual(response.data['valid'], 0)
        self.assertEqual(response.data['results'][0]['errorMessage'],
                         "Expected 'Bundle' resourceType, but got 'Patient'")

    def test_reference_data(self):
        self.client.force_authenticate(user=self.doctor_a)

        data_types = self.client.get('/api/datarequestendpoint/data-types')
        resource_types = self.client.get('/api/datarequestendpoint/fhir-resource-types')

        self.assertEqual(data_types.status_code, status.HTTP_200_OK)
        self.assertEqual(len(data_types.data), 12)
        self.assertIn('Observation', resource_types.data)
