"""
Tests for hospital-wide endpoint settings.
"""
from unittest import mock

from rest_framework import status

from audit.models import AuditEvent
from fhir.tests.base import ExchangeTestCase, fhir_response, searchset, PATIENT_RESOURCE
from healthcare.models import HospitalSettings
from healthcare.services import HospitalSettingsService, SettingsConflictError, SettingsNotFoundError


class HospitalSettingsServiceTests(ExchangeTestCase):
    def create_settings(self, **data):
        data.setdefault('data_request_endpoint', 'https://fhir.lakeside.test/Patient/{patientId}/$everything')
        return HospitalSettingsService.create_settings(self.hospital_b.pk, data, user=self.manager_b)

    def test_create_and_get(self):
        created = self.create_settings(api_key='lakeside-key')

        hospital_settings = HospitalSettingsService.get_settings(self.hospital_b.pk)
        self.assertEqual(hospital_settings.pk, created.pk)
        self.assertEqual(hospital_settings.api_key, 'lakeside-key')
        self.assertTrue(AuditEvent.objects.filter(action=AuditEvent.Action.SETTINGS_CHANGED).exists())

    def test_second_active_settings_conflict(self):
        self.create_settings()

        with self.assertRaises(SettingsConflictError):
            self.create_settings()

    def test_unknown_hospital(self):
        with self.assertRaises(SettingsNotFoundError):
            HospitalSettingsService.create_settings(999999, {})

    def test_update_is_partial(self):
        self.create_settings(api_key='lakeside-key')

        updated = HospitalSettingsService.update_settings(
            self.hospital_b.pk, {'observation_endpoint': 'https://fhir.lakeside.test/Observation', 'api_key': None},
        )

        self.assertEqual(updated.observation_endpoint, 'https://fhir.lakeside.test/Observation')
        self.assertEqual(updated.data_request_endpoint, 'https://fhir.lakeside.test/Patient/{patientId}/$everything')
        self.assertEqual(HospitalSettings.objects.get(pk=updated.pk).api_key, 'lakeside-key')

    def test_delete_deactivates(self):
        created = self.create_settings()

        self.assertTrue(HospitalSettingsService.delete_settings(self.hospital_b.pk))

        self.assertIsNone(HospitalSettingsService.get_settings(self.hospital_b.pk))
        self.assertFalse(HospitalSettings.objects.get(pk=created.pk).is_active)
        self.assertFalse(HospitalSettingsService.delete_settings(self.hospital_b.pk))

    def test_settings_can_be_recreated_after_delete(self):
        self.create_settings()
        HospitalSettingsService.delete_settings(self.hospital_b.pk)

        self.create_settings()

        self.assertEqual(HospitalSettings.objects.filter(hospital=self.hospital_b).count(), 2)

    def test_validate_all_persists_status(self):
        self.create_settings(
            patient_endpoint='https://fhir.lakeside.test/Patient?_id={patientId}',
            observation_endpoint='https://broken.lakeside.test/Observation',
            auth_token='lakeside-token',
        )

        def respond(url, **kwargs):
            if 'broken' in url:
                return fhir_response(status_code=502, reason='Bad Gateway', text='')
            return fhir_response(searchset(PATIENT_RESOURCE))

        with mock.patch('fhir.services.fhir_validation.requests.get', side_effect=respond) as get:
            hospital_settings, results = HospitalSettingsService.validate_all(self.hospital_b.pk)

        self.assertEqual(len(results), 3)
        self.assertEqual(hospital_settings.validation_status,
                         {'DataRequest': True, 'Patient': True, 'Observation': False})
        self.assertIn('Observation: HTTP 502: Bad Gateway', hospital_settings.last_validation_error)
        self.assertIsNotNone(HospitalSettings.objects.get(pk=hospital_settings.pk).last_validation_date)
        urls = sorted(call[0][0] for call in get.call_args_list)
        self.assertIn('https://fhir.lakeside.test/Patient/example/$everything', urls)
        for call in get.call_args_list:
            self.assertEqual(call[1]['headers']['Authorization'], 'Bearer lakeside-token')

    def test_validate_specific_skips_unconfigured(self):
        self.create_settings()

        with mock.patch('fhir.services.fhir_validation.requests.get',
                        return_value=fhir_response(searchset(PATIENT_RESOURCE))):
            results = HospitalSettingsService.validate_specific(self.hospital_b.pk, ['DataRequest', 'Immunization'])

        self.assertEqual([result.endpoint_type for result in results], ['DataRequest'])

    def test_validate_specific_with_no_types_calls_nothing(self):
        created = self.create_settings()

        with mock.patch('fhir.services.fhir_validation.requests.get') as remote_get:
            results = HospitalSettingsService.validate_specific(self.hospital_b.pk, [])

        remote_get.assert_not_called()
        self.assertEqual(results, [])
        self.assertEqual(created.configured_endpoints([]), {})
        self.assertEqual(list(created.configured_endpoints()), ['DataRequest'])

    def test_validate_without_settings(self):
        with self.assertRaises(SettingsNotFoundError):
            HospitalSettingsService.validate_all(self.hospital_b.pk)


class HospitalSettingsAPITests(ExchangeTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client.force_authenticate(user=self.manager_b)

    def create(self, **overrides):
        payload = {
            'hospitalId': self.hospital_b.pk,
            'dataRequestEndpoint': 'https://fhir.lakeside.test/Patient/{patientId}/$everything',
            'apiKey': 'lakeside-key',
        }
        payload.update(overrides)
        return self.client.post('/api/hospitalsettings', payload, format='json')

    def test_create_retrieve(self):
        response = self.create()
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['hasApiKey'])
        self.assertNotIn('apiKey', response.data)

        response = self.client.get(f'/api/hospitalsettings/{self.hospital_b.pk}')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['hospitalId'], self.hospital_b.pk)
        self.assertEqual(response.data['hospitalName'], 'Lakeside Clinic')

    def test_duplicate_create_is_409(self):
        self.create()

        response = self.create()

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'conflict')

    def test_invalid_endpoint_url(self):
        response = self.create(patientEndpoint='not-a-url')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_update_and_delete(self):
        self.create()

        response = self.client.put(f'/api/hospitalsettings/{self.hospital_b.pk}',
                                   {'conditionEndpoint': 'https://fhir.lakeside.test/Condition'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['conditionEndpoint'], 'https://fhir.lakeside.test/Condition')

        response = self.client.delete(f'/api/hospitalsettings/{self.hospital_b.pk}')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        response = self.client.get(f'/api/hospitalsettings/{self.hospital_b.pk}')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertTrue(HospitalSettings.objects.filter(hospital=self.hospital_b).exists())

    def test_other_hospital_is_forbidden(self):
        self.client.force_authenticate(user=self.manager_a)

        self.assertEqual(self.create().status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(self.client.get(f'/api/hospitalsettings/{self.hospital_b.pk}').status_code,
                         status.HTTP_403_FORBIDDEN)

    def test_validate_endpoint_rejects_non_bundle(self):
        with mock.patch('fhir.services.fhir_validation.requests.get',
                        return_value=fhir_response({'resourceType': 'Patient'})):
            response = self.client.post('/api/hospitalsettings/validate-endpoint', {
                'endpointUrl': 'https://fhir.lakeside.test/Patient/P002',
                'endpointType': 'Patient',
            }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['isValid'])
        self.assertEqual(response.data['errorMessage'], "Expected 'Bundle' resourceType, but got 'Patient'")

    def test_validate_all_and_specific(self):
        self.create()

        with mock.patch('fhir.services.fhir_validation.requests.get',
                        return_value=fhir_response(searchset(PATIENT_RESOURCE))):
            validate_all = self.client.post(f'/api/hospitalsettings/{self.hospital_b.pk}/validate-all')
            validate_specific = self.client.post(f'/api/hospitalsettings/{self.hospital_b.pk}/validate-specific',
                                                 {'endpointTypes': ['DataRequest']}, format='json')

        self.assertEqual(validate_all.status_code, status.HTTP_200_OK)
        self.assertEqual(validate_all.data['validationStatus'], {'DataRequest': True})
        self.assertEqual(len(validate_all.data['results']), 1)
        self.assertEqual(validate_specific.status_code, status.HTTP_200_OK)
        self.assertTrue(validate_specific.data[0]['isValid'])

    def test_validate_specific_rejects_unknown_type(self):
        self.create()

        response = self.client.post(f'/api/hospitalsettings/{self.hospital_b.pk}/validate-specific',
                                    {'endpointTypes': ['Genome']}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
