"""
Tests for request submission: local synthesis, role checks, cross-hospital
parking and duplicate suppression.
"""
import json
from unittest import mock

from django.test import override_settings

from audit.models import AuditEvent
from fhir.constants import DataType
from fhir.models import DataRequest
from fhir.services.data_request import DataRequestService
from fhir.services.results import ErrorCode
from .base import ExchangeTestCase


class SubmitSameHospitalTests(ExchangeTestCase):
    def test_lab_results_are_answered_immediately(self):
        result = DataRequestService.submit_request(self.doctor_a.pk, "P001", DataType.LAB_RESULTS)

        data_request = result.data_request
        self.assertIsNone(result.error_code)
        self.assertEqual(data_request.status, DataRequest.Status.COMPLETED)
        self.assertFalse(data_request.is_cross_hospital_request)
        self.assertIsNone(data_request.denial_reason)
        self.assertIsNotNone(data_request.response_time_ms)

        resource = json.loads(data_request.response_data)
        self.assertEqual(resource['resourceType'], 'DiagnosticReport')
        self.assertEqual(resource['subject'], {'reference': 'Patient/P001'})
        self.assertEqual(resource['code']['coding'][0]['code'], '11502-2')

    def test_same_hospital_requests_never_pend(self):
        for data_type in DataType.values:
            result = DataRequestService.submit_request(self.manager_a.pk, "P001", data_type)
            self.assertNotEqual(result.status, DataRequest.Status.PENDING, data_type)
        self.assertFalse(DataRequest.objects.filter(status=DataRequest.Status.PENDING).exists())

    def test_demographics_render_patient_resource(self):
        result = DataRequestService.submit_request(self.manager_a.pk, "P001", DataType.PATIENT_DEMOGRAPHICS)

        resource = json.loads(result.data_request.response_data)
        self.assertEqual(resource['resourceType'], 'Patient')
        self.assertEqual(resource['id'], 'P001')
        self.assertEqual(resource['birthDate'], '1984-03-12')
        self.assertEqual(resource['name'][0]['family'], 'Silva')

    def test_demographics_without_name_is_serialization_error(self):
        self.patient_a.first_name = ''
        self.patient_a.last_name = ''
        self.patient_a.save()

        result = DataRequestService.submit_request(self.manager_a.pk, "P001", DataType.PATIENT_DEMOGRAPHICS)

        self.assertEqual(result.error_code, ErrorCode.SERIALIZATION_ERROR)
        self.assertEqual(result.data_request.status, DataRequest.Status.ERROR)
        self.assertIsNone(result.data_request.response_data)

    @override_settings(DATA_EXCHANGE={'REQUIRE_CONSENT_FOR_LOCAL_REQUESTS': True})
    def test_local_consent_enforced_when_configured(self):
        result = DataRequestService.submit_request(self.doctor_a.pk, "P001", DataType.LAB_RESULTS)

        self.assertEqual(result.status, DataRequest.Status.DENIED)
        self.assertEqual(result.error_code, ErrorCode.CONSENT_MISSING)


class SubmitAuthorizationTests(ExchangeTestCase):
    def test_staff_cannot_request_medical_history(self):
        result = DataRequestService.submit_request(self.staff_a.pk, "P002", DataType.MEDICAL_HISTORY)

        data_request = result.data_request
        self.assertEqual(result.error_code, ErrorCode.INSUFFICIENT_ROLE)
        self.assertEqual(data_request.status, DataRequest.Status.DENIED)
        self.assertEqual(data_request.denial_reason, "Insufficient role permissions")
        self.assertFalse(data_request.is_role_authorized)
        self.assertIsNone(data_request.response_data)

    def test_unauthorized_requests_are_denied_for_every_forbidden_type(self):
        forbidden = [value for value in DataType.values if value != DataType.LAB_RESULTS]
        for data_type in forbidden:
            result = DataRequestService.submit_request(self.staff_a.pk, "P001", data_type)
            self.assertEqual(result.status, DataRequest.Status.DENIED, data_type)

    def test_system_admin_has_no_data_access(self):
        self.admin.hospital = self.hospital_a
        self.admin.save()

        result = DataRequestService.submit_request(self.admin.pk, "P001", DataType.LAB_RESULTS)

        self.assertEqual(result.error_code, ErrorCode.INSUFFICIENT_ROLE)

    def test_role_denial_is_a_stored_outcome_not_a_rejection(self):
        result = DataRequestService.submit_request(self.staff_a.pk, "P001", DataType.MEDICATIONS)

        self.assertFalse(result.rejected)
        stored = DataRequest.objects.get(pk=result.data_request.pk)
        self.assertEqual(stored.status, DataRequest.Status.DENIED)
        self.assertEqual(stored.error_code, ErrorCode.INSUFFICIENT_ROLE.value)

    def test_unknown_patient_is_rejected_without_a_row(self):
        result = DataRequestService.submit_request(self.doctor_a.pk, "P404", DataType.LAB_RESULTS)

        self.assertEqual(result.error_code, ErrorCode.PATIENT_NOT_FOUND)
        self.assertTrue(result.rejected)
        self.assertIsNone(result.data_request)
        self.assertFalse(DataRequest.objects.exists())

    def test_user_without_hospital_is_invalid(self):
        result = DataRequestService.submit_request(self.admin.pk, "P001", DataType.LAB_RESULTS)

        self.assertEqual(result.error_code, ErrorCode.INVALID_USER)
        self.assertFalse(DataRequest.objects.exists())
        self.assertTrue(AuditEvent.objects.filter(action=AuditEvent.Action.DATA_REQUEST_REJECTED).exists())


class SubmitCrossHospitalTests(ExchangeTestCase):
    def test_cross_hospital_request_waits_for_approval(self):
        result = DataRequestService.submit_request(self.doctor_a.pk, "P002", DataType.LAB_RESULTS,
                                                   purpose="Referral follow-up")

        data_request = result.data_request
        self.assertIsNone(result.error_code)
        self.assertEqual(data_request.status, DataRequest.Status.PENDING)
        self.assertTrue(data_request.is_cross_hospital_request)
        self.assertIsNone(data_request.response_data)
        self.assertIsNone(data_request.response_date)
        self.assertEqual(data_request.patient_hospital_id, self.hospital_b.pk)
        self.assertEqual(data_request.purpose, "Referral follow-up")

    def test_pending_request_is_audited_and_notified_after_commit(self):
        with mock.patch('fhir.tasks.notify_data_request_received.delay') as delay:
            with self.captureOnCommitCallbacks(execute=True):
                result = DataRequestService.submit_request(self.doctor_a.pk, "P002", DataType.LAB_RESULTS)

        delay.assert_called_once_with(str(result.data_request.pk))
        event = AuditEvent.objects.get(action=AuditEvent.Action.DATA_REQUEST_RECEIVED)
        self.assertEqual(event.resource_id, str(result.data_request.pk))
        self.assertEqual(event.user, self.doctor_a)

    def test_broker_failure_does_not_affect_the_request(self):
        with mock.patch('fhir.tasks.notify_data_request_received.delay', side_effect=ConnectionError("down")):
            with self.captureOnCommitCallbacks(execute=True):
                result = DataRequestService.submit_request(self.doctor_a.pk, "P002", DataType.LAB_RESULTS)

        self.assertEqual(DataRequest.objects.get(pk=result.data_request.pk).status, DataRequest.Status.PENDING)

    def test_duplicate_pending_request_is_returned(self):
        first = DataRequestService.submit_request(self.doctor_a.pk, "P002", DataType.LAB_RESULTS)
        with mock.patch('fhir.tasks.notify_data_request_received.delay') as delay:
            with self.captureOnCommitCallbacks(execute=True):
                second = DataRequestService.submit_request(self.doctor_a.pk, "P002", DataType.LAB_RESULTS)

        self.assertTrue(second.duplicate)
        self.assertEqual(second.data_request.pk, first.data_request.pk)
        self.assertEqual(DataRequest.objects.count(), 1)
        delay.assert_not_called()

    def test_different_data_type_is_not_a_duplicate(self):
        DataRequestService.submit_request(self.doctor_a.pk, "P002", DataType.LAB_RESULTS)
        second = DataRequestService.submit_request(self.doctor_a.pk, "P002", DataType.MEDICAL_HISTORY)

        self.assertFalse(second.duplicate)
        self.assertEqual(DataRequest.objects.count(), 2)

    @override_settings(DATA_EXCHANGE={'DUPLICATE_WINDOW_SECONDS': 0})
    def test_duplicate_check_can_be_disabled(self):
        DataRequestService.submit_request(self.doctor_a.pk, "P002", DataType.LAB_RESULTS)
        second = DataRequestService.submit_request(self.doctor_a.pk, "P002", DataType.LAB_RESULTS)

        self.assertFalse(second.duplicate)
        self.assertEqual(DataRequest.objects.count(), 2)

    def test_consent_is_recorded_at_submission(self):
        self.grant_consent(self.doctor_a, DataType.LAB_RESULTS)

        result = DataRequestService.submit_request(self.doctor_a.pk, "P002", DataType.LAB_RESULTS)

        self.assertTrue(result.data_request.is_consent_valid)

    def test_consent_granted_to_another_hospital_is_not_valid(self):
        consent = self.grant_consent(self.doctor_a, DataType.LAB_RESULTS)
        consent.requesting_hospital = self.hospital_b
        consent.save()

        result = DataRequestService.submit_request(self.doctor_a.pk, "P002", DataType.LAB_RESULTS)

        self.assertFalse(result.data_request.is_consent_valid)


class DataRequestModelTests(ExchangeTestCase):
    def test_terminal_status_cannot_change(self):
        result = DataRequestService.submit_request(self.doctor_a.pk, "P001", DataType.LAB_RESULTS)
        data_request = DataRequest.objects.get(pk=result.data_request.pk)

        data_request.status = DataRequest.Status.PENDING
        with self.assertRaises(ValueError):
            data_request.save()

    def test_cross_hospital_flag_is_immutable(self):
        result = DataRequestService.submit_request(self.doctor_a.pk, "P002", DataType.LAB_RESULTS)
        data_request = DataRequest.objects.get(pk=result.data_request.pk)

        data_request.is_cross_hospital_request = False
        with self.assertRaises(ValueError):
            data_request.save()


class QueryTests(ExchangeTestCase):
    def test_pending_requests_are_scoped_to_patient_hospital(self):
        pending = DataRequestService.submit_request(self.doctor_a.pk, "P002", DataType.LAB_RESULTS)
        DataRequestService.submit_request(self.doctor_a.pk, "P001", DataType.LAB_RESULTS)

        self.assertEqual(
            [r.pk for r in DataRequestService.get_pending_requests(self.hospital_b.pk)],
            [pending.data_request.pk],
        )
        self.assertFalse(DataRequestService.get_pending_requests(self.hospital_a.pk).exists())

    def test_history_lists_requests_of_user(self):
        DataRequestService.submit_request(self.doctor_a.pk, "P002", DataType.LAB_RESULTS)
        DataRequestService.submit_request(self.doctor_a.pk, "P001", DataType.MEDICAL_HISTORY)
        DataRequestService.submit_request(self.staff_a.pk, "P001", DataType.LAB_RESULTS)

        history = DataRequestService.get_request_history(self.doctor_a.pk)
        self.assertEqual(history.count(), 2)
