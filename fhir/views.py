"""
Views for the data-request exchange.
Data requests (submit, approve, poll) and per-hospital endpoint configuration.
"""
import logging

from drf_yasg import openapi
from drf_yasg.utils import swagger_auto_schema
from rest_framework import viewsets, status, permissions
from rest_framework.decorators import action
from rest_framework.exceptions import PermissionDenied, NotFound, ValidationError
from rest_framework.response import Response

from fhir.models import DataRequestEndpoint
from fhir.serializers import (
    DataRequestSerializer,
    DataRequestSubmitSerializer,
    DataRequestApprovalSerializer,
    DataRequestQuerySerializer,
    DataRequestEndpointSerializer,
    EndpointValidationResultSerializer,
    EndpointValidationRequestSerializer,
    data_request_result_payload,
)
from fhir.services.approval import ApprovalService
from fhir.services.data_request import DataRequestService
from fhir.services.endpoint_registry import EndpointRegistry, DuplicateEndpointError
from fhir.services.results import ErrorCode
from users.models import User
from users.permissions import IsHospitalManagerOrReadOnly, IsSameHospitalOrSystemAdmin, can_access_hospital

logger = logging.getLogger('fhir')

# Rejections map to HTTP errors; every other outcome is a 200 carrying the result
REJECTION_HTTP_STATUS = {
    ErrorCode.INVALID_USER: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.PATIENT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.REQUEST_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.UNAUTHORIZED_APPROVER: status.HTTP_403_FORBIDDEN,
    ErrorCode.ALREADY_RESOLVED: status.HTTP_409_CONFLICT,
}


def result_response(result):
    http_status = REJECTION_HTTP_STATUS.get(result.error_code, status.HTTP_200_OK)
    return Response(data_request_result_payload(result), status=http_status)


class DataRequestViewSet(viewsets.ViewSet):
    """
    Cross-hospital data requests.

    request:  POST /datarequest/request
    approve:  POST /datarequest/{id}/approve
    retrieve: GET  /datarequest/{id}
    pending:  GET  /datarequest/pending?hospitalId=
    history:  GET  /datarequest/history?userId=
    """
    permission_classes = [permissions.IsAuthenticated]
    lookup_value_regex = '[0-9a-fA-F-]{36}'

    @swagger_auto_schema(
        method='post',
        request_body=DataRequestSubmitSerializer,
        responses={
            200: 'Request completed, denied, failed or pending approval',
            401: 'Requesting user not found or not assigned to a hospital',
            404: 'Patient not found',
        }
    )
    @action(detail=False, methods=['post'], url_path='request')
    def submit(self, request):
        serializer = DataRequestSubmitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = DataRequestService.submit_request(
            requester_id=request.user.pk,
            patient_identifier=data['patientId'],
            data_type=data['dataType'],
            purpose=data.get('purpose'),
            request=request,
        )
        return result_response(result)

    @swagger_auto_schema(
        method='post',
        request_body=DataRequestApprovalSerializer,
        responses={
            200: 'Request resolved',
            403: "Approver is not staff of the patient's hospital",
            404: 'Data request not found',
            409: 'Data request already resolved',
        }
    )
    @action(detail=True, methods=['post'])
    def approve(self, request, pk=None):
        serializer = DataRequestApprovalSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ApprovalService.resolve_request(
            request_id=pk,
            approver_id=request.user.pk,
            is_approved=serializer.validated_data['isApproved'],
            reason=serializer.validated_data.get('reason'),
            request=request,
        )
        return result_response(result)

    @staticmethod
    def _query_params(request):
        serializer = DataRequestQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data

    def retrieve(self, request, pk=None):
        data_request = DataRequestService.get_request(pk)
        if data_request is None:
            raise NotFound(f"Data request {pk} not found")

        user = request.user
        involved = {data_request.requesting_hospital_id, data_request.patient_hospital_id}
        if not user.is_system_admin and user.hospital_id not in involved:
            raise PermissionDenied("You are not involved in this data request.")
        return Response(DataRequestSerializer(data_request).data)

    @swagger_auto_schema(
        method='get',
        manual_parameters=[
            openapi.Parameter('hospitalId', openapi.IN_QUERY, type=openapi.TYPE_INTEGER, required=False)
        ],
        responses={200: DataRequestSerializer(many=True)}
    )
    @action(detail=False, methods=['get'])
    def pending(self, request):
        query = self._query_params(request)
        hospital_id = query.get('hospitalId') or request.user.hospital_id
        if hospital_id is None:
            raise ValidationError({'hospitalId': 'This parameter is required.'})
        if not can_access_hospital(request.user, hospital_id):
            raise PermissionDenied("You can only view pending requests for your own hospital.")

        requests_qs = DataRequestService.get_pending_requests(hospital_id)
        return Response(DataRequestSerializer(requests_qs, many=True).data)

    @swagger_auto_schema(
        method='get',
        manual_parameters=[
            openapi.Parameter('userId', openapi.IN_QUERY, type=openapi.TYPE_INTEGER, required=False)
        ],
        responses={200: DataRequestSerializer(many=True)}
    )
    @action(detail=False, methods=['get'])
    def history(self, request):
        query = self._query_params(request)
        user_id = query.get('userId') or request.user.pk
        if str(user_id) != str(request.user.pk) and not request.user.is_system_admin:
            target = User.objects.filter(pk=user_id).only('hospital_id').first()
            same_hospital = target is not None and target.hospital_id == request.user.hospital_id
            if not (request.user.is_hospital_manager and same_hospital):
                raise PermissionDenied("You can only view request history for your own hospital's staff.")

        requests_qs = DataRequestService.get_request_history(user_id)
        return Response(DataRequestSerializer(requests_qs, many=True).data)


class DataRequestEndpointViewSet(viewsets.ModelViewSet):
    """
    Endpoint configuration per hospital and data type.

    Writes go through EndpointRegistry so that every change is audited.
    """
    serializer_class = DataRequestEndpointSerializer
    permission_classes = [permissions.IsAuthenticated, IsHospitalManagerOrReadOnly, IsSameHospitalOrSystemAdmin]
    lookup_value_regex = r'\d+'

    def get_queryset(self):
        if getattr(self, 'swagger_fake_view', False):
            return DataRequestEndpoint.objects.none()
        user = self.request.user
        queryset = EndpointRegistry.list_endpoints()
        if not user.is_system_admin:
            queryset = queryset.filter(hospital_id=user.hospital_id)
        hospital_id = self.request.query_params.get('hospitalId')
        if hospital_id:
            if not hospital_id.isdigit():
                raise ValidationError({'hospitalId': 'A valid integer is required.'})
            queryset = queryset.filter(hospital_id=hospital_id)
        return queryset

    def _check_hospital(self, hospital_id):
        if not can_access_hospital(self.request.user, hospital_id):
            raise PermissionDenied("You can only manage endpoints for your own hospital.")

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        self._check_hospital(serializer.validated_data['hospital'].pk)

        try:
            endpoint = EndpointRegistry.create_endpoint(serializer.validated_data, user=request.user)
        except DuplicateEndpointError as e:
            raise ValidationError({'dataType': str(e)})
        return Response(self.get_serializer(endpoint).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        endpoint = self.get_object()
        # PUT accepts partial bodies, as the configuration screens send only changed fields
        serializer = self.get_serializer(endpoint, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        try:
            endpoint = EndpointRegistry.update_endpoint(endpoint, serializer.validated_data, user=request.user)
        except DuplicateEndpointError as e:
            raise ValidationError({'dataType': str(e)})
        return Response(self.get_serializer(endpoint).data)

    def destroy(self, request, *args, **kwargs):
        endpoint = self.get_object()
        EndpointRegistry.delete_endpoint(endpoint, user=request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=False, methods=['get'], url_path=r'hospital/(?P<hospital_id>\d+)')
    def by_hospital(self, request, hospital_id=None):
        self._check_hospital(hospital_id)
        endpoints = EndpointRegistry.list_endpoints(hospital_id)
        return Response(self.get_serializer(endpoints, many=True).data)

    @action(detail=False, methods=['post'], url_path=r'hospital/(?P<hospital_id>\d+)/validate-all')
    def validate_all(self, request, hospital_id=None):
        self._check_hospital(hospital_id)
        results = EndpointRegistry.validate_hospital_endpoints(hospital_id, user=request.user)
        return Response({
            'hospitalId': int(hospital_id),
            'total': len(results),
            'valid': sum(1 for result in results if result.is_valid),
            'results': EndpointValidationResultSerializer(results, many=True).data,
        })

    @action(detail=True, methods=['post'])
    def validate(self, request, pk=None):
        endpoint = self.get_object()
        serializer = EndpointValidationRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = EndpointRegistry.validate_endpoint(
            endpoint,
            sample_patient_id=serializer.validated_data.get('samplePatientId') or None,
            user=request.user,
        )
        return Response(EndpointValidationResultSerializer(result).data)

    @action(detail=False, methods=['get'], url_path='data-types')
    def data_types(self, request):
        return Response(EndpointRegistry.available_data_types())

    @action(detail=False, methods=['get'], url_path='fhir-resource-types')
    def fhir_resource_types(self, request):
        return Response(EndpointRegistry.available_fhir_resource_types())
