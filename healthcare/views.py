"""
Views for hospital-wide FHIR settings.
"""
import logging

from rest_framework import viewsets, status, permissions
from rest_framework.decorators import action
from rest_framework.exceptions import APIException, NotFound, PermissionDenied
from rest_framework.response import Response

from fhir.serializers import EndpointValidationResultSerializer
from healthcare.serializers import (
    HospitalSettingsSerializer,
    HospitalSettingsCreateSerializer,
    EndpointCheckSerializer,
    EndpointTypesSerializer,
)
from healthcare.services import HospitalSettingsService, SettingsNotFoundError, SettingsConflictError
from users.permissions import IsHospitalManagerOrReadOnly, can_access_hospital

logger = logging.getLogger('healthcare')


class Conflict(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The resource already exists.'
    default_code = 'conflict'


class HospitalSettingsViewSet(viewsets.ViewSet):
    """
    Hospital settings, addressed by hospital id.

    retrieve: GET    /hospitalsettings/{hospitalId}
    update:   PUT    /hospitalsettings/{hospitalId}
    destroy:  DELETE /hospitalsettings/{hospitalId}
    create:   POST   /hospitalsettings
    """
    permission_classes = [permissions.IsAuthenticated, IsHospitalManagerOrReadOnly]
    lookup_value_regex = r'\d+'

    def _check_hospital(self, hospital_id):
        if not can_access_hospital(self.request.user, hospital_id):
            raise PermissionDenied("You can only access settings for your own hospital.")

    def retrieve(self, request, pk=None):
        self._check_hospital(pk)
        hospital_settings = HospitalSettingsService.get_settings(pk)
        if hospital_settings is None:
            raise NotFound("Hospital settings not found")
        return Response(HospitalSettingsSerializer(hospital_settings).data)

    def create(self, request):
        serializer = HospitalSettingsCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        hospital = data.pop('hospital')
        self._check_hospital(hospital.pk)

        try:
            hospital_settings = HospitalSettingsService.create_settings(hospital.pk, data, user=request.user)
        except SettingsConflictError as e:
            raise Conflict(str(e))
        return Response(HospitalSettingsSerializer(hospital_settings).data, status=status.HTTP_201_CREATED)

    def update(self, request, pk=None):
        self._check_hospital(pk)
        serializer = HospitalSettingsSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        try:
            hospital_settings = HospitalSettingsService.update_settings(pk, serializer.validated_data,
                                                                        user=request.user)
        except SettingsNotFoundError as e:
            raise NotFound(str(e))
        return Response(HospitalSettingsSerializer(hospital_settings).data)

    def destroy(self, request, pk=None):
        self._check_hospital(pk)
        if not HospitalSettingsService.delete_settings(pk, user=request.user):
            raise NotFound("Hospital settings not found")
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=False, methods=['post'], url_path='validate-endpoint')
    def validate_endpoint(self, request):
        serializer = EndpointCheckSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = HospitalSettingsService.validate_endpoint(
            serializer.validated_data['endpointUrl'],
            serializer.validated_data['endpointType'],
        )
        return Response(EndpointValidationResultSerializer(result).data)

    @action(detail=True, methods=['post'], url_path='validate-all')
    def validate_all(self, request, pk=None):
        self._check_hospital(pk)
        try:
            hospital_settings, results = HospitalSettingsService.validate_all(pk, user=request.user)
        except SettingsNotFoundError as e:
            raise NotFound(str(e))

        data = HospitalSettingsSerializer(hospital_settings).data
        data['results'] = EndpointValidationResultSerializer(results, many=True).data
        return Response(data)

    @action(detail=True, methods=['post'], url_path='validate-specific')
    def validate_specific(self, request, pk=None):
        self._check_hospital(pk)
        serializer = EndpointTypesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            results = HospitalSettingsService.validate_specific(pk, serializer.validated_data['endpointTypes'])
        except SettingsNotFoundError as e:
            raise NotFound(str(e))
        return Response(EndpointValidationResultSerializer(results, many=True).data)
