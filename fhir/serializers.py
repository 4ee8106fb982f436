"""
Serializers for the data-request exchange API.
Field names on the wire are camelCase.
"""
from rest_framework import serializers

from fhir.constants import DataType
from fhir.models import DataRequest, DataRequestEndpoint
from fhir.services.fhir_validation import FHIRValidationService, PLACEHOLDER_RE
from healthcare.models import Hospital
from users.models import User


class DataRequestSerializer(serializers.ModelSerializer):
    """Read-only view of a data request."""
    requestingUserId = serializers.IntegerField(source='requesting_user_id', read_only=True)
    requestingUserName = serializers.CharField(source='requesting_user.get_full_name', read_only=True)
    requestingHospitalId = serializers.IntegerField(source='requesting_hospital_id', read_only=True)
    requestingHospitalName = serializers.CharField(source='requesting_hospital.name', read_only=True)
    patientId = serializers.CharField(source='patient.patient_identifier', read_only=True)
    patientName = serializers.SerializerMethodField()
    patientHospitalId = serializers.IntegerField(source='patient_hospital_id', read_only=True)
    patientHospitalName = serializers.CharField(source='patient_hospital.name', read_only=True)
    approvingUserId = serializers.IntegerField(source='approving_user_id', read_only=True)
    dataType = serializers.CharField(source='data_type', read_only=True)
    isCrossHospitalRequest = serializers.BooleanField(source='is_cross_hospital_request', read_only=True)
    isRoleAuthorized = serializers.BooleanField(source='is_role_authorized', read_only=True)
    isConsentValid = serializers.BooleanField(source='is_consent_valid', read_only=True)
    errorCode = serializers.CharField(source='error_code', read_only=True)
    requestDate = serializers.DateTimeField(source='request_date', read_only=True)
    responseDate = serializers.DateTimeField(source='response_date', read_only=True)
    approvalDate = serializers.DateTimeField(source='approval_date', read_only=True)
    responseTimeMs = serializers.IntegerField(source='response_time_ms', read_only=True)
    responseData = serializers.CharField(source='response_data', read_only=True)
    denialReason = serializers.CharField(source='denial_reason', read_only=True)

    class Meta:
        model = DataRequest
        fields = [
            'id', 'requestingUserId', 'requestingUserName', 'requestingHospitalId',
            'requestingHospitalName', 'patientId', 'patientName', 'patientHospitalId',
            'patientHospitalName', 'approvingUserId', 'dataType', 'purpose',
            'isCrossHospitalRequest', 'isRoleAuthorized', 'isConsentValid', 'status',
            'errorCode', 'requestDate', 'responseDate', 'approvalDate', 'responseTimeMs',
            'responseData', 'denialReason',
        ]
        read_only_fields = fields

    def get_patientName(self, obj):
        return f"{obj.patient.first_name} {obj.patient.last_name}".strip()


class DataRequestSubmitSerializer(serializers.Serializer):
    patientId = serializers.CharField(max_length=64)
    dataType = serializers.ChoiceField(choices=DataType.choices)
    purpose = serializers.CharField(max_length=500, required=False, allow_blank=True, allow_null=True)


class DataRequestApprovalSerializer(serializers.Serializer):
    isApproved = serializers.BooleanField()
    reason = serializers.CharField(max_length=1000, required=False, allow_blank=True, allow_null=True)


class DataRequestQuerySerializer(serializers.Serializer):
    """Query-string filters of the pending and history listings."""
    hospitalId = serializers.IntegerField(required=False, min_value=1)
    userId = serializers.IntegerField(required=False, min_value=1)


def data_request_result_payload(result):
    """Response body for a DataRequestResult."""
    payload = {
        'success': result.error_code is None,
        'message': result.message,
        'errorCode': result.error_code.value if result.error_code else None,
        'isDuplicate': result.duplicate,
    }
    if result.data_request is not None:
        payload.update(DataRequestSerializer(result.data_request).data)
    return payload


class EndpointParameterSerializer(serializers.Serializer):
    """One named URL parameter of an endpoint template."""
    TYPE_CHOICES = ['string', 'number', 'date', 'boolean', 'token']

    name = serializers.CharField(max_length=100)
    type = serializers.ChoiceField(choices=TYPE_CHOICES, default='string')
    required = serializers.BooleanField(default=False)
    description = serializers.CharField(max_length=500, required=False, allow_blank=True, default='')
    example = serializers.CharField(max_length=200, required=False, allow_blank=True, default='')
    defaultValue = serializers.CharField(source='default_value', max_length=200, required=False,
                                         allow_blank=True, allow_null=True, default=None)
    templatePlaceholder = serializers.CharField(source='template_placeholder', max_length=100,
                                                required=False, allow_blank=True, default='')

    def validate(self, attrs):
        placeholder = attrs.get('template_placeholder') or attrs['name']
        if not placeholder.startswith('{'):
            placeholder = '{' + placeholder + '}'
        attrs['template_placeholder'] = placeholder
        return attrs


class DataRequestEndpointSerializer(serializers.ModelSerializer):
    hospitalId = serializers.PrimaryKeyRelatedField(source='hospital', queryset=Hospital.objects.all())
    hospitalName = serializers.CharField(source='hospital.name', read_only=True)
    dataType = serializers.ChoiceField(source='data_type', choices=DataType.choices)
    dataTypeDisplayName = serializers.CharField(source='data_type_display_name', max_length=100,
                                                required=False, allow_blank=True)
    endpointUrl = serializers.CharField(source='endpoint_url', max_length=500)
    fhirResourceType = serializers.CharField(source='fhir_resource_type', max_length=50,
                                             required=False, allow_blank=True)
    apiKey = serializers.CharField(source='api_key', max_length=500, required=False,
                                   allow_blank=True, allow_null=True, write_only=True)
    authToken = serializers.CharField(source='auth_token', max_length=1000, required=False,
                                      allow_blank=True, allow_null=True, write_only=True)
    hasApiKey = serializers.SerializerMethodField()
    hasAuthToken = serializers.SerializerMethodField()
    httpMethod = serializers.ChoiceField(source='http_method', choices=DataRequestEndpoint.HttpMethod.choices,
                                         required=False)
    isActive = serializers.BooleanField(source='is_active', required=False)
    isEndpointValid = serializers.BooleanField(source='is_endpoint_valid', read_only=True)
    lastValidationDate = serializers.DateTimeField(source='last_validation_date', read_only=True)
    lastValidationError = serializers.CharField(source='last_validation_error', read_only=True)
    endpointParameters = EndpointParameterSerializer(source='endpoint_parameters', many=True, required=False)
    allowedRoles = serializers.ListField(source='allowed_roles', child=serializers.ChoiceField(choices=User.Role.choices),
                                         required=False)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = DataRequestEndpoint
        fields = [
            'id', 'hospitalId', 'hospitalName', 'dataType', 'dataTypeDisplayName', 'endpointUrl',
            'fhirResourceType', 'apiKey', 'authToken', 'hasApiKey', 'hasAuthToken', 'httpMethod',
            'description', 'isActive', 'isEndpointValid', 'lastValidationDate', 'lastValidationError',
            'endpointParameters', 'allowedRoles', 'createdAt', 'updatedAt',
        ]
        # Uniqueness on (hospital, data_type) is checked in validate()
        validators = []

    def get_hasApiKey(self, obj):
        return bool(obj.api_key)

    def get_hasAuthToken(self, obj):
        return bool(obj.auth_token)

    def validate_endpointUrl(self, value):
        # Placeholders are filled at call time; check the rest of the URL
        error = FHIRValidationService.check_url(PLACEHOLDER_RE.sub('x', value))
        if error:
            raise serializers.ValidationError(error)
        return value.strip()

    def validate(self, attrs):
        if self.instance is not None:
            # An endpoint never moves to another hospital
            attrs.pop('hospital', None)
        hospital = attrs.get('hospital', getattr(self.instance, 'hospital', None))
        data_type = attrs.get('data_type', getattr(self.instance, 'data_type', None))

        duplicates = DataRequestEndpoint.objects.filter(hospital=hospital, data_type=data_type)
        if self.instance is not None:
            duplicates = duplicates.exclude(pk=self.instance.pk)
        if duplicates.exists():
            raise serializers.ValidationError(
                {'dataType': f"An endpoint for {data_type} already exists for this hospital"}
            )
        return attrs


class EndpointValidationResultSerializer(serializers.Serializer):
    endpointId = serializers.CharField(source='endpoint_id', allow_null=True)
    endpointUrl = serializers.CharField(source='endpoint_url')
    endpointType = serializers.CharField(source='endpoint_type')
    isValid = serializers.BooleanField(source='is_valid')
    errorMessage = serializers.CharField(source='error_message', allow_null=True)
    responseSample = serializers.CharField(source='response_sample', allow_null=True)
    responseTimeMs = serializers.IntegerField(source='response_time_ms', allow_null=True)
    validatedAt = serializers.DateTimeField(source='validated_at')


class EndpointValidationRequestSerializer(serializers.Serializer):
    samplePatientId = serializers.CharField(max_length=64, required=False, allow_blank=True)

