"""
Serializers for hospital-wide FHIR settings.
"""
from rest_framework import serializers

from fhir.services.fhir_validation import FHIRValidationService, PLACEHOLDER_RE
from healthcare.models import Hospital, HospitalSettings


def _endpoint_url_field(source):
    return serializers.CharField(source=source, max_length=500, required=False, allow_blank=True)


class HospitalSettingsSerializer(serializers.ModelSerializer):
    hospitalId = serializers.IntegerField(source='hospital_id', read_only=True)
    hospitalName = serializers.CharField(source='hospital.name', read_only=True)
    dataRequestEndpoint = _endpoint_url_field('data_request_endpoint')
    patientEndpoint = _endpoint_url_field('patient_endpoint')
    observationEndpoint = _endpoint_url_field('observation_endpoint')
    conditionEndpoint = _endpoint_url_field('condition_endpoint')
    medicationEndpoint = _endpoint_url_field('medication_endpoint')
    diagnosticReportEndpoint = _endpoint_url_field('diagnostic_report_endpoint')
    procedureEndpoint = _endpoint_url_field('procedure_endpoint')
    encounterEndpoint = _endpoint_url_field('encounter_endpoint')
    allergyIntoleranceEndpoint = _endpoint_url_field('allergy_intolerance_endpoint')
    immunizationEndpoint = _endpoint_url_field('immunization_endpoint')
    apiKey = serializers.CharField(source='api_key', max_length=500, required=False,
                                   allow_blank=True, allow_null=True, write_only=True)
    authToken = serializers.CharField(source='auth_token', max_length=1000, required=False,
                                      allow_blank=True, allow_null=True, write_only=True)
    hasApiKey = serializers.SerializerMethodField()
    hasAuthToken = serializers.SerializerMethodField()
    isActive = serializers.BooleanField(source='is_active', read_only=True)
    validationStatus = serializers.JSONField(source='validation_status', read_only=True)
    lastValidationDate = serializers.DateTimeField(source='last_validation_date', read_only=True)
    lastValidationError = serializers.CharField(source='last_validation_error', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = HospitalSettings
        fields = [
            'id', 'hospitalId', 'hospitalName', 'dataRequestEndpoint', 'patientEndpoint',
            'observationEndpoint', 'conditionEndpoint', 'medicationEndpoint',
            'diagnosticReportEndpoint', 'procedureEndpoint', 'encounterEndpoint',
            'allergyIntoleranceEndpoint', 'immunizationEndpoint', 'apiKey', 'authToken',
            'hasApiKey', 'hasAuthToken', 'isActive', 'validationStatus', 'lastValidationDate',
            'lastValidationError', 'createdAt', 'updatedAt',
        ]

    def get_hasApiKey(self, obj):
        return bool(obj.api_key)

    def get_hasAuthToken(self, obj):
        return bool(obj.auth_token)

    def validate(self, attrs):
        errors = {}
        for field_name, field in self.fields.items():
            if not field_name.endswith('Endpoint') or not attrs.get(field.source):
                continue
            error = FHIRValidationService.check_url(PLACEHOLDER_RE.sub('x', attrs[field.source]))
            if error:
                errors[field_name] = error
        if errors:
            raise serializers.ValidationError(errors)
        return attrs


class HospitalSettingsCreateSerializer(HospitalSettingsSerializer):
    hospitalId = serializers.PrimaryKeyRelatedField(source='hospital', queryset=Hospital.objects.all())


class EndpointCheckSerializer(serializers.Serializer):
    endpointUrl = serializers.CharField(max_length=500)
    endpointType = serializers.CharField(max_length=50, required=False, allow_blank=True, default='')


class EndpointTypesSerializer(serializers.Serializer):
    endpointTypes = serializers.ListField(
        child=serializers.ChoiceField(choices=list(HospitalSettings.ENDPOINT_FIELDS)),
        allow_empty=False,
    )
