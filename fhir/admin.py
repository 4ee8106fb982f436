from django.contrib import admin
from fhir.models import DataRequest, DataRequestEndpoint


@admin.register(DataRequest)
class DataRequestAdmin(admin.ModelAdmin):
    list_display = ('id', 'data_type', 'status', 'requesting_hospital', 'patient_hospital',
                    'is_cross_hospital_request', 'request_date', 'response_time_ms')
    search_fields = ('id', 'patient__patient_identifier', 'requesting_user__username', 'denial_reason')
    list_filter = ('status', 'data_type', 'is_cross_hospital_request', 'request_date')
    readonly_fields = [field.name for field in DataRequest._meta.fields]

    def has_add_permission(self, request):
        return False


@admin.register(DataRequestEndpoint)
class DataRequestEndpointAdmin(admin.ModelAdmin):
    list_display = ('hospital', 'data_type', 'endpoint_url', 'http_method', 'is_active',
                    'is_endpoint_valid', 'last_validation_date')
    search_fields = ('endpoint_url', 'hospital__name')
    list_filter = ('data_type', 'is_active', 'is_endpoint_valid')
    exclude = ('api_key', 'auth_token')
