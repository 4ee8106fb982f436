from django.contrib import admin
from healthcare.models import Hospital, Patient, PatientConsent, HospitalSettings


@admin.register(Hospital)
class HospitalAdmin(admin.ModelAdmin):
    list_display = ('name', 'email', 'license_number', 'is_active', 'is_approved')
    search_fields = ('name', 'license_number')
    list_filter = ('is_active', 'is_approved')


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ('patient_identifier', 'first_name', 'last_name', 'hospital', 'is_active')
    search_fields = ('patient_identifier', 'first_name', 'last_name')
    list_filter = ('hospital', 'gender', 'is_active')


@admin.register(PatientConsent)
class PatientConsentAdmin(admin.ModelAdmin):
    list_display = ('patient', 'requesting_user', 'data_type', 'is_consented', 'expiry_date', 'is_active')
    search_fields = ('patient__patient_identifier', 'requesting_user__username')
    list_filter = ('data_type', 'is_consented', 'is_active')


@admin.register(HospitalSettings)
class HospitalSettingsAdmin(admin.ModelAdmin):
    list_display = ('hospital', 'data_request_endpoint', 'is_active', 'last_validation_date')
    list_filter = ('is_active',)
    exclude = ('api_key', 'auth_token')
    readonly_fields = ('validation_status', 'last_validation_date', 'last_validation_error')
