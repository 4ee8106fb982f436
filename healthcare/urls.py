"""
URL configuration for hospital settings.
"""
from django.urls import path, include
from rest_framework.routers import DefaultRouter
from healthcare.views import HospitalSettingsViewSet


router = DefaultRouter()
# Accept paths with and without the trailing slash
router.trailing_slash = '/?'
router.register(r'hospitalsettings', HospitalSettingsViewSet, basename='hospitalsettings')

urlpatterns = [
    path('', include(router.urls)),
]
