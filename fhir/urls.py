"""
URL configuration for the data-request exchange.
"""
from django.urls import path, include
from rest_framework.routers import DefaultRouter
from fhir.views import DataRequestViewSet, DataRequestEndpointViewSet


router = DefaultRouter()
# Accept paths with and without the trailing slash
router.trailing_slash = '/?'
router.register(r'datarequest', DataRequestViewSet, basename='datarequest')
router.register(r'datarequestendpoint', DataRequestEndpointViewSet, basename='datarequestendpoint')

urlpatterns = [
    path('', include(router.urls)),
]
