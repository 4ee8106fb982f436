# permissions.py
from rest_framework import permissions


def _target_hospital_id(obj):
    """Hospital id an object belongs to (the object itself when it is a Hospital)."""
    if hasattr(obj, 'hospital_id'):
        return obj.hospital_id
    return getattr(obj, 'pk', None)


class IsSameHospitalOrSystemAdmin(permissions.BasePermission):
    """
    Allow access to hospital-owned objects only to users of that hospital.
    System administrators can reach every hospital.
    """
    message = "You can only access configuration for your own hospital."

    def has_object_permission(self, request, view, obj):
        user = request.user
        if user.is_system_admin:
            return True
        return user.hospital_id is not None and user.hospital_id == _target_hospital_id(obj)


class IsHospitalManagerOrReadOnly(permissions.BasePermission):
    """
    Reads are open to authenticated users; writes need a hospital manager
    or a system administrator.
    """
    message = "Only hospital managers can change endpoint configuration."

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        if request.method in permissions.SAFE_METHODS:
            return True
        return request.user.is_hospital_manager or request.user.is_system_admin


def can_access_hospital(user, hospital_id):
    """Check hospital scoping for views that take a hospital id in the URL."""
    if user.is_system_admin:
        return True
    return user.hospital_id is not None and str(user.hospital_id) == str(hospital_id)
