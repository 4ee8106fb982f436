# admin.py
from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Admin configuration for hospital staff accounts."""
    model = User
    list_display = ('username', 'email', 'role', 'hospital', 'is_active', 'date_joined')
    list_filter = ('role', 'hospital', 'is_active', 'is_staff')
    search_fields = ('username', 'email', 'first_name', 'last_name')
    ordering = ('-date_joined',)

    fieldsets = BaseUserAdmin.fieldsets + (
        ('Hospital & Role', {'fields': ('role', 'hospital', 'phone_number')}),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ('Hospital & Role', {'fields': ('role', 'hospital')}),
    )
