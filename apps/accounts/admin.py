# ==========================================
# apps/accounts/admin.py
# ==========================================

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils.html import format_html
from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    Admin interface for customer and supplier accounts.

    Provides:
    - User listing with contact and location fields
    - Filtering by status and verification
    - Search by email, name and city
    """

    list_display = [
        'email',
        'get_full_name',
        'city',
        'location_display',
        'email_verified_badge',
        'is_active',
        'created_at',
    ]

    list_filter = [
        'is_active',
        'is_staff',
        'email_verified',
        'city',
        'created_at',
    ]

    search_fields = [
        'email',
        'first_name',
        'last_name',
        'city',
    ]

    ordering = ['-created_at']
    date_hierarchy = 'created_at'

    # Remove username field references from BaseUserAdmin
    fieldsets = (
        ('Basic Information', {
            'fields': ('email', 'first_name', 'last_name', 'phone_number', 'password')
        }),
        ('Delivery Address', {
            'fields': ('city', 'street', 'home_number', 'longitude', 'latitude'),
        }),
        ('Permissions', {
            'fields': ('is_active', 'is_staff', 'is_superuser', 'groups', 'user_permissions'),
        }),
        ('Verification', {
            'fields': ('email_verified',),
        }),
        ('Timestamps', {
            'fields': ('created_at', 'last_login'),
            'classes': ('collapse',),
        }),
    )

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('email', 'password1', 'password2'),
        }),
    )

    readonly_fields = ['created_at', 'last_login']

    def location_display(self, obj):
        coordinates = obj.coordinates
        if coordinates is None:
            return '-'
        return f"{coordinates[0]:.5f}, {coordinates[1]:.5f}"
    location_display.short_description = 'Location (lon, lat)'

    def email_verified_badge(self, obj):
        """Display email verification status as badge."""
        if obj.email_verified:
            return format_html(
                '<span style="background: #6B8E5E; color: white; padding: 3px 8px; '
                'border-radius: 10px; font-size: 11px;">Verified</span>'
            )
        return format_html(
            '<span style="background: #E5C49A; color: #2C1810; padding: 3px 8px; '
            'border-radius: 10px; font-size: 11px;">Unverified</span>'
        )
    email_verified_badge.short_description = 'Email'
