"""
Custom permission classes for campaigns app.
"""
from rest_framework.permissions import BasePermission


class IsCommitmentOwner(BasePermission):
    """
    Object permission: only the customer who made a commitment can see it.

    Usage:
        permission_classes = [IsAuthenticated, IsCommitmentOwner]
    """

    message = 'You can only access your own commitments.'

    def has_object_permission(self, request, view, obj):
        return obj.customer_id == request.user.id
