"""Custom DRF permissions for the catalogue back office."""
from rest_framework.permissions import SAFE_METHODS, BasePermission


class IsCatalogManager(BasePermission):
    """Allow authenticated staff members and superusers."""

    message = "Acces reserve aux gestionnaires du catalogue."

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and (user.is_staff or user.is_superuser))


class IsCatalogManagerOrReadOnly(IsCatalogManager):
    """Any authenticated user may read; writes need a catalogue manager."""

    def has_permission(self, request, view):
        if request.method in SAFE_METHODS:
            return bool(request.user and request.user.is_authenticated)
        return super().has_permission(request, view)
