"""
Feature-gated permission classes.

Each class binds one feature name of :mod:`opd.access` so views can be
declared as ``@permission_classes([IsAuthenticated, CanUseOpdQueue])``.
"""
from rest_framework.permissions import BasePermission

from .access import has_access, role_for_user


class FeatureAccess(BasePermission):
    """Allow access only if the user's role may use ``feature``."""
    feature: str = ''
    message = 'Your role does not have access to this feature.'

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, 'user', None)
        return has_access(role_for_user(user), self.feature)


class CanUseOpdQueue(FeatureAccess):
    feature = 'opdQueue'


class CanRegisterVisit(FeatureAccess):
    """Patients and staff may register a visit (join the queue)."""
    feature = 'doctorVisit'
