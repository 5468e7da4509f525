"""
Role/feature access table.

Every protected screen of the dashboard is gated on a feature name; the
table below decides which roles may open it. REST permissions, the
queue board WebSocket and the ``/api/access/features`` endpoint all go
through :func:`has_access`.
"""
from __future__ import annotations

from typing import Optional

import structlog

log = structlog.get_logger(__name__)

ROLES = ('admin', 'doctor', 'nurse', 'staff', 'patient')

FEATURE_ACCESS: dict[str, frozenset[str]] = {
    'dashboard': frozenset({'admin', 'doctor', 'nurse', 'staff'}),
    'opdQueue': frozenset({'admin', 'doctor', 'nurse', 'staff'}),
    'bedAvailability': frozenset({'admin', 'nurse', 'staff'}),
    'inventory': frozenset({'admin', 'staff'}),
    'opdPrediction': frozenset({'admin', 'doctor', 'staff'}),
    'admissions': frozenset({'admin', 'doctor', 'nurse', 'staff'}),
    'doctorVisit': frozenset({'admin', 'doctor', 'nurse', 'patient', 'staff'}),
    'settings': frozenset({'admin', 'patient', 'doctor', 'nurse', 'staff'}),
}


def has_access(role: Optional[str], feature: str) -> bool:
    """Return True if ``role`` may use ``feature``.

    A missing role never has access. Unknown feature names are denied and
    logged, since they usually mean a typo at the call site.
    """
    if not role:
        return False
    allowed = FEATURE_ACCESS.get(feature)
    if allowed is None:
        log.warning('unknown_feature', feature=feature, role=role)
        return False
    return role in allowed


def features_for_role(role: Optional[str]) -> list[str]:
    return [name for name in FEATURE_ACCESS if has_access(role, name)]


def role_for_user(user) -> Optional[str]:
    """Resolve the dashboard role of a Django user.

    Superusers act as admins even without a profile row; anonymous
    users and users without a profile have no role.
    """
    if not (user and getattr(user, 'is_authenticated', False)):
        return None
    if getattr(user, 'is_superuser', False):
        return 'admin'
    profile = getattr(user, 'profile', None)
    return getattr(profile, 'role', None)
