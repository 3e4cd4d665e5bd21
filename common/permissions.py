import logging

from rest_framework.permissions import BasePermission

from core.models import User

logger = logging.getLogger("security.authorization")

ALL_ROLES = frozenset(User.Role.values)
ADMIN_ROLES = frozenset({User.Role.ADMIN, User.Role.SUPERADMIN})

ROLE_CAPABILITY_MATRIX = {
    "shoots.view": ALL_ROLES,
    "shoots.book": ADMIN_ROLES | {User.Role.CLIENT},
    "shoots.manage": ADMIN_ROLES,
    "shoots.delete": ADMIN_ROLES,
    "shoots.send_to_editing": ADMIN_ROLES,
    "shoots.finalise": ADMIN_ROLES,
    "shoots.complete": ADMIN_ROLES,
    "shoots.notes.photographer": ADMIN_ROLES | {User.Role.PHOTOGRAPHER},
    "shoots.activity.view": ADMIN_ROLES,
    "media.view": ALL_ROLES,
    "media.download": ALL_ROLES,
    "media.upload": {User.Role.PHOTOGRAPHER, User.Role.EDITOR},
    "issues.view": ALL_ROLES,
    "issues.create": ALL_ROLES,
    "issues.update": ADMIN_ROLES | {User.Role.PHOTOGRAPHER, User.Role.EDITOR},
    "issues.assign": ADMIN_ROLES,
    "users.directory.view": ADMIN_ROLES,
    "payments.view": ADMIN_ROLES,
    "payments.process": ADMIN_ROLES,
    "payments.mark_paid": {User.Role.SUPERADMIN},
    "reports.view": ADMIN_ROLES,
    "admin.records.manage": ADMIN_ROLES,
}


def get_user_role(user):
    if not user or not user.is_authenticated:
        return None
    if user.is_superuser:
        return User.Role.SUPERADMIN
    role = getattr(user, "role", None)
    if role:
        return role
    if getattr(user, "is_staff", False):
        return User.Role.ADMIN
    return User.Role.CLIENT


def is_admin(user):
    return get_user_role(user) in ADMIN_ROLES


def user_has_capability(user, capability):
    if not user or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    allowed_roles = ROLE_CAPABILITY_MATRIX.get(capability)
    if not allowed_roles:
        return False
    return get_user_role(user) in allowed_roles


class RoleCapabilityPermission(BasePermission):
    """Permission class that validates role capability by action/method and logs denied attempts."""

    message = "You do not have permission to perform this action."

    def has_permission(self, request, view):
        capability_map = getattr(view, "permission_action_map", {})
        action_key = getattr(view, "action", None) or request.method.lower()
        capability = capability_map.get(action_key)
        if capability is None:
            return True

        allowed = user_has_capability(request.user, capability)
        if not allowed:
            logger.warning(
                "permission_denied capability=%s user=%s role=%s method=%s path=%s view=%s action=%s",
                capability,
                getattr(request.user, "username", "anonymous"),
                get_user_role(request.user),
                request.method,
                request.path,
                view.__class__.__name__,
                action_key,
            )
        return allowed
