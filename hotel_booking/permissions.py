from rest_framework import permissions

from .models import UserProfile

Role = UserProfile.Role

ROLE_RANK = {
    Role.CUSTOMER: 0,
    Role.RECEPTIONIST: 1,
    Role.MANAGER: 2,
    Role.ADMIN: 3,
}


def role_of(identity):
    return getattr(identity, "role", None) or Role.CUSTOMER


def has_rank(identity, minimum):
    """True when the caller's role ranks at least as high as ``minimum``."""
    return ROLE_RANK.get(role_of(identity), 0) >= ROLE_RANK[minimum]


def is_staff_identity(identity):
    return has_rank(identity, Role.RECEPTIONIST)


class IsStaff(permissions.BasePermission):
    message = "Unauthorized"

    def has_permission(self, request, view):
        return bool(request.user and is_staff_identity(request.user))


class IsManagerOrAdmin(permissions.BasePermission):
    message = "Unauthorized"

    def has_permission(self, request, view):
        return bool(request.user and has_rank(request.user, Role.MANAGER))


class IsAdmin(permissions.BasePermission):
    message = "Unauthorized"

    def has_permission(self, request, view):
        return bool(request.user and has_rank(request.user, Role.ADMIN))
