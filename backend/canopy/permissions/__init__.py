# Overview: Permission system package.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    COMPLIANCE_PERMISSIONS,
    CULTIVATION_PERMISSIONS,
    USER_PERMISSIONS,
    SYSTEM_PERMISSIONS,
)
from .roles import DEFAULT_ROLES, DEFAULT_ROLE_PERMISSIONS

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "COMPLIANCE_PERMISSIONS",
    "CULTIVATION_PERMISSIONS",
    "USER_PERMISSIONS",
    "SYSTEM_PERMISSIONS",
    "DEFAULT_ROLES",
    "DEFAULT_ROLE_PERMISSIONS",
]
