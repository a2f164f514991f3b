# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- COMPLIANCE --

COMPLIANCE_PERMISSIONS = [
    (
        "VIEW_COMPLIANCE",
        "View Compliance",
        "View registry caches, mappings and sync logs",
        PermissionCategory.COMPLIANCE,
    ),
    (
        "RUN_COMPLIANCE_SYNC",
        "Run Compliance Sync",
        "Pull items, tags, plant batches and facilities from the registry",
        PermissionCategory.COMPLIANCE,
    ),
    (
        "MANAGE_COMPLIANCE_LINKS",
        "Manage Compliance Links",
        "Link or unlink facilities and import registry plant batches",
        PermissionCategory.COMPLIANCE,
    ),
    (
        "PUSH_COMPLIANCE",
        "Push To Registry",
        "Report inventory lots and phase changes to the registry",
        PermissionCategory.COMPLIANCE,
    ),
    (
        "MANAGE_REGISTRY_CREDENTIALS",
        "Manage Registry Credentials",
        "Create, rotate and validate registry API keys",
        PermissionCategory.COMPLIANCE,
    ),
]

# -- CULTIVATION --

CULTIVATION_PERMISSIONS = [
    (
        "VIEW_BATCHES",
        "View Batches",
        "View plant batches and inventory lots",
        PermissionCategory.CULTIVATION,
    ),
    (
        "MANAGE_BATCHES",
        "Manage Batches",
        "Change batch stages and plant counts",
        PermissionCategory.CULTIVATION,
    ),
]

# -- USERS / SYSTEM --

USER_PERMISSIONS = [
    (
        "MANAGE_USERS",
        "Manage Users",
        "Create users and assign roles",
        PermissionCategory.USERS,
    ),
]

SYSTEM_PERMISSIONS = [
    (
        "SYSTEM_ADMIN",
        "System Administration",
        "Full access to organization configuration",
        PermissionCategory.SYSTEM,
    ),
]


PERMISSION_DEFINITIONS = (
    COMPLIANCE_PERMISSIONS
    + CULTIVATION_PERMISSIONS
    + USER_PERMISSIONS
    + SYSTEM_PERMISSIONS
)
