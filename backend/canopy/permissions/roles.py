# Overview: Default permission sets for the standard roles.

from .definitions import PERMISSION_DEFINITIONS


DEFAULT_ROLES = [
    ("admin", "Full organization access"),
    ("manager", "Site management, compliance sync and links"),
    ("grower", "Batch operations and compliance visibility"),
]

DEFAULT_ROLE_PERMISSIONS = {
    "admin": [perm[0] for perm in PERMISSION_DEFINITIONS],
    "manager": [
        "VIEW_COMPLIANCE",
        "RUN_COMPLIANCE_SYNC",
        "MANAGE_COMPLIANCE_LINKS",
        "PUSH_COMPLIANCE",
        "VIEW_BATCHES",
        "MANAGE_BATCHES",
    ],
    "grower": [
        "VIEW_COMPLIANCE",
        "VIEW_BATCHES",
        "MANAGE_BATCHES",
    ],
}
