# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    COMPLIANCE = "COMPLIANCE"
    CULTIVATION = "CULTIVATION"
    USERS = "USERS"
    SYSTEM = "SYSTEM"
