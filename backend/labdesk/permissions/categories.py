# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for grouping and display."""
    PRODUCTION = "PRODUCTION"
    INVOICING = "INVOICING"
    CATALOG = "CATALOG"
    DENTISTS = "DENTISTS"
    SETTINGS = "SETTINGS"
    USERS = "USERS"
    SYSTEM = "SYSTEM"
