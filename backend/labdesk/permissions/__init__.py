# Overview: Permission system package.
# Re-exports the definitions, default role mapping and lookup helpers.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    PRODUCTION_PERMISSIONS,
    INVOICING_PERMISSIONS,
    CATALOG_PERMISSIONS,
    DENTIST_PERMISSIONS,
    SETTINGS_PERMISSIONS,
    USER_PERMISSIONS,
    SYSTEM_PERMISSIONS,
)
from .roles import DEFAULT_ROLES, DEFAULT_ROLE_PERMISSIONS
from .helpers import (
    get_all_permission_codes,
    validate_permission_code,
)

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "PRODUCTION_PERMISSIONS",
    "INVOICING_PERMISSIONS",
    "CATALOG_PERMISSIONS",
    "DENTIST_PERMISSIONS",
    "SETTINGS_PERMISSIONS",
    "USER_PERMISSIONS",
    "SYSTEM_PERMISSIONS",
    "DEFAULT_ROLES",
    "DEFAULT_ROLE_PERMISSIONS",
    "get_all_permission_codes",
    "validate_permission_code",
]
