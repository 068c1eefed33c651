# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- PRODUCTION --

PRODUCTION_PERMISSIONS = [
    (
        "VIEW_WORKSHEETS",
        "View Worksheets",
        "View worksheets and their products",
        PermissionCategory.PRODUCTION,
    ),
    (
        "MANAGE_PRODUCTION",
        "Manage Production",
        "Create worksheets, start and finish production, cancel and roll back worksheets",
        PermissionCategory.PRODUCTION,
    ),
    (
        "PERFORM_QC",
        "Perform Quality Control",
        "Approve or reject worksheets waiting for quality control",
        PermissionCategory.PRODUCTION,
    ),
    (
        "VOID_WORKSHEETS",
        "Void Worksheets",
        "Void approved or delivered worksheets and cancel approved ones",
        PermissionCategory.PRODUCTION,
    ),
]


# -- INVOICING --

INVOICING_PERMISSIONS = [
    (
        "VIEW_INVOICES",
        "View Invoices",
        "View invoices, line items and e-mail history",
        PermissionCategory.INVOICING,
    ),
    (
        "MANAGE_INVOICES",
        "Manage Invoices",
        "Create, finalize, send, cancel and record payment for invoices",
        PermissionCategory.INVOICING,
    ),
]


# -- CATALOG --

CATALOG_PERMISSIONS = [
    (
        "VIEW_PRODUCTS",
        "View Products",
        "View the product catalog",
        PermissionCategory.CATALOG,
    ),
    (
        "MANAGE_PRODUCTS",
        "Manage Products",
        "Create and edit individual products",
        PermissionCategory.CATALOG,
    ),
    (
        "MANAGE_PRODUCT_CATALOG",
        "Manage Product Catalog",
        "Bulk update and bulk delete products",
        PermissionCategory.CATALOG,
    ),
]


# -- DENTISTS --

DENTIST_PERMISSIONS = [
    (
        "VIEW_DENTISTS",
        "View Dentists",
        "View dentist and clinic records",
        PermissionCategory.DENTISTS,
    ),
    (
        "MANAGE_DENTISTS",
        "Manage Dentists",
        "Create and edit dentist and clinic records",
        PermissionCategory.DENTISTS,
    ),
]


# -- SETTINGS --

SETTINGS_PERMISSIONS = [
    (
        "MANAGE_SETTINGS",
        "Manage Settings",
        "Manage laboratory settings including bank accounts",
        PermissionCategory.SETTINGS,
    ),
]


# -- USERS --

USER_PERMISSIONS = [
    (
        "MANAGE_USERS",
        "Manage Users",
        "Create users and assign roles",
        PermissionCategory.USERS,
    ),
]


# -- SYSTEM --

SYSTEM_PERMISSIONS = [
    (
        "VIEW_AUDIT_LOG",
        "View Audit Log",
        "View the audit trail of business changes",
        PermissionCategory.SYSTEM,
    ),
]


PERMISSION_DEFINITIONS = (
    PRODUCTION_PERMISSIONS
    + INVOICING_PERMISSIONS
    + CATALOG_PERMISSIONS
    + DENTIST_PERMISSIONS
    + SETTINGS_PERMISSIONS
    + USER_PERMISSIONS
    + SYSTEM_PERMISSIONS
)
