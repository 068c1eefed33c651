# Overview: Default role -> permission mapping applied to every new laboratory.

from .definitions import PERMISSION_DEFINITIONS


DEFAULT_ROLES = [
    ("admin", "Full laboratory access"),
    ("technician", "Production work and delivery"),
    ("qc_inspector", "Quality control of finished work"),
    ("invoicing", "Invoicing and payments"),
    ("staff", "Read-only access"),
]


DEFAULT_ROLE_PERMISSIONS = {
    "admin": [perm[0] for perm in PERMISSION_DEFINITIONS],
    "technician": [
        "VIEW_WORKSHEETS",
        "MANAGE_PRODUCTION",
        "PERFORM_QC",
        "VIEW_PRODUCTS",
        "MANAGE_PRODUCTS",
        "VIEW_DENTISTS",
        "VIEW_INVOICES",
    ],
    "qc_inspector": [
        "VIEW_WORKSHEETS",
        "PERFORM_QC",
        "VIEW_PRODUCTS",
        "VIEW_DENTISTS",
    ],
    "invoicing": [
        "VIEW_WORKSHEETS",
        "VIEW_INVOICES",
        "MANAGE_INVOICES",
        "VIEW_PRODUCTS",
        "VIEW_DENTISTS",
        "MANAGE_DENTISTS",
    ],
    "staff": [
        "VIEW_WORKSHEETS",
        "VIEW_PRODUCTS",
        "VIEW_DENTISTS",
    ],
}
