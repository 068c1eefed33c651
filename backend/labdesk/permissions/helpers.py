# Overview: Lookups over the static permission definitions.

from .definitions import PERMISSION_DEFINITIONS


def get_all_permission_codes():
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def validate_permission_code(code):
    return code in get_all_permission_codes()
