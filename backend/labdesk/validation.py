from __future__ import annotations
import re
from datetime import date, datetime
from labdesk.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

PRODUCT_CATEGORIES = {
    "FIXED_PROSTHETICS",
    "REMOVABLE_PROSTHETICS",
    "IMPLANTOLOGY",
    "AESTHETICS",
    "OTHER",
}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")
_IBAN_PATTERN = re.compile(r"^[A-Z]{2}[0-9]{2}[A-Z0-9]{11,30}$")
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate product code)."""


class NotFoundError(LookupError):
    """404-level: entity missing or outside the caller's laboratory."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - aliases: accepted alternative spellings mapped onto column keys
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    aliases: dict[str, str] | None = None


def to_snake_case(key: str) -> str:
    """bankName -> bank_name; already snake_case keys pass through."""
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def normalize_keys(payload: dict, aliases: dict[str, str] | None = None) -> dict:
    """Accept camelCase request bodies alongside snake_case ones."""
    out: dict = {}
    for k, v in payload.items():
        key = to_snake_case(k)
        if aliases and key in aliases:
            key = aliases[key]
        out[key] = v
    return out


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        # Already an int (but not bool which is a subclass of int)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            if 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        raise ValidationError(f"{col.key} must be an integer")

    # Booleans are strict: "false" must not become True
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        return parse_date(value, field=col.key)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def parse_date(value: Any, *, field: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 date")
        if dt is not None:
            return dt.date()
    raise ValidationError(f"{field} must be an ISO-8601 date")


def json_object(payload: Any) -> dict:
    """Request body as a dict; a missing body is empty, any non-object is rejected."""
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def parse_int(value: Any, *, field: str) -> int:
    """
    Integer from JSON: an int or a string of digits (optionally signed).

    Booleans and floats are rejected even though Python treats True as 1.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
    raise ValidationError(f"{field} must be an integer")


def parse_id_list(value: Any, *, field: str = "ids") -> list[int]:
    """Non-empty list of positive integer ids, duplicates removed in order."""
    if not isinstance(value, list) or not value:
        raise ValidationError(f"{field} must be a non-empty list")
    ids: list[int] = []
    for raw in value:
        try:
            raw = parse_int(raw, field=field)
        except ValidationError:
            raise ValidationError(f"{field} must contain integer ids") from None
        if raw <= 0:
            raise ValidationError(f"{field} must contain integer ids")
        if raw not in ids:
            ids.append(raw)
    return ids


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    payload = normalize_keys(payload, policy.aliases)

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "price_cents" in patch and patch["price_cents"] is not None:
        price = patch["price_cents"]
        if price < 0:
            raise ValidationError("price_cents must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"price_cents cannot exceed {MAX_PRICE_CENTS}")
    if "category" in patch and patch["category"] not in PRODUCT_CATEGORIES:
        raise ValidationError(
            f"category must be one of: {', '.join(sorted(PRODUCT_CATEGORIES))}"
        )


def normalize_iban(value: str) -> str:
    return "".join(value.split()).upper()


def enforce_rules_bank_account(patch: dict) -> None:
    if "iban" in patch and patch["iban"] is not None:
        iban = normalize_iban(patch["iban"])
        if not _IBAN_PATTERN.match(iban):
            raise ValidationError("iban is not a valid IBAN")
        patch["iban"] = iban
    if "swift_bic" in patch and patch["swift_bic"]:
        patch["swift_bic"] = patch["swift_bic"].replace(" ", "").upper()
        if len(patch["swift_bic"]) not in (8, 11):
            raise ValidationError("swift_bic must be 8 or 11 characters")
    if "display_order" in patch and patch["display_order"] is not None:
        if patch["display_order"] < 0:
            raise ValidationError("display_order must be >= 0")


def enforce_rules_dentist(patch: dict) -> None:
    email = patch.get("email")
    if email and not _EMAIL_PATTERN.match(email):
        raise ValidationError("email is not a valid address")
    if "payment_terms_days" in patch and patch["payment_terms_days"] is not None:
        if not 0 <= patch["payment_terms_days"] <= 365:
            raise ValidationError("payment_terms_days must be between 0 and 365")


def validate_email_address(value: Any, *, field: str = "recipient_email") -> str:
    if not isinstance(value, str) or not _EMAIL_PATTERN.match(value.strip()):
        raise ValidationError(f"{field} is not a valid address")
    return value.strip()
