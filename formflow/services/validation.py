"""
Form field validation.

Two entry points:

* ``validate_field_definitions(fields)`` checks a template's field schema
  when it is created, updated or cloned.
* ``validate_submission_data(template, data, enforce_required=...)`` checks
  submitted values against that schema.

Both collect every problem into one ``{field_id: message}`` map and raise a
single ``ValidationError``; callers persist nothing when it is raised.

Rule format (``field["validation"]["rules"]``)::

    {"type": "maxLength", "value": 50, "message": "Too long"}
    {"type": "pattern", "pattern": "^[A-Z]+$"}
    {"type": "pan"}
"""

from __future__ import annotations

import logging
import re

from formflow.core.exceptions import ValidationError
from formflow.models.form import DISPLAY_ONLY_FIELD_TYPES, FIELD_TYPES
from formflow.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)

VALIDATION_PATTERNS = {
    "email": re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$"),
    "numeric": re.compile(r"^\d+$"),
    "alphanumeric": re.compile(r"^[a-zA-Z0-9]+$"),
    "mobile": re.compile(r"^[6-9]\d{9}$"),
    "pan": re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$"),
    "aadhaar": re.compile(r"^\d{12}$"),
    "pincode": re.compile(r"^\d{6}$"),
    "ifsc": re.compile(r"^[A-Z]{4}0[A-Z0-9]{6}$"),
    "gstin": re.compile(r"^\d{2}[A-Z]{5}\d{4}[A-Z][A-Z\d]Z[A-Z\d]$"),
    "url": re.compile(r"^(https?://)?([\da-z.-]+)\.([a-z.]{2,6})([/\w .-]*)*/?$"),
    "alphabetic": re.compile(r"^[a-zA-Z\s]+$"),
}

# Matched against the upper-cased value.
UPPERCASE_PATTERNS = {"pan", "ifsc", "gstin"}

DEFAULT_ERROR_MESSAGES = {
    "required": "This field is required",
    "email": "Please enter a valid email address",
    "numeric": "Please enter only numbers",
    "alphanumeric": "Please enter only letters and numbers",
    "mobile": "Please enter a valid 10-digit mobile number starting with 6-9",
    "pan": "Please enter a valid PAN (e.g., ABCDE1234F)",
    "aadhaar": "Please enter a valid 12-digit Aadhaar number",
    "pincode": "Please enter a valid 6-digit pincode",
    "ifsc": "Please enter a valid IFSC code (e.g., SBIN0001234)",
    "gstin": "Please enter a valid 15-character GSTIN",
    "pattern": "Invalid format",
    "minLength": "Minimum length not met",
    "maxLength": "Maximum length exceeded",
    "min": "Value is too small",
    "max": "Value is too large",
    "url": "Please enter a valid URL",
    "alphabetic": "Please enter only letters",
}

RULE_TYPES = set(VALIDATION_PATTERNS) | {"required", "pattern", "minLength", "maxLength", "min", "max"}

OPTION_FIELD_TYPES = {"select", "radio"}


# ═════════════════════════════════════════════════════════════════════════════
# Template schema
# ═════════════════════════════════════════════════════════════════════════════


def validate_field_definitions(fields) -> list[dict]:
    """Check a template field list; return it unchanged when valid."""
    if not isinstance(fields, list) or not fields:
        raise ValidationError("At least one field is required", details={"fields": "required"})

    errors: dict[str, str] = {}
    seen: set[str] = set()
    for index, field in enumerate(fields):
        key = f"fields[{index}]"
        if not isinstance(field, dict):
            errors[key] = "Field definition must be an object"
            continue
        field_id = str(field.get("id") or "").strip()
        if not field_id:
            errors[key] = "Field id is required"
            continue
        if field_id in seen:
            errors[field_id] = "Duplicate field id"
            continue
        seen.add(field_id)

        field_type = field.get("type")
        if field_type not in FIELD_TYPES:
            errors[field_id] = f"Unsupported field type '{field_type}'"
            continue
        if field_type not in DISPLAY_ONLY_FIELD_TYPES and not str(field.get("label") or "").strip():
            errors[field_id] = "Field label is required"
            continue
        if field_type in OPTION_FIELD_TYPES and not _option_values(field):
            errors[field_id] = f"A {field_type} field needs at least one option"
            continue

        for rule in (field.get("validation") or {}).get("rules") or []:
            problem = _check_rule_definition(rule)
            if problem:
                errors[field_id] = problem
                break

    if errors:
        raise ValidationError("Invalid field definitions", details=errors)
    return fields


def _check_rule_definition(rule) -> str | None:
    if not isinstance(rule, dict):
        return "Validation rule must be an object"
    rule_type = rule.get("type")
    if rule_type not in RULE_TYPES:
        return f"Unknown validation rule '{rule_type}'"
    if rule_type in ("minLength", "maxLength", "min", "max"):
        try:
            float(rule.get("value"))
        except (TypeError, ValueError):
            return f"Rule '{rule_type}' needs a numeric value"
    if rule_type == "pattern":
        try:
            re.compile(str(rule.get("pattern") or ""))
        except re.error:
            return "Rule 'pattern' has an invalid regular expression"
    return None


# ═════════════════════════════════════════════════════════════════════════════
# Submitted data
# ═════════════════════════════════════════════════════════════════════════════


def validate_submission_data(template, data, *, enforce_required: bool = True) -> dict:
    """
    Validate ``data`` against ``template.fields``.

    Drafts pass ``enforce_required=False``: missing values are accepted but
    every supplied value must still be well formed. Returns the data dict.
    """
    if not isinstance(data, dict):
        raise ValidationError("Form data must be an object", details={"data": "must be an object"})

    fields = {
        f.get("id"): f for f in (template.fields or [])
        if f.get("id") and f.get("type") not in DISPLAY_ONLY_FIELD_TYPES
    }
    errors: dict[str, str] = {}

    for key in data:
        if key not in fields:
            errors[key] = "Unknown field"

    for field_id, field in fields.items():
        message = _validate_value(field, data.get(field_id), enforce_required)
        if message:
            errors[field_id] = message

    if errors:
        logger.info(
            "Submission rejected",
            extra={"template_id": template.id, "error_fields": sorted(errors)},
        )
        raise ValidationError("Form validation failed", details=errors)
    return data


def _is_empty(value) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _option_values(field) -> list[str]:
    values = []
    for opt in field.get("options") or []:
        if isinstance(opt, dict):
            values.append(str(opt.get("value", opt.get("label", ""))))
        else:
            values.append(str(opt))
    return values


def _rules_for(field) -> list[dict]:
    validation = field.get("validation") or {}
    rules = [r for r in (validation.get("rules") or []) if isinstance(r, dict)]
    if validation.get("isEmail"):
        rules.append({"type": "email"})
    if validation.get("isNumeric"):
        rules.append({"type": "numeric"})
    return rules


def _validate_value(field, value, enforce_required) -> str | None:
    rules = _rules_for(field)
    required_rule = next((r for r in rules if r.get("type") == "required"), None)

    if _is_empty(value):
        if enforce_required and (field.get("required") or required_rule):
            return (required_rule or {}).get("message") or DEFAULT_ERROR_MESSAGES["required"]
        return None

    problem = _check_type(field, value)
    if problem:
        return problem

    for rule in rules:
        problem = _check_rule(rule, value)
        if problem:
            return problem
    return None


def _check_type(field, value) -> str | None:
    field_type = field.get("type")
    if field_type == "number":
        if isinstance(value, bool):
            return "Please enter a number"
        try:
            float(value)
        except (TypeError, ValueError):
            return "Please enter a number"
    elif field_type == "email":
        if not VALIDATION_PATTERNS["email"].match(str(value).strip()):
            return DEFAULT_ERROR_MESSAGES["email"]
    elif field_type == "date":
        try:
            parse_datetime(value)
        except ValueError:
            return "Please enter a valid date"
    elif field_type in OPTION_FIELD_TYPES:
        if str(value) not in _option_values(field):
            return "Please choose one of the available options"
    elif field_type == "checkbox":
        options = _option_values(field)
        if options and isinstance(value, list):
            if any(str(v) not in options for v in value):
                return "Please choose from the available options"
    return None


def _check_rule(rule, value) -> str | None:
    rule_type = rule.get("type")
    text = str(value).strip()
    message = rule.get("message") or DEFAULT_ERROR_MESSAGES.get(rule_type) or "Invalid value"

    if rule_type == "required":
        return None

    if rule_type in VALIDATION_PATTERNS:
        candidate = text.upper() if rule_type in UPPERCASE_PATTERNS else text
        return None if VALIDATION_PATTERNS[rule_type].match(candidate) else message

    if rule_type == "pattern":
        pattern = rule.get("pattern")
        if not pattern:
            return None
        try:
            return None if re.search(pattern, text) else message
        except re.error:
            logger.warning("Invalid regex in field rule: %s", pattern)
            return message

    limit = rule.get("value")
    if limit is None:
        return None
    try:
        limit = float(limit)
    except (TypeError, ValueError):
        return None

    if rule_type == "minLength" and len(text) < limit:
        return rule.get("message") or f"Minimum {int(limit)} characters required"
    if rule_type == "maxLength" and len(text) > limit:
        return rule.get("message") or f"Maximum {int(limit)} characters allowed"
    if rule_type in ("min", "max"):
        try:
            number = float(text)
        except ValueError:
            return None
        if rule_type == "min" and number < limit:
            return rule.get("message") or f"Minimum value is {_fmt(limit)}"
        if rule_type == "max" and number > limit:
            return rule.get("message") or f"Maximum value is {_fmt(limit)}"
    return None


def _fmt(number: float) -> str:
    return str(int(number)) if number == int(number) else str(number)
