"""Validation utilities for the application."""
import re
from typing import Dict, List, Any, Optional

from congregation.utils.errors import ValidationError

EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
PHONE_PATTERN = r'^[0-9+\-\s()]{7,20}$'

class Validator:
    """Validation helper class."""

    @staticmethod
    def validate_email(email: str) -> bool:
        """Validate email format."""
        if not email:
            return False
        return bool(re.match(EMAIL_PATTERN, email))

    @staticmethod
    def validate_phone(phone: str) -> bool:
        """Validate phone number format."""
        if not phone:
            return False
        return bool(re.match(PHONE_PATTERN, phone.strip()))

    @staticmethod
    def validate_password(password: str, min_length: int = 8) -> Dict[str, Any]:
        """Validate password strength."""
        errors = []

        if not password:
            errors.append("Password is required")
        elif len(password) < min_length:
            errors.append(f"Password must be at least {min_length} characters long")
        elif len(password) > 128:
            errors.append("Password is too long")

        return {
            "is_valid": len(errors) == 0,
            "errors": errors
        }

    @staticmethod
    def validate_name(name: str, label: str = "Name") -> Dict[str, Any]:
        """Validate a person name."""
        errors = []

        if not name or not name.strip():
            errors.append(f"{label} is required")
        elif len(name.strip()) > 50:
            errors.append(f"{label} is too long")

        return {
            "is_valid": len(errors) == 0,
            "errors": errors
        }

    @staticmethod
    def validate_required_fields(data: Dict, required_fields: List[str]) -> Dict[str, Any]:
        """Validate required fields in data."""
        errors = []

        for field in required_fields:
            if field not in data or data[field] in (None, ''):
                errors.append(f"Missing required field: {field}")

        return {
            "is_valid": len(errors) == 0,
            "errors": errors
        }

    @staticmethod
    def enum_value(enum_cls, value, field: str):
        """Coerce a raw value (or enum member) into ``enum_cls``."""
        if isinstance(value, enum_cls):
            return value
        try:
            return enum_cls(value)
        except ValueError:
            allowed = ", ".join(e.value for e in enum_cls)
            raise ValidationError(f"Invalid {field}: {value}. Allowed: {allowed}")

    @staticmethod
    def require(result: Dict[str, Any]) -> None:
        """Raise ValidationError for a failed validation result."""
        if not result["is_valid"]:
            raise ValidationError("; ".join(result["errors"]), errors=result["errors"])

    @staticmethod
    def clean_identity(first_name: str, last_name: str, phone: str,
                       email: Optional[str] = None) -> Dict[str, Optional[str]]:
        """Validate and normalise a walk-in identity."""
        errors = []
        errors += Validator.validate_name(first_name, "First name")["errors"]
        errors += Validator.validate_name(last_name, "Last name")["errors"]

        if not phone:
            errors.append("Phone number is required")
        elif not Validator.validate_phone(phone):
            errors.append("Please provide a valid phone number")

        email = email.strip().lower() if email and email.strip() else None
        if email and not Validator.validate_email(email):
            errors.append("Please provide a valid email")

        if errors:
            raise ValidationError("; ".join(errors), errors=errors)

        return {
            'first_name': first_name.strip(),
            'last_name': last_name.strip(),
            'phone': phone.strip(),
            'email': email
        }
