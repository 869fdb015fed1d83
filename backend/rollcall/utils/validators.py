"""Validation utilities for the application."""
import re
from typing import Any, Dict, List, Optional

from rollcall.utils.errors import ValidationError

SIGNATURE_PATTERN = re.compile(r'^[A-Za-z0-9_\-+/=.:]+$')
IDENTIFIER_PATTERN = re.compile(r'^[A-Za-z0-9_\-.@:]{1,128}$')


class Validator:
    """Validation helper class."""

    @staticmethod
    def validate_identifier(value: Any) -> bool:
        """Validate an externally supplied identifier."""
        return isinstance(value, str) and bool(IDENTIFIER_PATTERN.match(value))

    @staticmethod
    def validate_name(name: str) -> Dict[str, Any]:
        """Validate a participant display name."""
        errors = []

        if not name or not name.strip():
            errors.append("Name is required")
        elif len(name.strip()) > 100:
            errors.append("Name is too long")

        return {
            "is_valid": len(errors) == 0,
            "errors": errors
        }

    @staticmethod
    def validate_signature(signature: Any, max_length: int = 4096) -> bool:
        """Check that an opaque signature is present and well formed.

        The signature is never interpreted here; only its shape is checked.
        """
        if not isinstance(signature, str):
            return False
        signature = signature.strip()
        if not signature or len(signature) > max_length:
            return False
        return bool(SIGNATURE_PATTERN.match(signature))

    @staticmethod
    def validate_required_fields(data: Dict, required_fields: List[str]) -> Dict[str, Any]:
        """Validate required fields in data."""
        errors = []

        for field in required_fields:
            if field not in data or data[field] in (None, ''):
                errors.append(f"{field} is required")

        return {
            "is_valid": len(errors) == 0,
            "errors": errors
        }


def require_fields(data: Optional[Dict], fields: List[str]) -> Dict:
    """Raise ``ValidationError`` unless every field is present."""
    if not isinstance(data, dict):
        raise ValidationError("JSON body is required")
    result = Validator.validate_required_fields(data, fields)
    if not result['is_valid']:
        raise ValidationError('; '.join(result['errors']), fields=result['errors'])
    return data
