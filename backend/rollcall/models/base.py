"""Base model class with common functionality."""
from dataclasses import fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict


class BaseModel:
    """Mixin for dataclass models with dictionary conversion."""

    def to_dict(self, exclude: list = None) -> Dict[str, Any]:
        """Convert instance to dictionary."""
        exclude = exclude or []
        result = {}

        for field in fields(self):
            key = field.name
            if key in exclude:
                continue
            value = getattr(self, key)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, Enum):
                value = value.value
            elif isinstance(value, BaseModel):
                value = value.to_dict()
            result[key] = value

        return result

    def copy(self, **changes) -> 'BaseModel':
        """Return a copy with ``changes`` applied."""
        return replace(self, **changes)

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} {self.key()}>'

    def key(self):
        raise NotImplementedError
