"""Model-level validation utilities for data integrity.

Reusable validators that enforce billing rules at the ORM level, so invalid
amounts never reach the database regardless of which service writes them.
"""


def non_negative(key: str, value):
    """Validate that an integer amount is >= 0."""
    if value is not None and value < 0:
        raise ValueError(f"{key} cannot be negative, got {value}")
    return value


def positive(key: str, value):
    """Validate that an integer value is > 0."""
    if value is not None and value <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


def whole_number(key: str, value):
    """Validate that an amount is an integer count of minor currency units."""
    if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
        raise ValueError(f"{key} must be an integer amount of minor units, got {value!r}")
    return value


def validate_dict(key: str, value):
    """Validate that a JSON column value is a dict (or None)."""
    if value is not None and not isinstance(value, dict):
        raise ValueError(f"{key} must be a dict, got {type(value).__name__}")
    return value
