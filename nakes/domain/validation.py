"""
Length checks applied to names, versions and hashes before they are used as
lookup keys or persisted.
"""
from __future__ import annotations

from nakes.core.errors import ValidationError, ValidationKind

# Bounds are exclusive below and inclusive above: MIN < len(value) <= MAX.
MIN_NAME = 2
MAX_NAME = 32
MIN_VERSION = 0
MAX_VERSION = 16
MIN_HASH = 16
MAX_HASH = 64


def _check(value: str, minimum: int, maximum: int, too_short: ValidationKind, too_long: ValidationKind) -> None:
    if len(value) <= minimum:
        raise ValidationError(too_short, value)
    if len(value) > maximum:
        raise ValidationError(too_long, value)


def validate_name(name: str) -> None:
    """Raise ValidationError unless 2 < len(name) <= 32."""
    _check(name, MIN_NAME, MAX_NAME, ValidationKind.NAME_TOO_SHORT, ValidationKind.NAME_TOO_LONG)


def validate_version(version: str) -> None:
    """Raise ValidationError unless 0 < len(version) <= 16."""
    _check(
        version,
        MIN_VERSION,
        MAX_VERSION,
        ValidationKind.VERSION_TOO_SHORT,
        ValidationKind.VERSION_TOO_LONG,
    )


def validate_hash(hash_value: str) -> None:
    """Raise ValidationError unless 16 < len(hash_value) <= 64."""
    _check(hash_value, MIN_HASH, MAX_HASH, ValidationKind.HASH_TOO_SHORT, ValidationKind.HASH_TOO_LONG)
