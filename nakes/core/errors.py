"""
Exception hierarchy shared by every layer.

Everything raised on purpose by nakes derives from NakesError, so the CLI and
the HTTP API can turn it into a message and an exit/status code without
knowing which component failed.
"""
from __future__ import annotations

from enum import Enum


class NakesError(Exception):
    """Base class for all nakes errors."""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationKind(str, Enum):
    NAME_TOO_SHORT = "NameTooShort"
    NAME_TOO_LONG = "NameTooLong"
    VERSION_TOO_SHORT = "VersionTooShort"
    VERSION_TOO_LONG = "VersionTooLong"
    HASH_TOO_SHORT = "HashTooShort"
    HASH_TOO_LONG = "HashTooLong"


_VALIDATION_MESSAGES = {
    ValidationKind.NAME_TOO_SHORT: "Package name is too short",
    ValidationKind.NAME_TOO_LONG: "Package name is too long",
    ValidationKind.VERSION_TOO_SHORT: "Package version is too short",
    ValidationKind.VERSION_TOO_LONG: "Package version is too long",
    ValidationKind.HASH_TOO_SHORT: "Package hash is too short",
    ValidationKind.HASH_TOO_LONG: "Package hash is too long",
}


class ValidationError(NakesError):
    """A name, version or hash failed its length constraints."""

    code = "VALIDATION_ERROR"

    def __init__(self, kind: ValidationKind, value: str = "") -> None:
        message = _VALIDATION_MESSAGES[kind]
        if value:
            message = f"{message} ({value!r})"
        super().__init__(message)
        self.kind = kind
        self.value = value


class DuplicateDatabaseItem(NakesError):
    """An insert collided with an existing row."""

    code = "DUPLICATE_DATABASE_ITEM"


class DatabaseError(NakesError):
    """The lockfile is unavailable, closed or corrupt."""

    code = "DATABASE_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(f"Lockfile error ({message})")


class LockfileCreationError(NakesError):
    """A fresh lockfile could not be created."""

    code = "LOCKFILE_CREATION_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(f"Failed to create lockfile ({message})")


class RequestError(NakesError):
    """The registry could not be reached or answered with an error status."""

    code = "REQUEST_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(f"Request error ({message})")


class InvalidPackageSchema(NakesError):
    """The registry answered with a document missing required fields."""

    code = "INVALID_PACKAGE_SCHEMA"

    def __init__(self, message: str = "") -> None:
        text = "Invalid package (json) schema"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)


class PackageInUse(NakesError):
    """A package cannot be removed while other packages depend on it."""

    code = "PACKAGE_IN_USE"


class ConfigError(NakesError):
    """Configuration file or override is invalid."""

    code = "CONFIG_ERROR"
