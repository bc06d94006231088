"""Exception hierarchy for the OpenAPI catalog server.

Subclass hierarchy::

    OpenAPICatalogError
    +-- SpecParseError
    |   +-- SpecConversionError
    |   +-- DereferenceError
    +-- SpecValidationError
    +-- UnresolvedReferenceError
    +-- SpecScanError
    +-- SpecServiceError
        +-- SpecNotFoundError

Per-file problems (parse, conversion, validation) are wrapped in a
:class:`SpecScanError` and reported alongside successful scan results.
Service level failures carry a :class:`ServiceErrorCode`.
"""

from enum import Enum
from typing import Optional


class OpenAPICatalogError(Exception):
    """Base class for all errors raised by this package."""


class SpecParseError(OpenAPICatalogError):
    """Content is not valid JSON/YAML or is not a mapping."""


class SpecConversionError(SpecParseError):
    """A Swagger 2.0 document could not be upgraded, even tolerantly."""


class DereferenceError(SpecParseError):
    """A ``$ref`` is malformed in a way tolerant resolution cannot skip."""


class SpecValidationError(OpenAPICatalogError):
    """The document lacks the minimal ``info``/``paths`` shape."""


class UnresolvedReferenceError(OpenAPICatalogError):
    """A single ``$ref`` target could not be located or fetched."""

    def __init__(self, ref: str, reason: str):
        super().__init__(f"Cannot resolve $ref '{ref}': {reason}")
        self.ref = ref
        self.reason = reason


class SpecScanError(OpenAPICatalogError):
    """Wraps a per-file processing failure or a directory read failure."""

    def __init__(
        self, message: str, filename: str, cause: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.filename = filename
        self.cause = cause

    def __str__(self) -> str:
        base = super().__str__()
        if self.cause is not None:
            return f"{base}: {self.cause}"
        return base


class ServiceErrorCode(str, Enum):
    """Discriminates catalog service failures."""

    INIT_ERROR = "INIT_ERROR"
    SCAN_ERROR = "SCAN_ERROR"
    PERSIST_ERROR = "PERSIST_ERROR"
    LOAD_ERROR = "LOAD_ERROR"


class SpecServiceError(OpenAPICatalogError):
    """Raised by the catalog service when an operation cannot complete."""

    def __init__(
        self,
        message: str,
        code: ServiceErrorCode,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.code = code
        self.cause = cause


class SpecNotFoundError(SpecServiceError):
    """No persisted document exists for the requested spec id."""

    def __init__(self, spec_id: str):
        super().__init__(
            f"Specification not found: {spec_id}", ServiceErrorCode.LOAD_ERROR
        )
        self.spec_id = spec_id
