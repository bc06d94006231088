"""Format detection, parsing and legacy upgrade of specification files."""

import json
import logging
from pathlib import PurePath
from typing import Any, Dict, Literal, Optional

import yaml

from .exceptions import SpecConversionError, SpecParseError
from .swagger2openapi.converter import Swagger2OpenAPIConverter

logger = logging.getLogger(__name__)

SpecFileType = Literal["json", "yaml"]

SPEC_EXTENSIONS: Dict[str, SpecFileType] = {
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
}


def detect_file_type(filename: str) -> Optional[SpecFileType]:
    """Return the spec file type for ``filename``, or None if unrecognised."""
    return SPEC_EXTENSIONS.get(PurePath(filename).suffix.lower())


def parse_content(content: str, file_type: SpecFileType) -> Dict[str, Any]:
    """Parse raw content as JSON or YAML according to ``file_type``.

    Raises:
        SpecParseError: If the content is malformed or is not a mapping.
    """
    try:
        if file_type == "json":
            result = json.loads(content)
        else:
            result = yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise SpecParseError(f"Failed to parse {file_type} content: {exc}") from exc

    if not isinstance(result, dict):
        kind = type(result).__name__ if result is not None else "empty document"
        raise SpecParseError(f"Spec must be a JSON/YAML object (got {kind})")
    return result


def is_legacy_document(document: Dict[str, Any]) -> bool:
    return str(document.get("swagger", "")) == "2.0"


def upgrade_document(document: Dict[str, Any]) -> Dict[str, Any]:
    """Upgrade a Swagger 2.0 document; other documents are returned as-is."""
    if not is_legacy_document(document):
        return document

    converter = Swagger2OpenAPIConverter(patch=True, warn_only=True)
    try:
        return converter.convert(document)
    except SpecConversionError:
        raise
    except Exception as exc:
        raise SpecConversionError(
            f"Failed to convert Swagger 2.0 spec: {exc}"
        ) from exc


def normalize_document(content: str, file_type: SpecFileType) -> Dict[str, Any]:
    """Parse ``content`` and upgrade it to the OpenAPI 3 shape if needed."""
    document = parse_content(content, file_type)
    if is_legacy_document(document):
        logger.debug("Converting Swagger 2.0 document to OpenAPI 3.0")
    return upgrade_document(document)
