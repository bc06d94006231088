"""Scan a directory for OpenAPI specifications.

:meth:`SpecScanner.scan` is an async generator yielding one
:class:`~openapi_catalog_mcp.models.ScanResult` per recognised spec file,
in directory-listing order. Files are processed one at a time. A problem
with a single file is reported as a result carrying an error; only a
failure to list the directory itself ends the scan with an exception.
"""

import logging
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

import aiofiles
import aiofiles.os

from .exceptions import SpecScanError, SpecValidationError
from .models import ScanResult
from .normalizer import SpecFileType, detect_file_type, normalize_document
from .processor import SpecProcessor
from .resolver import file_uri

logger = logging.getLogger(__name__)

SPEC_ID_EXTENSION = "x-spec-id"


def is_valid_spec_id(spec_id: str) -> bool:
    """Spec ids name files in the dereferenced directory, so they must be plain names."""
    return bool(spec_id) and spec_id not in (".", "..") and not any(
        sep in spec_id for sep in ("/", "\\", "\0")
    )


def extract_spec_id(spec: Any, default_id: str) -> str:
    """Return ``info["x-spec-id"]`` when present and usable, else ``default_id``."""
    if isinstance(spec, dict) and isinstance(spec.get("info"), dict):
        spec_id = spec["info"].get(SPEC_ID_EXTENSION)
        if spec_id:
            spec_id = str(spec_id)
            if is_valid_spec_id(spec_id):
                return spec_id
            logger.warning(
                f"Ignoring {SPEC_ID_EXTENSION} '{spec_id}': not a plain name, using {default_id}"
            )
    return default_id


def validate_spec_shape(spec: Dict[str, Any]) -> None:
    """Check the minimal shape needed to catalog a (normalised) document.

    Applied after any Swagger 2.0 upgrade, so legacy and modern documents
    are held to the same rule.
    """
    info = spec.get("info")
    if not isinstance(info, dict):
        raise SpecValidationError(
            "Invalid OpenAPI specification format: 'info' must be an object"
        )
    if not isinstance(spec.get("paths"), dict):
        raise SpecValidationError(
            "Invalid OpenAPI specification format: 'paths' must be an object"
        )


class SpecScanner:
    """Scans a folder for JSON/YAML specs and runs them through the processor."""

    def __init__(self, spec_processor: Optional[SpecProcessor] = None):
        self.spec_processor = spec_processor or SpecProcessor()

    async def scan(self, folder_path: str) -> AsyncIterator[ScanResult]:
        """Yield a result for every spec file in ``folder_path``.

        Raises:
            ValueError: If ``folder_path`` is empty.
            SpecScanError: If the directory cannot be listed.
        """
        if not folder_path:
            raise ValueError("folder_path is required")

        try:
            filenames = await aiofiles.os.listdir(folder_path)
        except OSError as exc:
            raise SpecScanError(
                f"Failed to read directory: {folder_path}", folder_path, exc
            ) from exc

        for filename in filenames:
            file_type = detect_file_type(filename)
            if file_type is None:
                continue
            file_path = Path(folder_path) / filename
            if not await aiofiles.os.path.isfile(file_path):
                continue
            yield await self._scan_file(file_path, file_type)

    async def _scan_file(self, file_path: Path, file_type: SpecFileType) -> ScanResult:
        filename = file_path.name
        spec_id = filename
        try:
            async with aiofiles.open(file_path, "r", encoding="utf-8") as f:
                content = await f.read()

            document = normalize_document(content, file_type)
            spec_id = extract_spec_id(document, filename)
            validate_spec_shape(document)

            processed = await self.spec_processor.process(
                document, base_uri=file_uri(file_path)
            )
        except Exception as exc:
            logger.debug(f"Failed to process spec file {filename}: {exc}")
            return ScanResult(
                filename=filename,
                spec_id=spec_id,
                spec={},
                error=SpecScanError(
                    f"Failed to process spec file: {filename}", filename, exc
                ),
            )

        return ScanResult(filename=filename, spec_id=spec_id, spec=processed)
