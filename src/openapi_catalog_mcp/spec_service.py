"""Catalog service: owns the normalised documents and the API catalog.

The service drives a full directory scan, persists every successfully
processed document (one JSON file per spec id) plus an aggregate catalog
record, and answers lookups and searches against its in-memory state.

A rescan never applies partially: the in-memory catalog and document map
are replaced only after every document and the catalog record have been
written.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import aiofiles.os
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from .cache import SpecCache
from .config import Config
from .exceptions import ServiceErrorCode, SpecNotFoundError, SpecServiceError
from .models import (
    CatalogEntry,
    OperationMatch,
    OperationSummary,
    ScanResult,
    SchemaLookup,
    SchemaMatch,
    SchemaSummary,
)
from .scanner import SpecScanner, is_valid_spec_id
from .search import operation_haystack, rank

logger = logging.getLogger(__name__)

CATALOG_FILENAME = "catalog.json"

# Keys of a path item that never hold an operation.
NON_OPERATION_KEYS = ("parameters", "$ref")


def iter_operations(spec: Dict[str, Any]):
    """Yield ``(path, method, operation)`` for every operation in ``spec``."""
    for path, path_item in (spec.get("paths") or {}).items():
        if not isinstance(path_item, dict):
            continue
        for method, operation in path_item.items():
            if method in NON_OPERATION_KEYS or method.startswith("x-"):
                continue
            if isinstance(operation, dict):
                yield path, method, operation


def operation_uri(spec_id: str, operation_id: Optional[str]) -> Optional[str]:
    if not operation_id:
        return None
    return f"apis://{spec_id}/operations/{operation_id}"


def schema_uri(spec_id: str, name: str) -> str:
    return f"apis://{spec_id}/schemas/{name}"


def build_catalog_entry(spec_id: str, spec: Dict[str, Any]) -> CatalogEntry:
    """Summarise a processed spec for the catalog."""
    info = spec.get("info") or {}
    operations = [
        OperationSummary(
            path=path,
            method=method,
            operation_id=operation.get("operationId"),
            summary=operation.get("summary"),
            description=operation.get("description"),
        )
        for path, method, operation in iter_operations(spec)
    ]
    schemas = [
        SchemaSummary(
            name=name,
            description=schema.get("description") if isinstance(schema, dict) else None,
        )
        for name, schema in ((spec.get("components") or {}).get("schemas") or {}).items()
    ]
    version = info.get("version")
    return CatalogEntry(
        spec_id=spec_id,
        title=info.get("title"),
        version=str(version) if version is not None else None,
        description=info.get("description"),
        operations=operations,
        schemas=schemas,
    )


class CatalogService:
    """File system backed catalog of OpenAPI specifications."""

    def __init__(
        self,
        scanner: SpecScanner,
        config: Config,
        spec_cache: Optional[SpecCache] = None,
    ):
        self.scanner = scanner
        self.config = config
        self.folder_path = Path(config.base_path)
        self.catalog_path = config.catalog_path
        self.dereferenced_path = config.dereferenced_path
        self.spec_cache: SpecCache[str, Dict[str, Any]] = spec_cache or SpecCache(
            config.cache
        )
        self.specs: Dict[str, Dict[str, Any]] = {}
        self.catalog: List[CatalogEntry] = []
        self.last_scan_failures: List[ScanResult] = []

    # Lifecycle

    async def initialize(self) -> None:
        """Load any persisted catalog, then rescan the source directory."""
        logger.debug("Initializing catalog service")
        try:
            await self.ensure_directories()
            await self.load_existing_catalog()
            await self.scan_and_save(str(self.folder_path))
        except Exception as exc:
            logger.error(f"Failed to initialize catalog service: {exc}")
            self.reset_state()
            raise SpecServiceError(
                "Failed to initialize catalog service",
                ServiceErrorCode.INIT_ERROR,
                exc,
            ) from exc

        self.spec_cache.start_sweeper()
        logger.info("Successfully initialized catalog service")

    async def refresh(self) -> None:
        """Rebuild everything from the source directory."""
        await self.initialize()

    def close(self) -> None:
        self.spec_cache.destroy()

    def reset_state(self) -> None:
        logger.debug("Resetting catalog service state")
        self.catalog = []
        self.specs = {}
        self.spec_cache.clear()

    async def ensure_directory(self, directory: Path) -> None:
        try:
            await aiofiles.os.makedirs(directory, exist_ok=True)
        except OSError as exc:
            raise SpecServiceError(
                f"Failed to create directory {directory}",
                ServiceErrorCode.INIT_ERROR,
                exc,
            ) from exc

    async def ensure_directories(self) -> None:
        logger.debug("Ensuring required directories exist")
        await asyncio.gather(
            self.ensure_directory(self.folder_path),
            self.ensure_directory(self.catalog_path),
            self.ensure_directory(self.dereferenced_path),
        )

    async def load_existing_catalog(self) -> bool:
        """Load the persisted catalog and its documents; False on any failure."""
        try:
            logger.debug("Loading existing catalog")
            catalog = await self.load_spec_catalog()
            specs = await asyncio.gather(
                *(self.load_spec(entry.spec_id) for entry in catalog)
            )
        except Exception as exc:
            logger.warning(f"Failed to load existing catalog: {exc}")
            self.reset_state()
            return False

        self.catalog = catalog
        self.specs = {entry.spec_id: spec for entry, spec in zip(catalog, specs)}
        for spec_id, spec in self.specs.items():
            self.spec_cache.set(spec_id, spec)
        logger.info(f"Loaded existing catalog with {len(catalog)} specification(s)")
        return True

    # Scanning

    async def scan_and_save(self, folder_path: str) -> None:
        """Scan ``folder_path``, persist the results and swap in the new catalog."""
        logger.debug(f"Starting scan and persist operation for {folder_path}")
        pending: Dict[str, Dict[str, Any]] = {}
        entries: Dict[str, CatalogEntry] = {}
        failures: List[ScanResult] = []

        try:
            async for result in self.scanner.scan(folder_path):
                if result.error is not None:
                    logger.warning(f"Error scanning file {result.filename}: {result.error}")
                    failures.append(result)
                    continue
                if result.spec_id in pending:
                    logger.warning(
                        f"Duplicate spec id '{result.spec_id}' in {result.filename}, "
                        "replacing the earlier document"
                    )
                pending[result.spec_id] = result.spec
                entries[result.spec_id] = build_catalog_entry(result.spec_id, result.spec)

            await self.ensure_directories()
            outcomes = await asyncio.gather(
                *(self._persist_spec(spec, spec_id) for spec_id, spec in pending.items()),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome

            catalog = list(entries.values())
            await self.save_spec_catalog(catalog)
        except Exception as exc:
            logger.error(f"Failed to scan and persist specifications: {exc}")
            raise SpecServiceError(
                "Failed to scan and persist specifications",
                ServiceErrorCode.SCAN_ERROR,
                exc,
            ) from exc

        self.specs = pending
        self.catalog = catalog
        self.spec_cache.clear()
        for spec_id, spec in pending.items():
            self.spec_cache.set(spec_id, spec)
        self.last_scan_failures = failures
        logger.info(
            f"Scan complete: {len(catalog)} specification(s) cataloged, "
            f"{len(failures)} file(s) failed"
        )

    def get_api_catalog(self) -> List[CatalogEntry]:
        return list(self.catalog)

    # Persistence

    def _spec_file(self, spec_id: str) -> Path:
        if not is_valid_spec_id(spec_id):
            raise ValueError(f"Invalid specification id: {spec_id!r}")
        return self.dereferenced_path / f"{spec_id}.json"

    async def _write_json(self, path: Path, data: Any) -> None:
        # YAML sources can carry dates and other non-JSON scalars.
        payload = json.dumps(data, indent=2, default=str)
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.config.retry_attempts),
            wait=wait_fixed(self.config.retry_delay),
            retry=retry_if_exception_type(OSError),
            reraise=True,
        ):
            with attempt:
                async with aiofiles.open(path, "w", encoding="utf-8") as f:
                    await f.write(payload)

    async def _read_json(self, path: Path) -> Any:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return json.loads(await f.read())

    async def _persist_spec(self, spec: Dict[str, Any], spec_id: str) -> None:
        logger.debug(f"Persisting specification {spec_id}")
        try:
            await self.ensure_directory(self.dereferenced_path)
            await self._write_json(self._spec_file(spec_id), spec)
        except Exception as exc:
            logger.error(f"Failed to persist specification {spec_id}: {exc}")
            raise SpecServiceError(
                f"Failed to persist specification {spec_id}",
                ServiceErrorCode.PERSIST_ERROR,
                exc,
            ) from exc

    async def save_spec(self, spec: Dict[str, Any], spec_id: str) -> None:
        """Persist ``spec`` under ``spec_id`` and make it visible in memory."""
        await self._persist_spec(spec, spec_id)
        self.specs[spec_id] = spec
        self.spec_cache.set(spec_id, spec)
        logger.info(f"Successfully persisted specification {spec_id}")

    async def save_spec_catalog(self, catalog: List[CatalogEntry]) -> None:
        await self.ensure_directory(self.catalog_path)
        await self._write_json(
            self.catalog_path / CATALOG_FILENAME, [entry.to_dict() for entry in catalog]
        )

    async def load_spec_catalog(self) -> List[CatalogEntry]:
        """Read the persisted catalog; a missing record is an empty catalog."""
        try:
            data = await self._read_json(self.catalog_path / CATALOG_FILENAME)
        except FileNotFoundError:
            return []
        return [CatalogEntry.model_validate(item) for item in data]

    async def load_spec(self, spec_id: str) -> Dict[str, Any]:
        """Return the document for ``spec_id``, from cache or storage.

        Raises:
            SpecNotFoundError: If nothing is persisted for ``spec_id``.
            SpecServiceError: On any other read or parse failure.
        """
        cached = self.spec_cache.get(spec_id)
        if cached is not None:
            logger.debug(f"Returning cached specification {spec_id}")
            return cached

        try:
            spec = await self._read_json(self._spec_file(spec_id))
        except FileNotFoundError as exc:
            logger.error(f"Specification not found: {spec_id}")
            raise SpecNotFoundError(spec_id) from exc
        except (OSError, ValueError) as exc:
            logger.error(f"Failed to load specification {spec_id}: {exc}")
            raise SpecServiceError(
                f"Failed to load specification {spec_id}",
                ServiceErrorCode.LOAD_ERROR,
                exc,
            ) from exc

        self.spec_cache.set(spec_id, spec)
        logger.info(f"Successfully loaded specification {spec_id}")
        return spec

    # Queries

    def _target_entries(self, spec_id: Optional[str]) -> List[CatalogEntry]:
        if spec_id:
            return [entry for entry in self.catalog if entry.spec_id == spec_id]
        return list(self.catalog)

    def search_operations(
        self, query: str, spec_id: Optional[str] = None
    ) -> List[OperationMatch]:
        """Case-insensitive substring search over operation text and tags."""
        needle = query.lower()
        results: List[OperationMatch] = []
        for entry in self._target_entries(spec_id):
            spec = self.specs.get(entry.spec_id)
            if not spec:
                continue
            for path, method, operation in iter_operations(spec):
                if needle in operation_haystack(operation):
                    results.append(
                        OperationMatch(
                            path=path,
                            method=method,
                            operation=operation,
                            spec_id=entry.spec_id,
                            uri=operation_uri(entry.spec_id, operation.get("operationId")),
                        )
                    )
        return results

    def search_schemas(
        self, query: str, spec_id: Optional[str] = None
    ) -> List[SchemaMatch]:
        """Fuzzy search over schema names and descriptions, best match first."""
        candidates = [
            SchemaMatch(name=schema.name, description=schema.description, spec_id=entry.spec_id)
            for entry in self._target_entries(spec_id)
            for schema in entry.schemas
        ]
        return rank(query, candidates)

    def find_schema_by_name(self, spec_id: str, name: str) -> Optional[SchemaLookup]:
        spec = self.specs.get(spec_id)
        if not spec:
            return None
        schema = ((spec.get("components") or {}).get("schemas") or {}).get(name)
        if not isinstance(schema, dict):
            return None
        return SchemaLookup(
            name=name,
            description=schema.get("description"),
            schema=schema,
            spec_id=spec_id,
            uri=schema_uri(spec_id, name),
        )

    def find_operation_by_id(
        self, spec_id: str, operation_id: str
    ) -> Optional[OperationMatch]:
        spec = self.specs.get(spec_id)
        if not spec:
            return None
        for path, method, operation in iter_operations(spec):
            if operation.get("operationId") == operation_id:
                return OperationMatch(
                    path=path,
                    method=method,
                    operation=operation,
                    spec_id=spec_id,
                    uri=operation_uri(spec_id, operation_id),
                )
        return None

    def find_operation_by_path_and_method(
        self, spec_id: str, path: str, method: str
    ) -> Optional[OperationMatch]:
        spec = self.specs.get(spec_id)
        if not spec:
            return None
        path_item = (spec.get("paths") or {}).get(path)
        if not isinstance(path_item, dict):
            return None
        method = method.lower()
        operation = path_item.get(method)
        if method in NON_OPERATION_KEYS or not isinstance(operation, dict):
            return None
        return OperationMatch(
            path=path,
            method=method,
            operation=operation,
            spec_id=spec_id,
            uri=operation_uri(spec_id, operation.get("operationId")),
        )
