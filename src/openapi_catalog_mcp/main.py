"""Main entry point for the OpenAPI catalog MCP server."""

import asyncio
import logging
import os
from typing import Any, Optional

import click
import yaml
from fastmcp import FastMCP

from .config import Config
from .processor import SpecProcessor
from .scanner import SpecScanner
from .spec_service import CatalogService

logger = logging.getLogger(__name__)

SERVER_NAME = "openapi-catalog-mcp"

SERVER_INSTRUCTIONS = (
    "This server catalogs the OpenAPI specifications found in a directory. "
    "Use get-api-catalog for an overview, the search tools to find operations "
    "and schemas, and the load tools to read a single operation or schema."
)


def _configure_logging(log_level: str):
    """Configure logging with the specified level and suppress third-party library noise"""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        force=True,
    )

    # Logs go to stderr; stdout carries the MCP protocol
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class _NoAliasDumper(yaml.SafeDumper):
    """Safe dumper that writes shared subtrees out in full instead of as aliases."""

    def ignore_aliases(self, data: Any) -> bool:
        return True


def to_text(result: Any) -> str:
    """Render a tool result as YAML text."""
    if hasattr(result, "to_dict"):
        result = result.to_dict()
    elif isinstance(result, list):
        result = [item.to_dict() if hasattr(item, "to_dict") else item for item in result]
    return yaml.dump(result, Dumper=_NoAliasDumper, sort_keys=False, allow_unicode=True)


class CatalogTools:
    """The tool implementations, independent of the MCP transport."""

    def __init__(self, service: CatalogService):
        self.service = service

    async def refresh_api_catalog(self) -> str:
        logger.info("Refreshing API catalog")
        await self.service.refresh()
        failed = len(self.service.last_scan_failures)
        if failed:
            return f"API catalog refreshed ({failed} file(s) could not be processed)"
        return "API catalog refreshed"

    async def get_api_catalog(self) -> str:
        logger.info("Getting API catalog")
        return to_text(self.service.get_api_catalog())

    async def search_api_operations(self, query: str, spec_id: Optional[str] = None) -> str:
        logger.info(f"Searching API operations for '{query}'")
        return to_text(self.service.search_operations(query, spec_id))

    async def search_api_schemas(self, query: str) -> str:
        logger.info(f"Searching API schemas for '{query}'")
        return to_text(self.service.search_schemas(query))

    async def load_operation_by_id(self, spec_id: str, operation_id: str) -> str:
        logger.info(f"Loading operation {operation_id} from {spec_id}")
        operation = self.service.find_operation_by_id(spec_id, operation_id)
        if operation is None:
            logger.warning(f"Operation {operation_id} not found in {spec_id}")
        return to_text(operation)

    async def load_operation_by_path_and_method(
        self, spec_id: str, path: str, method: str
    ) -> str:
        logger.info(f"Loading operation {method.upper()} {path} from {spec_id}")
        operation = self.service.find_operation_by_path_and_method(spec_id, path, method)
        if operation is None:
            logger.warning(f"Operation {method.upper()} {path} not found in {spec_id}")
        return to_text(operation)

    async def load_schema_by_name(self, spec_id: str, schema_name: str) -> str:
        logger.info(f"Loading schema {schema_name} from {spec_id}")
        schema = self.service.find_schema_by_name(spec_id, schema_name)
        if schema is None:
            logger.warning(f"Schema {schema_name} not found in {spec_id}")
        return to_text(schema)


def build_server(service: CatalogService) -> FastMCP:
    """Create the FastMCP server exposing the catalog tools."""
    tools = CatalogTools(service)
    mcp = FastMCP(name=SERVER_NAME, instructions=SERVER_INSTRUCTIONS)

    @mcp.tool(
        name="refresh-api-catalog",
        description="Rescan the specification directory and rebuild the API catalog",
    )
    async def refresh_api_catalog() -> str:
        return await tools.refresh_api_catalog()

    @mcp.tool(
        name="get-api-catalog",
        description="Get the API catalog: every specification with its operations and schemas",
    )
    async def get_api_catalog() -> str:
        return await tools.get_api_catalog()

    @mcp.tool(
        name="search-api-operations",
        description="Search operations by operationId, summary, description or tag, optionally within one specification",
    )
    async def search_api_operations(query: str, specId: Optional[str] = None) -> str:  # noqa: N803
        return await tools.search_api_operations(query, specId)

    @mcp.tool(
        name="search-api-schemas",
        description="Fuzzy search schemas by name and description across all specifications",
    )
    async def search_api_schemas(query: str) -> str:
        return await tools.search_api_schemas(query)

    @mcp.tool(
        name="load-api-operation-by-operationId",
        description="Load an operation by its operationId",
    )
    async def load_api_operation_by_operation_id(specId: str, operationId: str) -> str:  # noqa: N803
        return await tools.load_operation_by_id(specId, operationId)

    @mcp.tool(
        name="load-api-operation-by-path-and-method",
        description="Load an operation by its path template and HTTP method",
    )
    async def load_api_operation_by_path_and_method(
        specId: str, path: str, method: str  # noqa: N803
    ) -> str:
        return await tools.load_operation_by_path_and_method(specId, path, method)

    @mcp.tool(
        name="load-api-schema-by-schemaName",
        description="Load a component schema by its name",
    )
    async def load_api_schema_by_schema_name(specId: str, schemaName: str) -> str:  # noqa: N803
        return await tools.load_schema_by_name(specId, schemaName)

    return mcp


def load_config(
    config_path: Optional[str],
    base_dir: Optional[str],
    catalog_dir: Optional[str],
    dereferenced_dir: Optional[str],
) -> Config:
    """Build the effective configuration: file first, then command line overrides."""
    config = Config.load(config_path) if config_path else Config()
    return config.with_overrides(
        base_path=base_dir,
        catalog_dir=catalog_dir,
        dereferenced_dir=dereferenced_dir,
    )


def create_service(config: Config) -> CatalogService:
    scanner = SpecScanner(SpecProcessor(allow_remote_refs=config.allow_remote_refs))
    return CatalogService(scanner, config)


@click.command()
@click.option(
    "--dir",
    "-d",
    "base_dir",
    default=None,
    help="Directory containing the OpenAPI specifications (default: current directory)",
)
@click.option("--catalog-dir", default=None, help="Catalog subdirectory name")
@click.option(
    "--dereferenced-dir", default=None, help="Dereferenced specs subdirectory name"
)
@click.option("--config", "-c", default=None, help="Configuration file path")
@click.option(
    "--log-level",
    type=click.Choice(
        ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False
    ),
    default=lambda: os.environ.get("LOG_LEVEL", "WARNING"),
    help="Set the logging level",
)
def main(
    base_dir: Optional[str],
    catalog_dir: Optional[str],
    dereferenced_dir: Optional[str],
    config: Optional[str],
    log_level: str,
) -> None:
    """Start the OpenAPI catalog MCP server."""
    _configure_logging(log_level.upper())

    settings = load_config(config, base_dir, catalog_dir, dereferenced_dir)

    async def _main() -> None:
        service = create_service(settings)
        try:
            await service.initialize()
            mcp = build_server(service)
            await mcp.run_stdio_async(show_banner=False)
        finally:
            service.close()

    asyncio.run(_main())


if __name__ == "__main__":
    main()
