"""Command line tool listing every endpoint of the specs in a directory."""

import asyncio
import json
import logging
import os
import sys
from collections import Counter
from typing import Dict, List, Optional

import click
from pydantic import BaseModel, Field

from .main import _configure_logging
from .processor import HTTP_METHODS, SpecProcessor
from .scanner import SpecScanner

logger = logging.getLogger(__name__)


class ApiEndpoint(BaseModel):
    """One operation found while listing endpoints."""

    path: str
    method: str
    operation_id: Optional[str] = Field(default=None, serialization_alias="operationId")
    summary: Optional[str] = None
    description: Optional[str] = None
    spec_id: str = Field(serialization_alias="specId")


def path_item_endpoints(path: str, path_item: Dict, spec_id: str) -> List[ApiEndpoint]:
    # A path item that is still a reference has no operations to report
    if not isinstance(path_item, dict) or "$ref" in path_item:
        return []

    endpoints = []
    for method in HTTP_METHODS:
        operation = path_item.get(method)
        if not isinstance(operation, dict):
            continue
        endpoints.append(
            ApiEndpoint(
                path=path,
                method=method,
                operation_id=operation.get("operationId"),
                summary=operation.get("summary"),
                description=operation.get("description"),
                spec_id=spec_id,
            )
        )
    return endpoints


async def list_endpoints(dir_path: str, allow_remote_refs: bool = True) -> List[ApiEndpoint]:
    """Scan ``dir_path`` and collect the endpoints of every valid spec.

    Files that fail to process are logged and skipped. A directory that
    cannot be read raises :class:`~openapi_catalog_mcp.exceptions.SpecScanError`.
    """
    logger.info(f"Scanning directory: {dir_path}")
    scanner = SpecScanner(SpecProcessor(allow_remote_refs=allow_remote_refs))

    endpoints: List[ApiEndpoint] = []
    async for result in scanner.scan(dir_path):
        if result.error is not None:
            logger.warning(f"Error scanning file {result.filename}: {result.error}")
            continue
        for path, path_item in (result.spec.get("paths") or {}).items():
            endpoints.extend(path_item_endpoints(path, path_item, result.spec_id))
    return endpoints


def format_text(endpoints: List[ApiEndpoint]) -> str:
    lines = ["Found endpoints:"]
    for endpoint in endpoints:
        lines.append(f"{endpoint.method.upper()} {endpoint.path} ({endpoint.spec_id})")
        if endpoint.operation_id:
            lines.append(f"  operationId: {endpoint.operation_id}")
        if endpoint.summary:
            lines.append(f"  summary: {endpoint.summary}")

    lines.append("")
    lines.append("Endpoints by specification:")
    for spec_id, count in Counter(e.spec_id for e in endpoints).items():
        lines.append(f"{spec_id}: {count} endpoints")

    lines.append("")
    lines.append(f"Total: {len(endpoints)} endpoints")
    return "\n".join(lines)


def format_json(endpoints: List[ApiEndpoint]) -> str:
    return json.dumps(
        [e.model_dump(by_alias=True, exclude_none=True) for e in endpoints], indent=2
    )


@click.command()
@click.option(
    "--dir",
    "-d",
    "dir_path",
    required=True,
    help="Directory containing OpenAPI specifications",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format",
)
@click.option(
    "--log-level",
    type=click.Choice(
        ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False
    ),
    default=lambda: os.environ.get("LOG_LEVEL", "WARNING"),
    help="Set the logging level",
)
def main(dir_path: str, output_format: str, log_level: str) -> None:
    """List all endpoints defined in OpenAPI specifications in a directory."""
    _configure_logging(log_level.upper())

    try:
        endpoints = asyncio.run(list_endpoints(dir_path))
    except Exception as e:
        logger.error(f"Failed to scan directory: {e}")
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if output_format == "json":
        click.echo(format_json(endpoints))
    else:
        click.echo(format_text(endpoints))


if __name__ == "__main__":
    main()
