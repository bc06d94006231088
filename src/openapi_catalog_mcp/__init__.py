"""Package initialization for openapi_catalog_mcp."""

__version__ = "0.1.0"
__description__ = "MCP server cataloging a directory of OpenAPI specifications"

from .config import CacheConfig, Config
from .scanner import SpecScanner
from .spec_service import CatalogService

__all__ = [
    "CacheConfig",
    "CatalogService",
    "Config",
    "SpecScanner",
]
