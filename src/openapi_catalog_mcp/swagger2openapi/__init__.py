"""Swagger 2.0 to OpenAPI 3.0 conversion."""

from .converter import Swagger2OpenAPIConverter, convert

__all__ = ["Swagger2OpenAPIConverter", "convert"]
