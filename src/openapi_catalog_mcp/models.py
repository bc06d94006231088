"""Data models for scan results, the API catalog and lookup results.

Catalog models are persisted as JSON with camelCase keys (``specId``,
``operationId``), so every model accepts both the field name and its alias.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import SpecScanError

SchemaKind = Literal["reference", "schema"]


def schema_kind(node: Dict[str, Any]) -> SchemaKind:
    """Classify a schema position: a ``$ref`` marker or a concrete schema."""
    return "reference" if "$ref" in node else "schema"


class _CatalogModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class OperationSummary(_CatalogModel):
    """One operation of a spec, as listed in the catalog."""

    path: str
    method: str
    operation_id: Optional[str] = Field(default=None, alias="operationId")
    summary: Optional[str] = None
    description: Optional[str] = None


class SchemaSummary(_CatalogModel):
    """One named component schema of a spec, as listed in the catalog."""

    name: str
    description: Optional[str] = None


class CatalogEntry(_CatalogModel):
    """Catalog record for a single successfully processed specification."""

    spec_id: str = Field(alias="specId")
    title: Optional[str] = None
    version: Optional[str] = None
    description: Optional[str] = None
    operations: List[OperationSummary] = Field(default_factory=list)
    schemas: List[SchemaSummary] = Field(default_factory=list)


class OperationMatch(_CatalogModel):
    """An operation located by search or point lookup."""

    path: str
    method: str
    operation: Dict[str, Any]
    spec_id: str = Field(alias="specId")
    uri: Optional[str] = None


class SchemaMatch(_CatalogModel):
    """A schema summary returned by fuzzy search, tagged with its spec."""

    name: str
    description: Optional[str] = None
    spec_id: str = Field(alias="specId")


class SchemaLookup(_CatalogModel):
    """A full schema returned by name lookup."""

    name: str
    description: Optional[str] = None
    schema_: Dict[str, Any] = Field(alias="schema")
    spec_id: str = Field(alias="specId")
    uri: str


@dataclass
class ScanResult:
    """Outcome of processing one file during a directory scan."""

    filename: str
    spec_id: str
    spec: Dict[str, Any] = field(default_factory=dict)
    error: Optional[SpecScanError] = None

    @property
    def ok(self) -> bool:
        return self.error is None
