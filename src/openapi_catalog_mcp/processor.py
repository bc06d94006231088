"""Dereference a specification and flatten ``allOf`` composition.

After :meth:`SpecProcessor.process` the document contains no ``allOf``
nodes in any schema position reachable from ``components.schemas`` or from
an operation's parameters, request body or responses.

Merge rules for an ``allOf`` node:

* members are flattened first, then merged in array order;
* ``properties`` are combined, later members winning on key collisions;
* ``required`` is the ordered, de-duplicated union of all members;
* every other key except ``type`` is overwritten by later members;
* the node's own sibling keys are merged last and win over the members;
* the result always has ``type: object``; an empty ``required`` is dropped.

An empty ``allOf`` is simply removed.
"""

import copy
import logging
from typing import Any, Dict, List, Optional

from .models import schema_kind
from .resolver import RefResolver

logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")

_MERGE_RESERVED = ("type", "properties", "required")


def merge_schemas(schemas: List[Any]) -> Dict[str, Any]:
    """Merge schema objects left to right into a single object schema."""
    merged: Dict[str, Any] = {"type": "object", "properties": {}, "required": []}

    for schema in schemas:
        if not isinstance(schema, dict) or schema_kind(schema) == "reference":
            continue

        if isinstance(schema.get("properties"), dict):
            merged["properties"] = {**merged["properties"], **schema["properties"]}

        if isinstance(schema.get("required"), list):
            required = merged["required"]
            merged["required"] = required + [
                name for name in dict.fromkeys(schema["required"]) if name not in required
            ]

        for key, value in schema.items():
            if key not in _MERGE_RESERVED:
                merged[key] = value

    if not merged["required"]:
        del merged["required"]
    return merged


def flatten_schema(schema: Any) -> Any:
    """Return ``schema`` with every nested ``allOf`` merged away.

    Nested ``properties`` and ``items`` are processed before the node
    itself. The input is not modified.
    """
    if not isinstance(schema, dict) or schema_kind(schema) == "reference":
        return schema

    result = dict(schema)
    if isinstance(result.get("properties"), dict):
        result["properties"] = {
            name: flatten_schema(prop) for name, prop in result["properties"].items()
        }
    if isinstance(result.get("items"), dict):
        result["items"] = flatten_schema(result["items"])

    all_of = result.get("allOf")
    if not isinstance(all_of, list):
        return result

    rest = {key: value for key, value in result.items() if key != "allOf"}
    if not all_of:
        return rest

    merged = merge_schemas([flatten_schema(member) for member in all_of])
    return merge_schemas([merged, rest])


def _flatten_content(container: Any) -> None:
    if not isinstance(container, dict):
        return
    for media_type in (container.get("content") or {}).values():
        if isinstance(media_type, dict) and "schema" in media_type:
            media_type["schema"] = flatten_schema(media_type["schema"])


def _flatten_parameters(parameters: Any) -> None:
    for param in parameters or []:
        if isinstance(param, dict) and "schema" in param:
            param["schema"] = flatten_schema(param["schema"])


def _flatten_path_item(path_item: Dict[str, Any]) -> None:
    _flatten_parameters(path_item.get("parameters"))
    for method in HTTP_METHODS:
        operation = path_item.get(method)
        if not isinstance(operation, dict):
            continue
        _flatten_content(operation.get("requestBody"))
        for response in (operation.get("responses") or {}).values():
            _flatten_content(response)
        _flatten_parameters(operation.get("parameters"))


def merge_all_of_schemas(spec: Dict[str, Any]) -> Dict[str, Any]:
    """Return a deep copy of ``spec`` with ``allOf`` flattened everywhere."""
    processed = copy.deepcopy(spec)

    schemas = (processed.get("components") or {}).get("schemas")
    if isinstance(schemas, dict):
        for name, schema in schemas.items():
            schemas[name] = flatten_schema(schema)

    for path_item in (processed.get("paths") or {}).values():
        if isinstance(path_item, dict):
            _flatten_path_item(path_item)

    return processed


class SpecProcessor:
    """Turns a minimally valid spec into its dereferenced, flattened form."""

    def __init__(self, allow_remote_refs: bool = True):
        self.allow_remote_refs = allow_remote_refs

    async def process(
        self, spec: Dict[str, Any], base_uri: Optional[str] = None
    ) -> Dict[str, Any]:
        resolver = RefResolver(base_uri=base_uri, allow_remote=self.allow_remote_refs)
        result = await resolver.dereference(spec)
        for error in result.errors:
            logger.debug(f"Continuing past unresolved reference {error.ref}")
        return merge_all_of_schemas(result.document)
