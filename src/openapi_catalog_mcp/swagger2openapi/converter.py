"""Tolerant Swagger 2.0 to OpenAPI 3.0 conversion.

Modelled on the behaviour of ``swagger2openapi`` with ``patch`` and
``warnOnly`` enabled: small defects in the source are repaired, and
structural problems inside an individual operation are recorded as warnings
instead of aborting the whole document.
"""

import copy
import logging
from typing import Any, Callable, Dict, List, Set

from ..exceptions import SpecConversionError

logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")

DEFAULT_MEDIA_TYPE = "application/json"

# Keys moved from a non-body Swagger parameter into its OpenAPI ``schema``.
PARAMETER_SCHEMA_KEYS = (
    "type",
    "format",
    "items",
    "default",
    "maximum",
    "exclusiveMaximum",
    "minimum",
    "exclusiveMinimum",
    "maxLength",
    "minLength",
    "pattern",
    "maxItems",
    "minItems",
    "uniqueItems",
    "enum",
    "multipleOf",
)

COLLECTION_FORMAT_STYLES = {
    "csv": ("form", False),
    "ssv": ("spaceDelimited", False),
    "pipes": ("pipeDelimited", False),
    "multi": ("form", True),
}

OAUTH2_FLOWS = {
    "implicit": ("implicit", ("authorizationUrl",)),
    "password": ("password", ("tokenUrl",)),
    "application": ("clientCredentials", ("tokenUrl",)),
    "accessCode": ("authorizationCode", ("authorizationUrl", "tokenUrl")),
}


def _walk_schema(schema: Any, action: Callable[[Dict[str, Any]], None]) -> None:
    """Recursively walks a schema and applies an action to every subschema."""
    if not isinstance(schema, dict):
        return
    action(schema)
    if "items" in schema:
        _walk_schema(schema["items"], action)
    if isinstance(schema.get("properties"), dict):
        for prop_schema in schema["properties"].values():
            _walk_schema(prop_schema, action)
    if isinstance(schema.get("additionalProperties"), dict):
        _walk_schema(schema["additionalProperties"], action)
    for keyword in ("allOf", "anyOf", "oneOf"):
        for sub_schema in schema.get(keyword) or []:
            _walk_schema(sub_schema, action)
    if "not" in schema:
        _walk_schema(schema["not"], action)


def _recurse(obj: Any, action: Callable[[Dict[str, Any]], None]) -> None:
    """Recursively walks a dictionary/list structure and applies an action."""
    if isinstance(obj, dict):
        action(obj)
        for value in obj.values():
            _recurse(value, action)
    elif isinstance(obj, list):
        for item in obj:
            _recurse(item, action)


class Swagger2OpenAPIConverter:
    """Upgrades a Swagger 2.0 document to the OpenAPI 3.0 shape.

    Args:
        patch: Repair small inconsistencies (missing ``responses``, missing
            response descriptions, optional path parameters).
        warn_only: Record per-operation structural errors in
            :attr:`warnings` and continue. When False they raise
            :class:`~openapi_catalog_mcp.exceptions.SpecConversionError`.
    """

    def __init__(self, patch: bool = True, warn_only: bool = True):
        self.patch = patch
        self.warn_only = warn_only
        self.warnings: List[str] = []
        self._body_components: Set[str] = set()

    def _warn(self, message: str) -> None:
        if not self.warn_only:
            raise SpecConversionError(message)
        logger.warning(f"Swagger 2.0 conversion: {message}")
        self.warnings.append(message)

    def _fix_up_sub_schema(self, schema: Dict[str, Any]) -> None:
        if isinstance(schema.get("discriminator"), str):
            schema["discriminator"] = {"propertyName": schema["discriminator"]}
        if schema.get("type") == "file":
            schema["type"] = "string"
            schema["format"] = "binary"
        schema.pop("allowEmptyValue", None)
        if schema.get("type") == "null":
            del schema["type"]
            schema["nullable"] = True
        if "x-nullable" in schema:
            schema["nullable"] = schema.pop("x-nullable")

    def _fix_up_schema(self, schema: Any) -> None:
        _walk_schema(schema, self._fix_up_sub_schema)

    def _rewrite_ref(self, ref: str) -> str:
        """Rewrites a Swagger $ref to an OpenAPI $ref."""
        if ref.startswith("#/definitions/"):
            return f"#/components/schemas/{ref[len('#/definitions/'):]}"
        if ref.startswith("#/parameters/"):
            return f"#/components/parameters/{ref[len('#/parameters/'):]}"
        if ref.startswith("#/responses/"):
            return f"#/components/responses/{ref[len('#/responses/'):]}"
        return ref

    def _fixup_refs(self, obj: Dict[str, Any]) -> None:
        if isinstance(obj.get("$ref"), str):
            obj["$ref"] = self._rewrite_ref(obj["$ref"])

    def _convert_security_definitions(
        self, secdefs: Dict[str, Any]
    ) -> Dict[str, Any]:
        for name, scheme in secdefs.items():
            if not isinstance(scheme, dict):
                self._warn(f"security definition '{name}' is not an object")
                continue
            if scheme.get("type") == "basic":
                scheme["type"] = "http"
                scheme["scheme"] = "basic"
            elif scheme.get("type") == "oauth2":
                flow = scheme.pop("flow", None)
                if flow not in OAUTH2_FLOWS:
                    self._warn(f"security definition '{name}' has unknown flow {flow!r}")
                    continue
                flow_name, url_keys = OAUTH2_FLOWS[flow]
                flow_obj: Dict[str, Any] = {k: scheme.pop(k, "") for k in url_keys}
                flow_obj["scopes"] = scheme.pop("scopes", {}) or {}
                scheme["flows"] = {flow_name: flow_obj}
        return secdefs

    def _convert_parameter(self, param: Dict[str, Any]) -> Dict[str, Any]:
        """Converts a single non-body Swagger 2.0 parameter."""
        if "$ref" in param:
            return param
        if "schema" not in param and "type" in param:
            schema = {key: param.pop(key) for key in PARAMETER_SCHEMA_KEYS if key in param}
            self._fix_up_schema(schema)
            param["schema"] = schema
        collection_format = param.pop("collectionFormat", None)
        if collection_format in COLLECTION_FORMAT_STYLES:
            style, explode = COLLECTION_FORMAT_STYLES[collection_format]
            param["style"] = style
            param["explode"] = explode
        if param.get("in") == "path" and self.patch and param.get("required") is not True:
            param["required"] = True
        return param

    def _body_request(
        self, body_param: Dict[str, Any], consumes: List[str]
    ) -> Dict[str, Any]:
        schema = body_param.get("schema", {})
        request_body: Dict[str, Any] = {
            "content": {ct: {"schema": copy.deepcopy(schema)} for ct in consumes}
        }
        if body_param.get("description"):
            request_body["description"] = body_param["description"]
        if body_param.get("required"):
            request_body["required"] = True
        if "x-examples" in body_param:
            examples = body_param["x-examples"]
            for content_type, media in request_body["content"].items():
                if isinstance(examples, dict) and content_type in examples:
                    media["example"] = examples[content_type]
        return request_body

    def _form_request(
        self,
        op: Dict[str, Any],
        form_params: List[Dict[str, Any]],
        consumes: List[str],
    ) -> None:
        content_type = "application/x-www-form-urlencoded"
        if "multipart/form-data" in consumes or any(
            p.get("type") == "file" for p in form_params
        ):
            content_type = "multipart/form-data"

        request_body = op.setdefault("requestBody", {"content": {}})
        media = request_body["content"].setdefault(
            content_type, {"schema": {"type": "object", "properties": {}}}
        )
        schema = media["schema"]
        schema.setdefault("properties", {})
        required_fields = list(schema.get("required", []))

        for param in form_params:
            prop_name = param["name"]
            prop_schema = {
                k: v for k, v in param.items() if k not in ("name", "in", "required")
            }
            self._fix_up_schema(prop_schema)
            schema["properties"][prop_name] = prop_schema
            if param.get("required") and prop_name not in required_fields:
                required_fields.append(prop_name)

        if required_fields:
            schema["required"] = required_fields

    def _convert_parameters(
        self, container: Dict[str, Any], consumes: List[str], where: str
    ) -> None:
        params = container.get("parameters")
        if params is None:
            return
        if not isinstance(params, list):
            self._warn(f"parameters of {where} is not a list")
            container.pop("parameters")
            return

        body_param = next(
            (p for p in params if isinstance(p, dict) and p.get("in") == "body"), None
        )
        form_params = [
            p for p in params if isinstance(p, dict) and p.get("in") == "formData"
        ]

        if body_param is not None:
            container["requestBody"] = self._body_request(body_param, consumes)
        if form_params:
            self._form_request(container, form_params, consumes)

        converted = []
        for param in params:
            if not isinstance(param, dict):
                self._warn(f"dropping non-object parameter in {where}")
                continue
            if param.get("in") in ("body", "formData"):
                continue
            ref = param.get("$ref")
            if isinstance(ref, str) and ref.startswith("#/parameters/"):
                name = ref[len("#/parameters/"):]
                if name in self._body_components:
                    container["requestBody"] = {
                        "$ref": f"#/components/requestBodies/{name}"
                    }
                    continue
            converted.append(self._convert_parameter(param))
        container["parameters"] = converted

    def _convert_response(
        self, response: Dict[str, Any], produces: List[str]
    ) -> None:
        if "$ref" in response:
            return
        if "schema" in response:
            schema = response.pop("schema")
            self._fix_up_schema(schema)
            response["content"] = {
                ct: {"schema": copy.deepcopy(schema)} for ct in produces
            }
            examples = response.pop("examples", None)
            if isinstance(examples, dict):
                for content_type, media in response["content"].items():
                    if content_type in examples:
                        media["example"] = examples[content_type]
        if isinstance(response.get("headers"), dict):
            for header in response["headers"].values():
                if isinstance(header, dict) and "type" in header:
                    header["schema"] = {
                        key: header.pop(key)
                        for key in PARAMETER_SCHEMA_KEYS
                        if key in header
                    }
        if self.patch and "description" not in response:
            response["description"] = ""

    def _convert_operation(
        self, op: Dict[str, Any], openapi: Dict[str, Any], where: str
    ) -> None:
        """Converts a single operation."""
        consumes = op.pop("consumes", None) or openapi.get("consumes") or [
            DEFAULT_MEDIA_TYPE
        ]
        produces = op.pop("produces", None) or openapi.get("produces") or [
            DEFAULT_MEDIA_TYPE
        ]

        self._convert_parameters(op, consumes, where)

        responses = op.get("responses")
        if responses is None:
            if self.patch:
                op["responses"] = {"default": {"description": "Default response"}}
            else:
                self._warn(f"{where} has no responses")
            return
        if not isinstance(responses, dict):
            self._warn(f"responses of {where} is not an object")
            return
        for code, response in responses.items():
            if not isinstance(response, dict):
                self._warn(f"response {code} of {where} is not an object")
                continue
            self._convert_response(response, produces)

    def _convert_paths(self, openapi: Dict[str, Any]) -> None:
        paths = openapi.get("paths")
        if paths is None:
            return
        if not isinstance(paths, dict):
            raise SpecConversionError("'paths' must be an object")

        for path, path_item in paths.items():
            if not isinstance(path_item, dict):
                self._warn(f"path item '{path}' is not an object")
                continue
            consumes = openapi.get("consumes") or [DEFAULT_MEDIA_TYPE]
            self._convert_parameters(path_item, consumes, f"path '{path}'")
            # Path-level body parameters have no OpenAPI 3 home; push them down.
            shared_body = path_item.pop("requestBody", None)
            for method, op in path_item.items():
                if method.lower() not in HTTP_METHODS:
                    continue
                where = f"{method.upper()} {path}"
                if not isinstance(op, dict):
                    self._warn(f"operation {where} is not an object")
                    continue
                try:
                    self._convert_operation(op, openapi, where)
                except SpecConversionError:
                    raise
                except (KeyError, TypeError, AttributeError, ValueError) as exc:
                    self._warn(f"operation {where} could not be converted: {exc}")
                    continue
                if shared_body is not None and "requestBody" not in op:
                    op["requestBody"] = copy.deepcopy(shared_body)

    def _servers(self, swagger: Dict[str, Any]) -> List[Dict[str, str]]:
        schemes = swagger.get("schemes") or ["https"]
        base_path = swagger.get("basePath", "")
        if "host" in swagger:
            return [{"url": f"{scheme}://{swagger['host']}{base_path}"} for scheme in schemes]
        if base_path:
            return [{"url": base_path}]
        return []

    def convert(self, swagger: Dict[str, Any]) -> Dict[str, Any]:
        """Main conversion method. The input document is not modified."""
        if not isinstance(swagger, dict):
            raise SpecConversionError("Swagger document must be an object")

        self.warnings = []
        self._body_components = set()
        openapi = copy.deepcopy(swagger)

        openapi.pop("swagger", None)
        openapi = {"openapi": "3.0.0", **openapi}

        servers = self._servers(swagger)
        if servers:
            openapi["servers"] = servers
        for key in ("host", "basePath", "schemes"):
            openapi.pop(key, None)

        components: Dict[str, Any] = openapi.get("components") or {}
        for component_type in ("parameters", "responses"):
            if component_type in openapi:
                components[component_type] = openapi.pop(component_type)
        if "definitions" in openapi:
            components["schemas"] = openapi.pop("definitions")
        if "securityDefinitions" in openapi:
            components["securitySchemes"] = self._convert_security_definitions(
                openapi.pop("securityDefinitions")
            )
        if components:
            openapi["components"] = components

        for schema in (components.get("schemas") or {}).values():
            self._fix_up_schema(schema)
        consumes = openapi.get("consumes") or [DEFAULT_MEDIA_TYPE]
        produces = openapi.get("produces") or [DEFAULT_MEDIA_TYPE]
        for name, param in list((components.get("parameters") or {}).items()):
            if isinstance(param, dict) and param.get("in") == "body":
                components.setdefault("requestBodies", {})[name] = self._body_request(
                    param, consumes
                )
                del components["parameters"][name]
                self._body_components.add(name)
            elif isinstance(param, dict):
                self._convert_parameter(param)
        for response in (components.get("responses") or {}).values():
            if isinstance(response, dict):
                self._convert_response(response, produces)

        self._convert_paths(openapi)

        _recurse(openapi, self._fixup_refs)

        openapi.pop("consumes", None)
        openapi.pop("produces", None)

        if self.warnings:
            logger.info(
                f"Swagger 2.0 conversion finished with {len(self.warnings)} warning(s)"
            )
        return openapi


def convert(
    swagger: Dict[str, Any], patch: bool = True, warn_only: bool = True
) -> Dict[str, Any]:
    """Convenience wrapper around :class:`Swagger2OpenAPIConverter`."""
    return Swagger2OpenAPIConverter(patch=patch, warn_only=warn_only).convert(swagger)
