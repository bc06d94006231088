"""Resolve ``$ref`` JSON Reference pointers into an inlined document tree.

Dereferencing happens in two phases:

1. :meth:`RefResolver.dereference` first walks the document (and every
   document it pulls in) collecting external ``$ref`` targets, loading each
   file or URL once. This is the only phase that performs I/O.
2. The tree is then rebuilt with every ``$ref`` replaced by its target.
   Targets inside external documents are resolved relative to the document
   that contains them.

Circular references are cut at the first repeat: when a reference is met
while its own target is still being expanded, it is replaced by a
placeholder object carrying ``x-circular-ref``. A reference whose expansion
contained such a cut is expanded at most once per top-level reference;
later occurrences inside the same top-level expansion get the placeholder
too. Expansions free of cuts are memoized and shared. The result is a
finite tree that serialises to JSON without any ``$ref`` markers, and
mutually referencing schemas cost work proportional to their number rather
than to the number of paths through them.

Targets that cannot be found or fetched are left as the original ``$ref``
object and reported in :attr:`DereferenceResult.errors`. Only malformed
references raise :class:`~openapi_catalog_mcp.exceptions.DereferenceError`.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Set, Tuple
from urllib.parse import unquote, urljoin, urlparse

import aiofiles
import httpx

from .exceptions import DereferenceError, SpecParseError, UnresolvedReferenceError
from .models import schema_kind
from .normalizer import detect_file_type, parse_content

logger = logging.getLogger(__name__)

CIRCULAR_REF_KEY = "x-circular-ref"


@dataclass
class DereferenceResult:
    """A dereferenced document plus the references that could not be resolved."""

    document: Dict[str, Any]
    errors: List[UnresolvedReferenceError] = field(default_factory=list)


def split_ref(ref: str, base_uri: str) -> Tuple[str, str]:
    """Split ``ref`` into an absolute document URI and a JSON pointer fragment."""
    if "#" in ref:
        resource, fragment = ref.split("#", 1)
    else:
        resource, fragment = ref, ""
    doc_uri = urljoin(base_uri, resource) if resource else base_uri
    if fragment and not fragment.startswith("/"):
        raise DereferenceError(
            f"Malformed $ref '{ref}': JSON pointer must start with '/'"
        )
    return doc_uri, fragment


def json_pointer_get(document: Any, pointer: str, ref: str) -> Any:
    """Resolve an RFC 6901 pointer (without the leading ``#``) in ``document``."""
    current = document
    if not pointer:
        return current
    for raw in pointer.split("/")[1:]:
        token = unquote(raw).replace("~1", "/").replace("~0", "~")
        if isinstance(current, dict):
            if token not in current:
                raise UnresolvedReferenceError(ref, f"key '{token}' not found")
            current = current[token]
        elif isinstance(current, list):
            try:
                current = current[int(token)]
            except (ValueError, IndexError) as exc:
                raise UnresolvedReferenceError(
                    ref, f"invalid array index '{token}'"
                ) from exc
        else:
            raise UnresolvedReferenceError(
                ref, f"cannot navigate into {type(current).__name__}"
            )
    return current


def circular_placeholder(ref: str) -> Dict[str, Any]:
    return {
        "type": "object",
        "description": f"Circular reference to {ref}",
        CIRCULAR_REF_KEY: ref,
    }


def file_uri(path: Path) -> str:
    return path.absolute().as_uri()


class RefResolver:
    """Dereferences one document at a time.

    Args:
        base_uri: URI of the document being resolved, used to locate
            relative file references. ``None`` restricts resolution to
            internal pointers and absolute URIs.
        allow_remote: Whether ``http(s)`` targets may be fetched.
        http_client: Optional client for remote fetches; one is created
            per run otherwise.
    """

    def __init__(
        self,
        base_uri: Optional[str] = None,
        allow_remote: bool = True,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_uri = base_uri or ""
        self.allow_remote = allow_remote
        self.http_client = http_client
        self._documents: Dict[str, Any] = {}
        self._failed: Dict[str, str] = {}
        self._memo: Dict[str, Any] = {}
        self._expanded: Set[str] = set()
        self._cycle_cuts = 0
        self._errors: List[UnresolvedReferenceError] = []

    async def dereference(self, document: Dict[str, Any]) -> DereferenceResult:
        """Return a new document with every resolvable ``$ref`` inlined."""
        self._documents = {self.base_uri: document}
        self._failed = {}
        self._memo = {}
        self._expanded = set()
        self._cycle_cuts = 0
        self._errors = []

        await self._load_external_documents()
        resolved = self._resolve(document, self.base_uri, ())

        if self._errors:
            logger.warning(
                f"{len(self._errors)} unresolved reference(s) in {self.base_uri or 'document'}"
            )
        return DereferenceResult(document=resolved, errors=list(self._errors))

    async def _load_external_documents(self) -> None:
        pending = [self.base_uri]
        while pending:
            doc_uri = pending.pop()
            for ref in _iter_refs(self._documents[doc_uri]):
                target_uri, _ = split_ref(ref, doc_uri)
                if target_uri in self._documents or target_uri in self._failed:
                    continue
                try:
                    self._documents[target_uri] = await self._load(target_uri)
                except UnresolvedReferenceError as exc:
                    self._failed[target_uri] = exc.reason
                    continue
                pending.append(target_uri)

    async def _load(self, uri: str) -> Any:
        parsed = urlparse(uri)
        if parsed.scheme in ("http", "https"):
            if not self.allow_remote:
                raise UnresolvedReferenceError(uri, "remote references are disabled")
            return await self._fetch(uri)
        if parsed.scheme in ("", "file"):
            path = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(uri)
            return await self._read_file(uri, path)
        raise UnresolvedReferenceError(uri, f"unsupported scheme '{parsed.scheme}'")

    async def _read_file(self, uri: str, path: Path) -> Any:
        logger.debug(f"Loading external reference file {path}")
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                content = await f.read()
        except OSError as exc:
            raise UnresolvedReferenceError(uri, f"cannot read file: {exc}") from exc
        return self._parse_external(uri, content, path.name)

    async def _fetch(self, uri: str) -> Any:
        logger.debug(f"Fetching external reference {uri}")
        try:
            if self.http_client is not None:
                response = await self.http_client.get(uri, follow_redirects=True)
            else:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    response = await client.get(uri, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise UnresolvedReferenceError(uri, f"fetch failed: {exc}") from exc
        return self._parse_external(uri, response.text, PurePosixPath(urlparse(uri).path).name)

    def _parse_external(self, uri: str, content: str, name: str) -> Any:
        # YAML is a superset of JSON, so it is the fallback for unknown suffixes.
        try:
            return parse_content(content, detect_file_type(name) or "yaml")
        except SpecParseError as exc:
            raise UnresolvedReferenceError(uri, str(exc)) from exc

    def _resolve(self, node: Any, doc_uri: str, stack: Tuple[str, ...]) -> Any:
        if isinstance(node, list):
            return [self._resolve(item, doc_uri, stack) for item in node]
        if not isinstance(node, dict):
            return node
        if schema_kind(node) == "reference":
            return self._resolve_reference(node, doc_uri, stack)
        return {key: self._resolve(value, doc_uri, stack) for key, value in node.items()}

    def _resolve_reference(
        self, node: Dict[str, Any], doc_uri: str, stack: Tuple[str, ...]
    ) -> Any:
        ref = node["$ref"]
        if not isinstance(ref, str):
            raise DereferenceError(f"Malformed $ref: expected a string, got {ref!r}")

        target_uri, fragment = split_ref(ref, doc_uri)
        key = f"{target_uri}#{fragment}"
        if not stack:
            self._expanded = set()
        siblings = {
            k: self._resolve(v, doc_uri, stack) for k, v in node.items() if k != "$ref"
        }

        if key in self._memo:
            resolved: Any = self._memo[key]
        elif key in stack or key in self._expanded:
            self._cycle_cuts += 1
            resolved = circular_placeholder(ref)
        else:
            try:
                target = self._lookup(ref, target_uri, fragment)
            except UnresolvedReferenceError as exc:
                logger.warning(str(exc))
                self._errors.append(exc)
                return {"$ref": ref, **siblings}
            self._expanded.add(key)
            cuts_before = self._cycle_cuts
            resolved = self._resolve(target, target_uri, stack + (key,))
            # Results containing a cycle cut depend on the expansion path.
            if self._cycle_cuts == cuts_before:
                self._memo[key] = resolved

        if siblings and isinstance(resolved, dict):
            return {**resolved, **siblings}
        return resolved

    def _lookup(self, ref: str, target_uri: str, fragment: str) -> Any:
        if target_uri in self._failed:
            raise UnresolvedReferenceError(ref, self._failed[target_uri])
        if target_uri not in self._documents:
            raise UnresolvedReferenceError(ref, "document not loaded")
        return json_pointer_get(self._documents[target_uri], fragment, ref)


def _iter_refs(node: Any):
    """Yield every string ``$ref`` value found anywhere under ``node``."""
    stack = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, dict):
            ref = current.get("$ref")
            if isinstance(ref, str):
                yield ref
            stack.extend(current.values())
        elif isinstance(current, list):
            stack.extend(current)


async def dereference(
    document: Dict[str, Any],
    base_uri: Optional[str] = None,
    allow_remote: bool = True,
) -> DereferenceResult:
    """Convenience wrapper around :class:`RefResolver`."""
    resolver = RefResolver(base_uri=base_uri, allow_remote=allow_remote)
    return await resolver.dereference(document)
