"""Test the catalog service."""

import json
from unittest.mock import patch

import pytest
import pytest_asyncio

from openapi_catalog_mcp.cache import SpecCache
from openapi_catalog_mcp.config import CacheConfig
from openapi_catalog_mcp.exceptions import (
    ServiceErrorCode,
    SpecNotFoundError,
    SpecScanError,
    SpecServiceError,
)
from openapi_catalog_mcp.processor import SpecProcessor
from openapi_catalog_mcp.scanner import SpecScanner
from openapi_catalog_mcp.spec_service import (
    CATALOG_FILENAME,
    CatalogService,
    build_catalog_entry,
)


class BrokenScanner:
    async def scan(self, folder_path):
        raise SpecScanError(f"Failed to read directory: {folder_path}", folder_path)
        yield


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest_asyncio.fixture
async def service(config):
    service = CatalogService(SpecScanner(SpecProcessor(allow_remote_refs=False)), config)
    yield service
    service.close()


def test_build_catalog_entry_skips_pseudo_methods():
    spec = {
        "info": {"title": "T", "version": 2, "description": "desc"},
        "paths": {
            "/items": {
                "parameters": [{"name": "q", "in": "query"}],
                "$ref": "#/somewhere",
                "summary": "path level text",
                "get": {"operationId": "listItems", "description": "List"},
                "x-internal": {"flag": True},
            }
        },
        "components": {"schemas": {"Item": {"type": "object", "description": "An item"}}},
    }

    entry = build_catalog_entry("items", spec)

    assert entry.spec_id == "items"
    assert entry.version == "2"
    assert entry.description == "desc"
    assert [(op.method, op.operation_id) for op in entry.operations] == [("get", "listItems")]
    assert [(s.name, s.description) for s in entry.schemas] == [("Item", "An item")]


@pytest.mark.asyncio
async def test_initialize_builds_and_persists_catalog(service, config):
    await service.initialize()

    catalog = service.get_api_catalog()
    assert {entry.spec_id for entry in catalog} == {"petstore", "legacy.json"}
    assert len(service.last_scan_failures) == 1

    petstore = next(entry for entry in catalog if entry.spec_id == "petstore")
    assert petstore.description == "Pet store API"
    assert {op.operation_id for op in petstore.operations} == {
        "listPets",
        "createPet",
        "showPetById",
    }
    assert {s.name for s in petstore.schemas} == {"NewPet", "Pet"}

    catalog_file = config.catalog_path / CATALOG_FILENAME
    persisted = json.loads(catalog_file.read_text())
    assert {item["specId"] for item in persisted} == {"petstore", "legacy.json"}
    assert (config.dereferenced_path / "petstore.json").exists()
    assert (config.dereferenced_path / "legacy.json.json").exists()


@pytest.mark.asyncio
async def test_get_api_catalog_is_a_snapshot(service):
    await service.initialize()

    snapshot = service.get_api_catalog()
    snapshot.clear()

    assert len(service.get_api_catalog()) == 2


@pytest.mark.asyncio
async def test_refresh_replaces_catalog(service, spec_dir):
    await service.initialize()
    (spec_dir / "legacy.json").unlink()

    await service.refresh()

    assert [entry.spec_id for entry in service.get_api_catalog()] == ["petstore"]
    assert "legacy.json" not in service.specs


@pytest.mark.asyncio
async def test_initialize_reloads_persisted_catalog(config):
    first = CatalogService(SpecScanner(SpecProcessor(allow_remote_refs=False)), config)
    await first.initialize()
    first.close()

    second = CatalogService(SpecScanner(SpecProcessor(allow_remote_refs=False)), config)
    try:
        assert await second.load_existing_catalog() is True
        assert {entry.spec_id for entry in second.catalog} == {"petstore", "legacy.json"}
        assert second.specs["petstore"]["info"]["title"] == "Petstore"
    finally:
        second.close()


@pytest.mark.asyncio
async def test_corrupt_persisted_catalog_is_not_fatal(service, config):
    config.catalog_path.mkdir(parents=True)
    (config.catalog_path / CATALOG_FILENAME).write_text("{broken")

    await service.initialize()

    assert {entry.spec_id for entry in service.get_api_catalog()} == {"petstore", "legacy.json"}


@pytest.mark.asyncio
async def test_initialize_failure_resets_state(service):
    await service.initialize()
    service.scanner = BrokenScanner()

    with pytest.raises(SpecServiceError) as exc_info:
        await service.initialize()

    assert exc_info.value.code == ServiceErrorCode.INIT_ERROR
    assert exc_info.value.cause.code == ServiceErrorCode.SCAN_ERROR
    assert service.get_api_catalog() == []
    assert service.specs == {}


@pytest.mark.asyncio
async def test_scan_and_save_failure_leaves_state_untouched(service, spec_dir):
    await service.initialize()
    before = service.get_api_catalog()

    with patch.object(service, "_write_json", side_effect=OSError("disk full")):
        with pytest.raises(SpecServiceError) as exc_info:
            await service.scan_and_save(str(spec_dir))

    assert exc_info.value.code == ServiceErrorCode.SCAN_ERROR
    assert service.get_api_catalog() == before


@pytest.mark.asyncio
async def test_path_like_spec_id_does_not_break_catalog(service, spec_dir, config):
    (spec_dir / "odd.json").write_text(
        json.dumps(
            {
                "openapi": "3.0.0",
                "info": {"title": "Odd", "version": "1", "x-spec-id": "../../escape"},
                "paths": {},
            }
        )
    )

    await service.initialize()

    assert {entry.spec_id for entry in service.get_api_catalog()} == {
        "petstore",
        "legacy.json",
        "odd.json",
    }
    assert (config.dereferenced_path / "odd.json.json").exists()
    assert list(spec_dir.parent.rglob("escape.json")) == []


@pytest.mark.asyncio
async def test_save_spec_rejects_path_like_id(service):
    await service.initialize()

    with pytest.raises(SpecServiceError) as exc_info:
        await service.save_spec({"info": {}}, "team/api")

    assert exc_info.value.code == ServiceErrorCode.PERSIST_ERROR
    assert "team/api" not in service.specs


@pytest.mark.asyncio
async def test_save_and_load_spec(service):
    await service.initialize()
    doc = {"openapi": "3.0.0", "info": {"title": "Extra"}, "paths": {}}

    await service.save_spec(doc, "extra")

    assert service.specs["extra"] == doc
    assert await service.load_spec("extra") == doc
    persisted = json.loads((service.dereferenced_path / "extra.json").read_text())
    assert persisted == doc


@pytest.mark.asyncio
async def test_load_spec_rereads_after_expiry(config):
    clock = FakeClock()
    cache = SpecCache(CacheConfig(ttl=10), clock=clock)
    service = CatalogService(
        SpecScanner(SpecProcessor(allow_remote_refs=False)), config, spec_cache=cache
    )
    try:
        await service.initialize()
        cached = await service.load_spec("petstore")
        assert await service.load_spec("petstore") is cached

        clock.now = 100
        reloaded = await service.load_spec("petstore")

        assert reloaded is not cached
        assert reloaded == json.loads(json.dumps(cached))
    finally:
        service.close()


@pytest.mark.asyncio
async def test_load_spec_not_found(service):
    await service.initialize()

    with pytest.raises(SpecNotFoundError) as exc_info:
        await service.load_spec("nope")

    assert str(exc_info.value) == "Specification not found: nope"
    assert exc_info.value.code == ServiceErrorCode.LOAD_ERROR


@pytest.mark.asyncio
async def test_load_spec_corrupt_file(service):
    await service.initialize()
    (service.dereferenced_path / "corrupt.json").write_text("{not json")

    with pytest.raises(SpecServiceError) as exc_info:
        await service.load_spec("corrupt")

    assert not isinstance(exc_info.value, SpecNotFoundError)
    assert exc_info.value.code == ServiceErrorCode.LOAD_ERROR


@pytest.mark.asyncio
async def test_save_spec_retries_then_fails(service, config):
    await service.initialize()
    attempts = []

    def flaky_open(*args, **kwargs):
        attempts.append(args[0])
        raise OSError("read-only file system")

    with patch("openapi_catalog_mcp.spec_service.aiofiles.open", side_effect=flaky_open):
        with pytest.raises(SpecServiceError) as exc_info:
            await service.save_spec({"info": {}}, "ro")

    assert exc_info.value.code == ServiceErrorCode.PERSIST_ERROR
    assert len(attempts) == config.retry_attempts
    assert "ro" not in service.specs


@pytest.mark.asyncio
async def test_search_operations(service):
    await service.initialize()

    by_summary = service.search_operations("PET")
    by_tag = service.search_operations("inventory")
    scoped = service.search_operations("order", spec_id="petstore")

    assert {m.operation["operationId"] for m in by_summary} == {
        "listPets",
        "createPet",
        "showPetById",
    }
    assert [m.operation["operationId"] for m in by_tag] == ["showPetById"]
    assert by_tag[0].uri == "apis://petstore/operations/showPetById"
    assert by_tag[0].path == "/pets/{petId}"
    assert by_tag[0].method == "get"
    assert scoped == []
    assert service.search_operations("zzz-no-match") == []


@pytest.mark.asyncio
async def test_search_schemas_is_fuzzy_and_ranked(service):
    await service.initialize()

    exact = service.search_schemas("Pet")
    typo = service.search_schemas("Ordr")

    assert exact[0].name == "Pet"
    assert exact[0].spec_id == "petstore"
    assert {m.name for m in exact} >= {"Pet", "NewPet"}
    assert [m.name for m in typo] == ["Order"]
    assert service.search_schemas("qqqqqq") == []


@pytest.mark.asyncio
async def test_find_schema_by_name(service):
    await service.initialize()

    found = service.find_schema_by_name("petstore", "Pet")

    assert found is not None
    assert found.uri == "apis://petstore/schemas/Pet"
    assert found.description == "A pet in the store"
    assert found.schema_["type"] == "object"
    assert service.find_schema_by_name("petstore", "Nope") is None
    assert service.find_schema_by_name("nope", "Pet") is None


@pytest.mark.asyncio
async def test_find_operation_by_id(service):
    await service.initialize()

    found = service.find_operation_by_id("legacy.json", "createOrder")

    assert found is not None
    assert found.path == "/orders"
    assert found.method == "post"
    assert "requestBody" in found.operation
    assert service.find_operation_by_id("legacy.json", "missing") is None
    assert service.find_operation_by_id("missing", "createOrder") is None


@pytest.mark.asyncio
async def test_find_operation_by_path_and_method(service):
    await service.initialize()

    found = service.find_operation_by_path_and_method("petstore", "/pets", "POST")

    assert found is not None
    assert found.operation["operationId"] == "createPet"
    assert found.uri == "apis://petstore/operations/createPet"
    assert service.find_operation_by_path_and_method("petstore", "/pets", "delete") is None
    assert service.find_operation_by_path_and_method("petstore", "/pets", "parameters") is None
    assert service.find_operation_by_path_and_method("petstore", "/nope", "get") is None


@pytest.mark.asyncio
async def test_operation_without_id_has_no_uri(service):
    await service.initialize()
    await service.save_spec(
        {"info": {"title": "Anon"}, "paths": {"/ping": {"get": {"summary": "Ping"}}}},
        "anon",
    )
    service.catalog.append(build_catalog_entry("anon", service.specs["anon"]))

    found = service.find_operation_by_path_and_method("anon", "/ping", "get")
    matches = service.search_operations("ping", spec_id="anon")

    assert found is not None
    assert found.uri is None
    assert "uri" not in found.to_dict()
    assert [m.uri for m in matches] == [None]
