"""Tests for the MCP server entry point and tool implementations."""

from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
import yaml
from click.testing import CliRunner
from fastmcp import FastMCP

from openapi_catalog_mcp.exceptions import ServiceErrorCode, SpecServiceError
from openapi_catalog_mcp.main import (
    CatalogTools,
    build_server,
    create_service,
    load_config,
    main,
    to_text,
)

TOOL_NAMES = {
    "refresh-api-catalog",
    "get-api-catalog",
    "search-api-operations",
    "search-api-schemas",
    "load-api-operation-by-operationId",
    "load-api-operation-by-path-and-method",
    "load-api-schema-by-schemaName",
}


@pytest_asyncio.fixture
async def service(config):
    service = create_service(config)
    await service.initialize()
    yield service
    service.close()


@pytest.fixture
def tools(service):
    return CatalogTools(service)


class TestBuildServer:
    """Test the FastMCP server wiring."""

    @pytest.mark.asyncio
    async def test_registers_all_tools(self, service):
        mcp = build_server(service)

        assert isinstance(mcp, FastMCP)
        registered = await mcp.get_tools()
        assert set(registered) == TOOL_NAMES


class TestCatalogTools:
    """Test the tool implementations."""

    @pytest.mark.asyncio
    async def test_refresh_reports_failures(self, tools):
        text = await tools.refresh_api_catalog()

        assert text == "API catalog refreshed (1 file(s) could not be processed)"

    @pytest.mark.asyncio
    async def test_get_api_catalog(self, tools):
        catalog = yaml.safe_load(await tools.get_api_catalog())

        assert {entry["specId"] for entry in catalog} == {"petstore", "legacy.json"}

    @pytest.mark.asyncio
    async def test_search_api_operations(self, tools):
        matches = yaml.safe_load(await tools.search_api_operations("order"))

        assert {m["operation"]["operationId"] for m in matches} == {
            "listOrders",
            "createOrder",
        }
        assert all(m["specId"] == "legacy.json" for m in matches)

    @pytest.mark.asyncio
    async def test_search_api_schemas(self, tools):
        matches = yaml.safe_load(await tools.search_api_schemas("Pet"))

        assert matches[0] == {
            "name": "Pet",
            "description": "A pet in the store",
            "specId": "petstore",
        }

    @pytest.mark.asyncio
    async def test_load_operation_by_id(self, tools):
        found = yaml.safe_load(await tools.load_operation_by_id("petstore", "listPets"))
        missing = yaml.safe_load(await tools.load_operation_by_id("petstore", "nope"))

        assert found["path"] == "/pets"
        assert found["uri"] == "apis://petstore/operations/listPets"
        assert missing is None

    @pytest.mark.asyncio
    async def test_load_operation_by_path_and_method(self, tools):
        found = yaml.safe_load(
            await tools.load_operation_by_path_and_method("petstore", "/pets/{petId}", "GET")
        )

        assert found["operation"]["operationId"] == "showPetById"

    @pytest.mark.asyncio
    async def test_load_schema_by_name(self, tools):
        found = yaml.safe_load(await tools.load_schema_by_name("petstore", "NewPet"))
        missing = yaml.safe_load(await tools.load_schema_by_name("petstore", "Nope"))

        assert found["schema"]["required"] == ["name"]
        assert found["uri"] == "apis://petstore/schemas/NewPet"
        assert missing is None

    @pytest.mark.asyncio
    async def test_service_failures_propagate(self, tools):
        error = SpecServiceError("boom", ServiceErrorCode.INIT_ERROR)

        with patch.object(tools.service, "refresh", AsyncMock(side_effect=error)):
            with pytest.raises(SpecServiceError):
                await tools.refresh_api_catalog()


def test_to_text_renders_none_as_null():
    assert yaml.safe_load(to_text(None)) is None


def test_load_config_applies_overrides(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("base_path: /from/file\ncatalog_dir: cat\nretry_attempts: 4\n")

    config = load_config(str(config_path), "/from/cli", None, "deref")

    assert config.base_path == "/from/cli"
    assert config.catalog_dir == "cat"
    assert config.dereferenced_dir == "deref"
    assert config.retry_attempts == 4


def test_main_rejects_unknown_log_level():
    result = CliRunner().invoke(main, ["--log-level", "LOUD"])

    assert result.exit_code != 0
