"""Test fixtures and configuration."""

import copy
import json
import os
from pathlib import Path

import pytest

from openapi_catalog_mcp.config import CacheConfig, Config

PETSTORE_YAML = """\
openapi: 3.0.0
info:
  title: Petstore
  version: 1.0.0
  description: Pet store API
  x-spec-id: petstore
paths:
  /pets:
    parameters:
      - name: limit
        in: query
        schema:
          type: integer
    get:
      operationId: listPets
      summary: List all pets
      tags: [pets]
      responses:
        '200':
          description: A list of pets
          content:
            application/json:
              schema:
                type: array
                items:
                  $ref: '#/components/schemas/Pet'
    post:
      operationId: createPet
      summary: Create a pet
      tags: [pets]
      requestBody:
        content:
          application/json:
            schema:
              $ref: '#/components/schemas/NewPet'
      responses:
        '201':
          description: Created
  /pets/{petId}:
    get:
      operationId: showPetById
      summary: Info for a specific pet
      description: Returns a single pet
      tags: [inventory]
      parameters:
        - name: petId
          in: path
          required: true
          schema:
            type: string
      responses:
        '200':
          description: Expected response
          content:
            application/json:
              schema:
                $ref: '#/components/schemas/Pet'
components:
  schemas:
    NewPet:
      type: object
      description: A pet to be created
      required: [name]
      properties:
        name:
          type: string
        tag:
          type: string
    Pet:
      description: A pet in the store
      allOf:
        - $ref: '#/components/schemas/NewPet'
        - type: object
          required: [id]
          properties:
            id:
              type: integer
              format: int64
"""

LEGACY_SPEC = {
    "swagger": "2.0",
    "info": {"title": "Legacy Store", "version": "1.0"},
    "host": "api.example.com",
    "basePath": "/v1",
    "paths": {
        "/orders": {
            "get": {
                "operationId": "listOrders",
                "summary": "List orders",
                "produces": ["application/json"],
                "responses": {
                    "200": {
                        "description": "ok",
                        "schema": {
                            "type": "array",
                            "items": {"$ref": "#/definitions/Order"},
                        },
                    }
                },
            },
            "post": {
                "operationId": "createOrder",
                "summary": "Place an order",
                "parameters": [
                    {
                        "in": "body",
                        "name": "body",
                        "required": True,
                        "schema": {"$ref": "#/definitions/Order"},
                    }
                ],
                "responses": {"201": {"description": "created"}},
            },
        }
    },
    "definitions": {
        "Order": {
            "type": "object",
            "description": "A customer order",
            "properties": {"id": {"type": "integer"}},
        }
    },
}

INVALID_YAML = "openapi: 3.0.0\ninfo: [unclosed\n"


def write_spec_dir(directory: Path) -> Path:
    """Populate ``directory`` with a mix of valid and invalid inputs."""
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "petstore.yaml").write_text(PETSTORE_YAML)
    (directory / "legacy.json").write_text(json.dumps(LEGACY_SPEC))
    (directory / "invalid.yaml").write_text(INVALID_YAML)
    (directory / "notes.txt").write_text("not a spec")
    return directory


@pytest.fixture(scope="session", autouse=True)
def test_environment():
    """Set up test environment."""
    # Ensure we're in the right directory
    original_cwd = os.getcwd()
    repo_root = Path(__file__).parent.parent
    os.chdir(repo_root)

    yield

    # Cleanup
    os.chdir(original_cwd)


@pytest.fixture
def spec_dir(tmp_path):
    """A directory with one modern, one legacy, one broken and one unrelated file."""
    return write_spec_dir(tmp_path / "specs")


@pytest.fixture
def config(spec_dir):
    """Service configuration rooted at the spec directory, without retry delays."""
    return Config(
        base_path=str(spec_dir),
        retry_attempts=2,
        retry_delay=0,
        allow_remote_refs=False,
        cache=CacheConfig(max_size=10),
    )


@pytest.fixture
def petstore_content():
    return PETSTORE_YAML


@pytest.fixture
def legacy_spec():
    return copy.deepcopy(LEGACY_SPEC)
