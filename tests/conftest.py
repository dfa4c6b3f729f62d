"""
Pytest fixtures and configuration for tests.
"""

from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from arazzo_workbench.api.app import create_app
from arazzo_workbench.config import Environment, Settings
from arazzo_workbench.core.builder import build_document_model
from arazzo_workbench.core.models import DocumentModel
from arazzo_workbench.parsing import load_document


MINIMAL_DOCUMENT = """\
arazzo: 1.0.1
info:
  title: Minimal
  version: 1.0.0
sourceDescriptions:
  - name: petStore
    url: https://petstore3.swagger.io/api/v3/openapi.json
    type: openapi
workflows:
  - workflowId: minimal
    steps:
      - stepId: onlyStep
        operationId: getPetById
"""


PET_PURCHASE_DOCUMENT = """\
arazzo: 1.0.1
info:
  title: Pet purchase
  version: 1.0.0
sourceDescriptions:
  - name: petStore
    url: https://petstore3.swagger.io/api/v3/openapi.json
    type: openapi
workflows:
  - workflowId: purchasePet
    summary: Log in and look up a pet
    inputs:
      type: object
      properties:
        username:
          type: string
        password:
          type: string
        petId:
          type: integer
    steps:
      - stepId: loginStep
        description: Log in with the user's credentials
        operationId: loginUser
        parameters:
          - name: username
            in: query
            value: $inputs.username
          - name: password
            in: query
            value: $inputs.password
        successCriteria:
          - condition: $statusCode == 200
        outputs:
          sessionToken: $response.body
      - stepId: getPetStep
        description: Look up the pet
        operationId: getPetById
        parameters:
          - name: petId
            in: path
            value: $inputs.petId
          - name: session
            in: header
            value: $steps.loginStep.outputs.sessionToken
        successCriteria:
          - condition: $statusCode == 200
        outputs:
          status: $response.body#/status
    outputs:
      available: $steps.getPetStep.outputs.status
"""


DOCUMENT_HEADER = """\
arazzo: 1.0.1
info:
  title: Test
  version: 1.0.0
sourceDescriptions:
  - name: petStore
    url: https://petstore3.swagger.io/api/v3/openapi.json
    type: openapi
"""


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        environment=Environment.TEST,
        debug=True,
        log_level="DEBUG",
    )


@pytest.fixture
def minimal_document() -> str:
    """Smallest well-formed document: one workflow, one step."""
    return MINIMAL_DOCUMENT


@pytest.fixture
def pet_purchase_document() -> str:
    """Two-step pet purchase: loginStep -> getPetStep with a declared output."""
    return PET_PURCHASE_DOCUMENT


@pytest.fixture
def with_header() -> Callable[[str], str]:
    """Prefix a workflows/components section with valid root fields."""
    def _with_header(body: str) -> str:
        return DOCUMENT_HEADER + body
    return _with_header


@pytest.fixture
def build_model() -> Callable[[str], DocumentModel]:
    """Parse YAML text and build its document model."""
    def _build(text: str) -> DocumentModel:
        return build_document_model(load_document(text).tree).model
    return _build


@pytest_asyncio.fixture
async def client(test_settings: Settings) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to a fresh application instance."""
    app = create_app(settings=test_settings)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
