"""Contract test configuration.

The API's service graph is replaced with the one built over the mocked
tables, so requests and direct service calls see the same state.
"""

from typing import Generator

import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_services, reset_services
from api.main import app
from rentals.services.container import Services


@pytest.fixture
def client(services: Services) -> Generator[TestClient, None, None]:
    """Test client wired to the mocked service graph."""
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()
    reset_services()
