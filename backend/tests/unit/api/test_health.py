"""Unit tests for the health check endpoint."""

import pytest
from fastapi.testclient import TestClient

from tollgate.main import app


@pytest.mark.unit
@pytest.mark.parametrize("path", ["/health", "/health/"])
def test_health_check(path):
    """Test the health check endpoint returns status as healthy."""
    # Create a test client for the FastAPI app
    client = TestClient(app)

    # Make a GET request to the health endpoint, with and without trailing slash
    response = client.get(path)

    # Check the response status code is 200 OK
    assert response.status_code == 200
    # Check the response payload
    assert response.json() == {"status": "healthy"}
    assert "X-Request-ID" in response.headers
