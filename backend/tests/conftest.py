"""
Pytest configuration and fixtures for canvas service tests.
"""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from backend.main import app
from backend.routes.canvases import get_registry
from backend.services.canvas_registry import CanvasRegistry
from canvas.kernel.storage import MemoryStorage


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def registry(storage):
    """Fresh registry per test so canvases never leak between tests."""
    registry = CanvasRegistry(storage, max_history_size=50)
    app.dependency_overrides[get_registry] = lambda: registry
    yield registry
    app.dependency_overrides.pop(get_registry, None)


@pytest_asyncio.fixture
async def client(registry):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture
def page_blocks():
    return [
        {
            "id": "s1",
            "type": "section",
            "props": {},
            "children": [
                {"id": "t1", "type": "text", "props": {"content": "one"}},
                {"id": "t2", "type": "text", "props": {"content": "two"}},
            ],
        },
        {"id": "g1", "type": "grid", "props": {"columns": 3}, "children": [{"id": "c1", "type": "image", "props": {}}]},
    ]


@pytest_asyncio.fixture
async def canvas_id(client, page_blocks):
    response = await client.post("/api/canvases", json={"canvas_id": "home", "blocks": page_blocks})
    assert response.status_code == 201
    return "home"
