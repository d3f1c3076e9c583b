"""
Tests for the canvas session API.

Covers session lifecycle, operations-as-data, drag and drop, import/export
and save/restore, plus the HTTP mapping of rejected edits (409), unknown
canvases (404) and malformed input (422).
"""

import json

import pytest
from httpx import AsyncClient


async def op(client: AsyncClient, canvas_id: str, name: str, **args):
    return await client.post(f"/api/canvases/{canvas_id}/operations", json={"op": name, "args": args})


class TestHealth:
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestLifecycle:
    async def test_create_empty(self, client: AsyncClient):
        response = await client.post("/api/canvases", json={})
        assert response.status_code == 201
        data = response.json()
        assert data["blocks"] == []
        assert data["history"][0]["action"] == "Initial State"
        assert data["history_index"] == 0
        assert len(data["canvas_id"]) == 32

    async def test_create_seeded(self, client: AsyncClient, canvas_id):
        response = await client.get(f"/api/canvases/{canvas_id}")
        assert response.status_code == 200
        assert [b["id"] for b in response.json()["blocks"]] == ["s1", "g1"]

    async def test_duplicate_id(self, client: AsyncClient, canvas_id):
        response = await client.post("/api/canvases", json={"canvas_id": canvas_id})
        assert response.status_code == 409

    async def test_malformed_forest(self, client: AsyncClient):
        response = await client.post("/api/canvases", json={"blocks": [{"type": "text"}]})
        assert response.status_code == 422

    async def test_extra_fields_forbidden(self, client: AsyncClient):
        response = await client.post("/api/canvases", json={"title": "x"})
        assert response.status_code == 422

    async def test_unknown_canvas(self, client: AsyncClient):
        assert (await client.get("/api/canvases/nope")).status_code == 404
        assert (await op(client, "nope", "history.undo")).status_code == 404

    async def test_unknown_canvas_leaves_no_lock(self, client: AsyncClient, registry):
        for i in range(3):
            assert (await op(client, f"nope-{i}", "history.undo")).status_code == 404
        assert (await client.post("/api/canvases/nope/restore")).status_code == 404
        assert registry._locks == {}

    async def test_close(self, client: AsyncClient, canvas_id):
        assert (await client.delete(f"/api/canvases/{canvas_id}")).status_code == 204
        assert (await client.get(f"/api/canvases/{canvas_id}")).status_code == 404
        assert (await client.delete(f"/api/canvases/{canvas_id}")).status_code == 404


class TestOperations:
    async def test_add_selects_new_block(self, client: AsyncClient, canvas_id):
        response = await op(client, canvas_id, "block.add", template={"type": "button"}, parent_id="s1")
        assert response.status_code == 200
        data = response.json()
        assert data["accepted"]
        assert data["action"] == "Add button"
        assert data["state"]["selected_ids"] == [data["block_id"]]
        assert data["state"]["blocks"][0]["children"][-1]["id"] == data["block_id"]

    async def test_move_then_undo(self, client: AsyncClient, canvas_id):
        moved = await op(client, canvas_id, "block.move", block_id="t2", parent_id=None, index=0)
        assert moved.status_code == 200
        assert [b["id"] for b in moved.json()["state"]["blocks"]] == ["t2", "s1", "g1"]
        response = await op(client, canvas_id, "history.undo")
        state = response.json()["state"]
        assert [b["id"] for b in state["blocks"]] == ["s1", "g1"]
        assert state["can_redo"]

    async def test_rejected_edit_is_conflict(self, client: AsyncClient, canvas_id):
        response = await op(client, canvas_id, "block.delete", block_id="ghost")
        assert response.status_code == 409
        assert response.json()["detail"].startswith("BLOCK_NOT_FOUND")

    async def test_unknown_operation(self, client: AsyncClient, canvas_id):
        response = await op(client, canvas_id, "block.explode")
        assert response.status_code == 409
        assert response.json()["detail"].startswith("UNKNOWN_OPERATION")

    async def test_undo_at_start(self, client: AsyncClient, canvas_id):
        response = await op(client, canvas_id, "history.undo")
        assert response.status_code == 409
        assert response.json()["detail"].startswith("NO_OP")

    @pytest.mark.parametrize(
        "name,args",
        [
            ("block.add", {"template": "text"}),
            ("block.add", {"template": {"type": "section", "children": "abc"}}),
            ("block.update", {"block_id": ["t1"], "updates": {}}),
            ("block.move", {"block_id": "t1", "parent_id": None, "index": "0"}),
            ("block.add", {"template": {"type": "text"}, "index": "x"}),
            ("history.jump", {"index": "0"}),
        ],
    )
    async def test_malformed_arguments_are_conflicts(self, client: AsyncClient, canvas_id, name, args):
        response = await op(client, canvas_id, name, **args)
        assert response.status_code == 409
        assert response.json()["detail"].startswith(("INVALID_ARGUMENT", "INVALID_TEMPLATE"))
        state = (await client.get(f"/api/canvases/{canvas_id}")).json()
        assert len(state["history"]) == 1


class TestDragAndDrop:
    async def test_preview_reports_placement(self, client: AsyncClient, canvas_id):
        body = {
            "source": {"kind": "template", "template": {"type": "text"}},
            "target": {"kind": "block", "block_id": "s1", "rect": {"top": 0, "height": 200}},
            "pointer_y": 100,
        }
        response = await client.post(f"/api/canvases/{canvas_id}/drop/preview", json=body)
        assert response.status_code == 200
        data = response.json()
        assert data["op"] == "add"
        assert data["position"] == "inside"
        assert data["highlight"]["height"] == 200
        state = (await client.get(f"/api/canvases/{canvas_id}")).json()
        assert len(state["history"]) == 1

    async def test_preview_of_occupied_cell(self, client: AsyncClient, canvas_id):
        body = {
            "source": {"kind": "block", "block_id": "t1"},
            "target": {"kind": "cell", "parent_id": "g1", "index": 0},
        }
        response = await client.post(f"/api/canvases/{canvas_id}/drop/preview", json=body)
        assert response.json()["op"] == "reject"
        assert response.json()["reason"].startswith("CELL_OCCUPIED")

    async def test_drop_into_cell(self, client: AsyncClient, canvas_id):
        body = {
            "source": {"kind": "block", "block_id": "t1"},
            "target": {"kind": "cell", "parent_id": "g1", "index": 2},
        }
        response = await client.post(f"/api/canvases/{canvas_id}/drop", json=body)
        assert response.status_code == 200
        grid = response.json()["state"]["blocks"][1]
        assert [c and c["id"] for c in grid["children"]] == ["c1", None, "t1"]

    async def test_drop_without_target(self, client: AsyncClient, canvas_id):
        body = {"source": {"kind": "block", "block_id": "t1"}, "target": None}
        response = await client.post(f"/api/canvases/{canvas_id}/drop", json=body)
        assert response.status_code == 409
        assert response.json()["detail"].startswith("NO_TARGET")

    async def test_zone_drop_into_grid_is_conflict(self, client: AsyncClient, canvas_id):
        response = await client.post(
            f"/api/canvases/{canvas_id}/drop",
            json={
                "source": {"kind": "template", "template": {"type": "text"}},
                "target": {"kind": "zone", "parent_id": "g1", "index": 0},
            },
        )
        assert response.status_code == 409
        assert response.json()["detail"].startswith("GRID_SLOT")


class TestImportExport:
    async def test_export_strips_ids(self, client: AsyncClient, canvas_id):
        response = await client.get(f"/api/canvases/{canvas_id}/export")
        assert response.status_code == 200
        doc = response.json()
        assert doc["version"] == "1.0.0"
        assert '"id"' not in response.text

    async def test_import_round_trip(self, client: AsyncClient, canvas_id):
        exported = (await client.get(f"/api/canvases/{canvas_id}/export")).text
        await client.post("/api/canvases", json={"canvas_id": "copy"})
        response = await client.post("/api/canvases/copy/import", json={"document": exported})
        assert response.status_code == 200
        state = response.json()["state"]
        assert [b["type"] for b in state["blocks"]] == ["section", "grid"]
        assert [h["action"] for h in state["history"]] == ["Load Canvas"]

    async def test_malformed_import(self, client: AsyncClient, canvas_id):
        bad = json.dumps({"blocks": [{"type": "hologram"}]})
        response = await client.post(f"/api/canvases/{canvas_id}/import", json={"document": bad})
        assert response.status_code == 422
        assert response.json()["detail"].startswith("INVALID_DOCUMENT")
        state = (await client.get(f"/api/canvases/{canvas_id}")).json()
        assert [b["id"] for b in state["blocks"]] == ["s1", "g1"]


class TestPersistence:
    async def test_save_and_restore(self, client: AsyncClient, canvas_id, storage):
        response = await client.post(f"/api/canvases/{canvas_id}/save")
        assert response.status_code == 200
        assert response.json()["last_saved"] is not None
        assert canvas_id in storage.canvases

        await op(client, canvas_id, "block.delete", block_id="s1")
        response = await client.post(f"/api/canvases/{canvas_id}/restore")
        assert response.status_code == 200
        state = response.json()
        assert [b["id"] for b in state["blocks"]] == ["s1", "g1"]
        assert [h["action"] for h in state["history"]] == ["Session Restored"]

    async def test_restore_without_save(self, client: AsyncClient, canvas_id):
        response = await client.post(f"/api/canvases/{canvas_id}/restore")
        assert response.status_code == 404

    async def test_save_unknown_canvas(self, client: AsyncClient):
        assert (await client.post("/api/canvases/nope/save")).status_code == 404
