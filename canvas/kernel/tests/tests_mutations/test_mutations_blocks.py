"""
Canvas Mutations — add, update, delete, duplicate, shift

Every mutation is pure: the input forest is never modified and a rejected
mutation hands back the input forest unchanged.
"""

import copy

import pytest

from canvas.kernel import mutations
from canvas.kernel.tests.factories import all_ids, make_id_factory
from canvas.kernel.tree import build_indices


@pytest.fixture
def frozen(page):
    return copy.deepcopy(page)


def ids_at(blocks):
    return [b and b["id"] for b in blocks]


# ============================================================================
# add_block
# ============================================================================


class TestAddBlock:
    def test_root_append(self, page, page_indices, frozen):
        result = mutations.add_block(page, page_indices, {"type": "text"}, id_factory=make_id_factory("n"))
        assert result.accepted
        assert result.block_id == "n1"
        assert ids_at(result.blocks) == ["s1", "g1", "h1", "n1"]
        assert page == frozen

    def test_root_index_past_end_is_clamped(self, page, page_indices):
        result = mutations.add_block(page, page_indices, {"type": "text"}, None, 10, make_id_factory("n"))
        assert ids_at(result.blocks) == ["s1", "g1", "h1", "n1"]

    def test_template_children_get_fresh_ids(self, page, page_indices):
        template = {"type": "row", "children": [{"type": "column"}, {"type": "column"}]}
        result = mutations.add_block(page, page_indices, template, "s1", 0, make_id_factory("n"))
        assert result.accepted
        assert ids_at(result.blocks[0]["children"]) == ["n1", "r1", "t3"]
        assert ids_at(result.blocks[0]["children"][0]["children"]) == ["n2", "n3"]
        assert "id" not in template

    def test_child_index_past_end_pads(self, page, page_indices):
        result = mutations.add_block(page, page_indices, {"type": "text"}, "r1", 4, make_id_factory("n"))
        assert ids_at(result.blocks[0]["children"][0]["children"]) == ["t1", "t2", None, None, "n1"]

    def test_unknown_parent(self, page, page_indices, frozen):
        result = mutations.add_block(page, page_indices, {"type": "text"}, "ghost")
        assert not result.accepted
        assert result.reason.startswith("PARENT_NOT_FOUND")
        assert result.blocks is page
        assert page == frozen

    def test_unknown_type(self, page, page_indices):
        result = mutations.add_block(page, page_indices, {"type": "hologram"})
        assert not result.accepted
        assert result.reason.startswith("UNKNOWN_BLOCK_TYPE")


# ============================================================================
# update_block / delete_block
# ============================================================================


class TestUpdateBlock:
    def test_shallow_merge(self, page, page_indices, frozen):
        result = mutations.update_block(page, page_indices, "t1", {"props": {"content": "uno", "align": "left"}})
        assert result.accepted
        updated = build_indices(result.blocks).by_id["t1"]
        assert updated["props"] == {"content": "uno", "align": "left"}
        assert page == frozen

    def test_id_and_children_are_protected(self, page, page_indices):
        result = mutations.update_block(page, page_indices, "r1", {"id": "x", "children": []})
        updated = build_indices(result.blocks).by_id["r1"]
        assert ids_at(updated["children"]) == ["t1", "t2"]

    def test_unknown_id(self, page, page_indices):
        result = mutations.update_block(page, page_indices, "ghost", {"props": {}})
        assert result.reason.startswith("BLOCK_NOT_FOUND")

    def test_props_must_be_mapping(self, page, page_indices):
        result = mutations.update_block(page, page_indices, "t1", {"props": "big"})
        assert result.reason.startswith("INVALID_PROPS")


class TestDeleteBlock:
    def test_removes_subtree(self, page, page_indices):
        result = mutations.delete_block(page, page_indices, "s1")
        assert result.accepted
        assert all_ids(result.blocks) == ["g1", "c1", "c3", "h1"]

    def test_nested_delete(self, page, page_indices):
        result = mutations.delete_block(page, page_indices, "t2")
        assert "t2" not in all_ids(result.blocks)
        assert ids_at(result.blocks[0]["children"][0]["children"]) == ["t1"]

    def test_unknown_id(self, page, page_indices):
        result = mutations.delete_block(page, page_indices, "ghost")
        assert not result.accepted
        assert result.blocks is page


# ============================================================================
# duplicate_block / shift_block
# ============================================================================


class TestDuplicateBlock:
    def test_clone_inserted_after_original(self, page, page_indices):
        result = mutations.duplicate_block(page, page_indices, "r1", make_id_factory("n"))
        assert result.accepted
        assert result.block_id == "n1"
        section = result.blocks[0]
        assert ids_at(section["children"]) == ["r1", "n1", "t3"]
        assert ids_at(section["children"][1]["children"]) == ["n2", "n3"]

    def test_ids_stay_unique(self, page, page_indices):
        result = mutations.duplicate_block(page, page_indices, "s1", make_id_factory("n"))
        ids = all_ids(result.blocks)
        assert len(ids) == len(set(ids))

    def test_unknown_id(self, page, page_indices):
        assert not mutations.duplicate_block(page, page_indices, "ghost").accepted


class TestShiftBlock:
    def test_move_up(self, page, page_indices):
        result = mutations.shift_block(page, page_indices, "t2", -1)
        assert ids_at(result.blocks[0]["children"][0]["children"]) == ["t2", "t1"]

    def test_move_down_at_root(self, page, page_indices):
        result = mutations.shift_block(page, page_indices, "s1", 1)
        assert ids_at(result.blocks) == ["g1", "s1", "h1"]

    def test_boundaries_are_no_ops(self, page, page_indices):
        first = mutations.shift_block(page, page_indices, "t1", -1)
        last = mutations.shift_block(page, page_indices, "h1", 1)
        assert first.reason.startswith("NO_OP")
        assert last.reason.startswith("NO_OP")
        assert first.blocks is page


# ============================================================================
# Template checks
# ============================================================================


class TestTemplateChecks:
    @pytest.mark.parametrize(
        "template",
        [
            "text",
            {"type": "section", "children": "abc"},
            {"type": "section", "children": [{"type": "hologram"}]},
            {"type": "text", "props": ["big"]},
        ],
    )
    def test_malformed_template_rejected(self, page, page_indices, frozen, template):
        result = mutations.add_block(page, page_indices, template, "s1", 0)
        assert result.reason.startswith("INVALID_TEMPLATE")
        assert result.blocks is page
        assert page == frozen

    def test_unhashable_type_is_unknown(self, page, page_indices):
        result = mutations.add_block(page, page_indices, {"type": ["text"]})
        assert result.reason.startswith("UNKNOWN_BLOCK_TYPE")

    def test_empty_slots_in_template_are_kept(self, page, page_indices):
        template = {"type": "grid", "children": [None, {"type": "image"}]}
        result = mutations.add_block(page, page_indices, template, id_factory=make_id_factory("n"))
        assert ids_at(result.blocks[-1]["children"]) == [None, "n2"]
