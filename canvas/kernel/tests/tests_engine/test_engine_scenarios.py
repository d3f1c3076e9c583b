"""
Canvas Engine — end-to-end editing scenarios

Scenarios A–F plus the engine-wide properties: id uniqueness, index
consistency after every edit, history round-trips, deletion cascades and
paste never aliasing.
"""

import pytest

from canvas.kernel.engine import CanvasEngine
from canvas.kernel.tests.factories import all_ids, make_id_factory
from canvas.kernel.tree import walk


def assert_consistent(engine: CanvasEngine):
    """Indices mirror the tree and history[index] equals the tree."""
    seen = list(walk(engine.blocks))
    assert len(seen) == len(engine.indices)
    for node, parent_id in seen:
        assert engine.indices.by_id[node["id"]] is node
        assert engine.indices.parent_of[node["id"]] == parent_id
    assert engine.history[engine.history_index].blocks == engine.blocks
    ids = all_ids(engine.blocks)
    assert len(ids) == len(set(ids))
    assert set(engine.selected_ids) <= set(ids)


# ============================================================================
# Scenarios
# ============================================================================


class TestScenarios:
    def test_a_add_to_empty_tree(self, engine):
        result = engine.add_block({"type": "text", "props": {"content": "hi"}})
        assert result.accepted
        assert len(engine.blocks) == 1
        assert engine.selected_ids == [result.block_id]
        assert len(engine.history) == 2
        assert engine.history_index == 1
        assert engine.history[1].action == "Add text"
        assert_consistent(engine)

    def test_b_add_into_section(self, engine):
        section_id = engine.add_block({"type": "section"}).block_id
        child_id = engine.add_block({"type": "text"}, section_id).block_id
        assert len(engine.get_block(section_id)["children"]) == 1
        assert engine.get_parent_id(child_id) == section_id
        assert_consistent(engine)

    def test_c_undo_to_start(self, engine):
        engine.add_block({"type": "text"})
        assert engine.undo().accepted
        assert engine.blocks == []
        assert engine.history_index == 0
        again = engine.undo()
        assert not again.accepted
        assert again.code == "NO_OP"
        assert engine.history_index == 0
        assert_consistent(engine)

    def test_d_move_last_to_front(self, engine):
        a, b, c = (engine.add_block({"type": "text"}).block_id for _ in range(3))
        assert engine.move_block(c, None, 0).accepted
        assert [blk["id"] for blk in engine.blocks] == [c, a, b]
        assert engine.history[-1].action == "Move Block"
        assert_consistent(engine)

    def test_e_delete_clears_selection(self, engine):
        block_id = engine.add_block({"type": "text"}).block_id
        engine.select_block(block_id)
        engine.delete_block(block_id)
        assert engine.selected_ids == []
        assert_consistent(engine)

    def test_f_bounded_history_evicts_initial_entry(self):
        engine = CanvasEngine(max_history_size=2, id_factory=make_id_factory())
        first = engine.add_block({"type": "text"}).block_id
        engine.add_block({"type": "text"})
        assert len(engine.history) == 2
        assert [b["id"] for b in engine.history[0].blocks] == [first]
        assert engine.history_index == 1


# ============================================================================
# Properties
# ============================================================================


class TestProperties:
    def test_ids_unique_across_add_duplicate_paste(self, engine):
        section = engine.add_block({"type": "section", "children": [{"type": "text"}, {"type": "image"}]}).block_id
        engine.duplicate_block(section)
        engine.copy_block(section)
        engine.paste_block()
        engine.paste_block(section, 0)
        assert_consistent(engine)

    def test_paste_never_aliases(self, engine):
        original = engine.add_block({"type": "row", "children": [{"type": "column"}]}).block_id
        engine.copy_block(original)
        first = engine.paste_block().block_id
        second = engine.paste_block().block_id
        subtree = {b["id"]: all_ids([b]) for b in engine.blocks}
        assert not set(subtree[first]) & set(subtree[second])
        assert not set(subtree[first]) & set(subtree[original])
        assert not set(subtree[second]) & set(subtree[original])

    def test_delete_cascades_to_descendants(self, page_engine):
        page_engine.select_block("t1")
        page_engine.select_block("t3", multi=True)
        page_engine.select_block("h1", multi=True)
        page_engine.set_hovered_block("t2")
        assert page_engine.delete_block("s1").accepted
        for gone in ("s1", "r1", "t1", "t2", "t3"):
            assert gone not in page_engine.indices
        assert page_engine.selected_ids == ["h1"]
        assert page_engine.hovered_block_id is None
        assert_consistent(page_engine)

    def test_undo_redo_round_trip(self, page_engine):
        before = page_engine.state()["blocks"]
        page_engine.move_block("h1", "s1", 0)
        after = page_engine.state()["blocks"]
        page_engine.undo()
        assert page_engine.blocks == before
        page_engine.redo()
        assert page_engine.blocks == after
        assert_consistent(page_engine)

    def test_live_tree_never_aliases_history(self, page_engine):
        page_engine.update_block("t1", {"props": {"content": "uno"}})
        page_engine.undo()
        page_engine.blocks[0]["children"][0]["children"][0]["props"]["content"] = "tampered"
        page_engine.redo()
        page_engine.undo()
        assert page_engine.get_block("t1")["props"]["content"] == "one"

    @pytest.mark.parametrize(
        "op",
        [
            lambda e: e.update_block("ghost", {"props": {}}),
            lambda e: e.delete_block("ghost"),
            lambda e: e.move_block("ghost", None, 0),
            lambda e: e.duplicate_block("ghost"),
            lambda e: e.move_block_up("ghost"),
            lambda e: e.copy_block("ghost"),
            lambda e: e.add_block({"type": "text"}, "ghost"),
            lambda e: e.select_block("ghost"),
        ],
    )
    def test_stale_references_are_reported_no_ops(self, page_engine, op):
        before = page_engine.state()
        result = op(page_engine)
        assert not result.accepted
        assert result.code in ("BLOCK_NOT_FOUND", "PARENT_NOT_FOUND")
        assert page_engine.state() == before
