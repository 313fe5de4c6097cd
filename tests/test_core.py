"""
Test suite for draftpatch.core — drafts, produce and patch generation.

Tests are organized around the guarantees produce makes:
    §1  Structural sharing
    §2  Non-mutation of the base
    §3  Patch generation
    §4  Patch round-trip
    §5  No-op recipes
    §6  Replacement returns
    §7  Draft lifetime
    §8  Draft API (dict / list behaviour)
"""

import copy
import logging
import sys
import os
import pytest

# Add parent to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from draftpatch.core import (
    Patch, PatchOp, NOTHING,
    produce, produce_with_patches,
    is_draft, original, current,
)
from draftpatch.errors import RecipeError
from draftpatch.replay import apply_patches


def nested_context():
    return {
        "foo": {"bar": {"baz": [1, 2, 3]}},
        "other": {"keep": [1, {"deep": True}]},
        "count": 0,
    }


# ═══════════════════════════════════════════════════════════════════
#  §1  STRUCTURAL SHARING
# ═══════════════════════════════════════════════════════════════════

class TestStructuralSharing:

    def test_untouched_sibling_is_shared(self):
        base = {"a": {"x": 1}, "b": {"y": 2}}
        nxt = produce(base, lambda d: d["a"].update(x=5))
        assert nxt == {"a": {"x": 5}, "b": {"y": 2}}
        assert nxt is not base
        assert nxt["a"] is not base["a"]
        assert nxt["b"] is base["b"]

    def test_deep_edit_copies_only_the_path(self):
        base = nested_context()

        def push(d):
            d["foo"]["bar"]["baz"].append(0)

        nxt = produce(base, push)
        assert nxt["foo"]["bar"]["baz"] == [1, 2, 3, 0]
        assert nxt["other"] is base["other"]
        assert nxt["foo"] is not base["foo"]
        assert nxt["foo"]["bar"] is not base["foo"]["bar"]

    def test_list_siblings_are_shared(self):
        base = {"items": [{"id": 1}, {"id": 2}, {"id": 3}]}

        def rename(d):
            d["items"][1]["id"] = 20

        nxt = produce(base, rename)
        assert nxt["items"] == [{"id": 1}, {"id": 20}, {"id": 3}]
        assert nxt["items"][0] is base["items"][0]
        assert nxt["items"][2] is base["items"][2]

    def test_reading_does_not_copy(self):
        base = nested_context()

        def touch(d):
            d["other"]["keep"][1]["deep"] = True
            d["foo"]["bar"]["baz"][0] = 10

        nxt = produce(base, touch)
        assert nxt["other"] is base["other"]


# ═══════════════════════════════════════════════════════════════════
#  §2  NON-MUTATION
# ═══════════════════════════════════════════════════════════════════

class TestNonMutation:

    def test_base_unchanged_after_edits(self):
        base = nested_context()
        snapshot = copy.deepcopy(base)

        def edit(d):
            d["foo"]["bar"]["baz"].append(4)
            d["other"]["keep"][1]["deep"] = False
            del d["count"]
            d["new"] = {"x": []}

        produce_with_patches(base, edit)
        assert base == snapshot

    def test_base_unchanged_when_recipe_raises(self):
        base = nested_context()
        snapshot = copy.deepcopy(base)

        def explode(d):
            d["foo"]["bar"]["baz"].append(4)
            d["count"] = 99
            raise ZeroDivisionError("boom")

        with pytest.raises(ZeroDivisionError, match="boom"):
            produce(base, explode)
        assert base == snapshot

    def test_two_produces_from_same_base_are_independent(self):
        base = {"count": 0}

        def increment(d):
            d["count"] += 1

        one = produce(base, increment)
        again = produce(base, increment)
        assert one == {"count": 1}
        assert again == {"count": 1}
        assert base == {"count": 0}


# ═══════════════════════════════════════════════════════════════════
#  §3  PATCH GENERATION
# ═══════════════════════════════════════════════════════════════════

class TestPatches:

    def test_scalar_change_is_single_replace(self):
        def edit(d):
            d["a"]["b"] = 2

        _, patches, inverse = produce_with_patches({"a": {"b": 1, "c": [1]}}, edit)
        assert patches == [Patch(PatchOp.REPLACE, ("a", "b"), 2)]
        assert inverse == [Patch(PatchOp.REPLACE, ("a", "b"), 1)]

    def test_add_key(self):
        def edit(d):
            d["b"] = 2

        _, patches, inverse = produce_with_patches({"a": 1}, edit)
        assert patches == [Patch(PatchOp.ADD, ("b",), 2)]
        assert inverse == [Patch(PatchOp.REMOVE, ("b",))]

    def test_remove_key(self):
        def edit(d):
            del d["a"]

        nxt, patches, inverse = produce_with_patches({"a": 1, "b": 2}, edit)
        assert nxt == {"b": 2}
        assert patches == [Patch(PatchOp.REMOVE, ("a",))]
        assert inverse == [Patch(PatchOp.ADD, ("a",), 1)]

    def test_list_append(self):
        def edit(d):
            d["l"].append(4)

        _, patches, inverse = produce_with_patches({"l": [1, 2, 3]}, edit)
        assert patches == [Patch(PatchOp.ADD, ("l", 3), 4)]
        assert inverse == [Patch(PatchOp.REMOVE, ("l", 3))]

    def test_list_shrink_removes_from_the_end(self):
        def edit(d):
            d.pop()
            d.pop()

        nxt, patches, inverse = produce_with_patches([1, 2, 3], edit)
        assert nxt == [1]
        assert patches == [Patch(PatchOp.REMOVE, (2,)), Patch(PatchOp.REMOVE, (1,))]
        assert inverse == [Patch(PatchOp.ADD, (1,), 2), Patch(PatchOp.ADD, (2,), 3)]

    def test_nested_list_element_edit_is_nested_patch(self):
        def edit(d):
            d["users"][1]["age"] = 31

        base = {"users": [{"age": 20}, {"age": 30}]}
        _, patches, _ = produce_with_patches(base, edit)
        assert patches == [Patch(PatchOp.REPLACE, ("users", 1, "age"), 31)]

    def test_patch_values_do_not_alias_result(self):
        def edit(d):
            d["obj"] = {"n": [1]}

        nxt, patches, _ = produce_with_patches({}, edit)
        assert patches[0].value == {"n": [1]}
        assert patches[0].value is not nxt["obj"]

    def test_patches_are_plain_data(self):
        def edit(d):
            d["x"] = [1, {"y": 2}]

        _, patches, _ = produce_with_patches({}, edit)
        assert patches[0].op.value == "add"
        assert patches[0].path == ("x",)
        assert not is_draft(patches[0].value)


# ═══════════════════════════════════════════════════════════════════
#  §4  PATCH ROUND-TRIP
# ═══════════════════════════════════════════════════════════════════

class TestRoundTrip:
    """apply_patches(base, patches) == next and apply_patches(next, inverse) == base."""

    def _assert_round_trip(self, base, recipe):
        snapshot = copy.deepcopy(base)
        nxt, patches, inverse = produce_with_patches(base, recipe)
        assert apply_patches(base, patches) == nxt
        assert apply_patches(nxt, inverse) == snapshot
        assert base == snapshot

    def test_mixed_edits(self):
        def edit(d):
            d["users"][0]["tags"].append("b")
            d["users"].append({"name": "Cara", "tags": []})
            d["count"] = 3
            del d["meta"]["v"]
            d["meta"]["w"] = 2

        base = {
            "users": [{"name": "Alice", "tags": ["a"]}, {"name": "Bob", "tags": []}],
            "count": 2,
            "meta": {"v": 1},
        }
        self._assert_round_trip(base, edit)

    def test_insert_at_front_shifts_elements(self):
        def edit(d):
            d["l"].insert(0, {"z": 0})
            d["l"][1]["a"] = 5

        self._assert_round_trip({"l": [{"a": 1}, {"b": 2}]}, edit)

    def test_moved_subtree(self):
        def edit(d):
            d["b"] = d["a"]["inner"]
            d["a"]["inner"]["x"] = 9

        self._assert_round_trip({"a": {"inner": {"x": 1}}, "b": None}, edit)

    def test_clear_and_refill(self):
        def edit(d):
            d["l"].clear()
            d["l"].extend([7, 8])

        self._assert_round_trip({"l": [1, 2, 3]}, edit)

    def test_replacement(self):
        self._assert_round_trip({"a": 1}, lambda d: {"b": 2})

    def test_draft_nested_in_new_value(self):
        def edit(d):
            d["wrapped"] = {"orig": d["a"], "list": [d["a"]]}
            d["a"]["x"] = 2

        nxt, _, _ = produce_with_patches({"a": {"x": 1}}, edit)
        assert nxt["wrapped"] == {"orig": {"x": 2}, "list": [{"x": 2}]}
        assert not is_draft(nxt["wrapped"]["orig"])
        self._assert_round_trip({"a": {"x": 1}}, edit)


# ═══════════════════════════════════════════════════════════════════
#  §5  NO-OP RECIPES
# ═══════════════════════════════════════════════════════════════════

class TestNoOp:

    def test_empty_recipe_returns_base(self):
        base = nested_context()
        nxt, patches, inverse = produce_with_patches(base, lambda d: None)
        assert nxt is base
        assert patches == []
        assert inverse == []

    def test_writing_identical_value_returns_base(self):
        def edit(d):
            d["count"] = 0
            d["foo"]["bar"] = d["foo"]["bar"]

        base = nested_context()
        nxt, patches, _ = produce_with_patches(base, edit)
        assert nxt is base
        assert patches == []

    def test_change_then_revert_returns_base(self):
        def edit(d):
            d["a"] = 2
            d["a"] = 1

        base = {"a": 1, "b": {"c": 1}}
        nxt, patches, _ = produce_with_patches(base, edit)
        assert nxt is base
        assert patches == []

    def test_equal_but_new_container_is_a_change(self):
        base = {"l": [1, 2], "k": 0}
        nxt, patches, _ = produce_with_patches(base, lambda d: d.update(l=[1, 2]))
        assert nxt is not base
        assert nxt == base
        assert nxt["l"] is not base["l"]
        assert patches == [Patch(PatchOp.REPLACE, ("l",), [1, 2])]

    def test_sorting_sorted_list_returns_base(self):
        base = {"l": [1, 2, 3]}
        assert produce(base, lambda d: d["l"].sort()) is base


# ═══════════════════════════════════════════════════════════════════
#  §6  REPLACEMENT RETURNS
# ═══════════════════════════════════════════════════════════════════

class TestReplacement:

    def test_return_new_value(self):
        base = {"a": 1}
        nxt, patches, inverse = produce_with_patches(base, lambda d: {"b": 2})
        assert nxt == {"b": 2}
        assert patches == [Patch(PatchOp.REPLACE, (), {"b": 2})]
        assert inverse == [Patch(PatchOp.REPLACE, (), {"a": 1})]

    def test_return_nothing_gives_none(self):
        assert produce({"a": 1}, lambda d: NOTHING) is None

    def test_scalar_base(self):
        nxt, patches, _ = produce_with_patches(5, lambda n: n + 1)
        assert nxt == 6
        assert patches == [Patch(PatchOp.REPLACE, (), 6)]

    def test_returning_the_draft_is_not_a_replacement(self):
        def edit(d):
            d["a"] = 2
            return d

        nxt, patches, _ = produce_with_patches({"a": 1}, edit)
        assert nxt == {"a": 2}
        assert patches == [Patch(PatchOp.REPLACE, ("a",), 2)]

    def test_returning_a_subtree_draft(self):
        base = {"foo": {"x": [1]}, "bar": 1}
        nxt = produce(base, lambda d: d["foo"])
        assert nxt is base["foo"]

    def test_replacement_wins_over_mutation(self, caplog):
        def edit(d):
            d["a"] = 99
            return {"replaced": True}

        with caplog.at_level(logging.WARNING, logger="draftpatch.core"):
            nxt = produce({"a": 1}, edit)
        assert nxt == {"replaced": True}
        assert "recipe_replaced_modified_draft" in caplog.text


# ═══════════════════════════════════════════════════════════════════
#  §7  DRAFT LIFETIME
# ═══════════════════════════════════════════════════════════════════

class TestDraftLifetime:

    def test_leaked_draft_is_revoked(self):
        leaked = []
        produce({"a": {"b": 1}}, lambda d: leaked.append(d["a"]))
        with pytest.raises(RecipeError):
            leaked[0]["b"]
        with pytest.raises(RecipeError):
            leaked[0]["b"] = 2

    def test_drafts_revoked_after_recipe_raises(self):
        leaked = []

        def explode(d):
            leaked.append(d)
            raise ValueError("no")

        with pytest.raises(ValueError):
            produce({"a": 1}, explode)
        with pytest.raises(RecipeError):
            len(leaked[0])

    def test_is_draft_original_current(self):
        base = {"a": {"b": 1}}
        seen = {}

        def inspect(d):
            d["a"]["b"] = 2
            seen["is_draft"] = is_draft(d)
            seen["original"] = original(d)
            seen["current"] = current(d)

        nxt = produce(base, inspect)
        assert seen["is_draft"] is True
        assert seen["original"] is base
        assert seen["current"] == {"a": {"b": 2}}
        assert not is_draft(seen["current"]["a"])
        assert not is_draft(nxt)

    def test_draft_stored_inside_itself_raises(self):
        base = {"a": {"x": 1}}
        with pytest.raises(RecipeError, match="cyclic"):
            produce(base, lambda d: d["a"].__setitem__("self", d["a"]))
        with pytest.raises(RecipeError, match="cyclic"):
            produce(base, lambda d: d["a"].__setitem__("root", d))
        assert base == {"a": {"x": 1}}

    def test_same_draft_in_two_places_is_shared(self):
        def edit(d):
            d["a"]["x"] = 2
            d["b"] = d["a"]

        nxt = produce({"a": {"x": 1}}, edit)
        assert nxt == {"a": {"x": 2}, "b": {"x": 2}}
        assert nxt["a"] is nxt["b"]

    def test_original_rejects_plain_values(self):
        with pytest.raises(TypeError):
            original({"a": 1})


# ═══════════════════════════════════════════════════════════════════
#  §8  DRAFT API
# ═══════════════════════════════════════════════════════════════════

class TestDraftDict:

    def test_mapping_reads(self):
        seen = {}

        def inspect(d):
            seen["keys"] = list(d.keys())
            seen["len"] = len(d)
            seen["in"] = "a" in d
            seen["get"] = d.get("missing", "default")
            seen["eq"] = d == {"a": 1, "b": {"c": 2}}

        produce({"a": 1, "b": {"c": 2}}, inspect)
        assert seen == {"keys": ["a", "b"], "len": 2, "in": True,
                        "get": "default", "eq": True}

    def test_mapping_writes(self):
        def edit(d):
            assert d.pop("a") == 1
            d.setdefault("z", 26)
            d.update({"y": 25}, x=24)

        assert produce({"a": 1}, edit) == {"z": 26, "y": 25, "x": 24}

    def test_missing_key_raises_key_error(self):
        def edit(d):
            del d["nope"]

        with pytest.raises(KeyError):
            produce({"a": 1}, edit)

    def test_clear(self):
        assert produce({"a": 1, "b": 2}, lambda d: d.clear()) == {}


class TestDraftList:

    def test_sequence_reads(self):
        seen = {}

        def inspect(d):
            seen["len"] = len(d)
            seen["last"] = d[-1]
            seen["slice"] = d[1:]
            seen["index"] = d.index(3)
            seen["eq"] = d == [1, 2, 3]

        produce([1, 2, 3], inspect)
        assert seen == {"len": 3, "last": 3, "slice": [2, 3], "index": 2, "eq": True}

    def test_sequence_writes(self):
        def edit(d):
            d["l"] += [4]
            d["l"].remove(1)
            d["l"].reverse()
            d["l"][0] = 40

        assert produce({"l": [1, 2, 3]}, edit) == {"l": [40, 3, 2]}

    def test_slice_assignment_and_deletion(self):
        def edit(d):
            d[1:3] = ["x"]
            del d[0]

        assert produce([1, 2, 3, 4], edit) == ["x", 4]

    def test_sort_with_key_keeps_element_identity(self):
        base = [{"n": 3}, {"n": 1}, {"n": 2}]
        nxt = produce(base, lambda d: d.sort(key=lambda item: item["n"]))
        assert nxt == [{"n": 1}, {"n": 2}, {"n": 3}]
        assert nxt[0] is base[1]
        assert nxt[2] is base[0]

    def test_index_error(self):
        def edit(d):
            d[10] = 1

        with pytest.raises(IndexError):
            produce([1], edit)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
