"""
draftpatch.core — Copy-on-write drafts and patch generation
============================================================

FRAMEWORK
═════════

§1  THE PROBLEM
───────────────

A state machine carries a context between transitions.  Every context
that has ever been observed must stay exactly as it was: older states
are kept around, compared against, and re-transitioned from.  At the
same time, the code that computes the next context is much easier to
write as a sequence of in-place edits:

    ctx["count"] += 1
    ctx["foo"]["bar"]["baz"].append(0)

This module reconciles the two.  A recipe receives a DRAFT: a mutable
view over the context.  Edits on the draft are recorded against a
lazily created shallow copy of each container they touch.  When the
recipe returns, the draft tree is FINALIZED into a new plain value.


§2  STRUCTURAL SHARING
──────────────────────

Finalization rebuilds only the containers that were modified, plus
their ancestors.  Every other subtree is carried over BY REFERENCE:

    base = {"a": {"x": 1}, "b": {"y": 2}}
    nxt  = produce(base, lambda d: d["a"].update(x=5))

    nxt is not base
    nxt["a"] is not base["a"]
    nxt["b"] is base["b"]          # untouched branch, same object

A recipe that changes nothing (or writes back identical values)
returns `base` itself, so `nxt is base` is a valid no-op check.


§3  PATCHES
───────────

While finalizing, every modified container is compared with its base
and the difference is recorded as an ordered list of Patch records:

    Patch(ADD,     path, value)   new key / new list slot
    Patch(REMOVE,  path)          key deleted / list slot removed
    Patch(REPLACE, path, value)   existing key / slot overwritten

Two lists come out of every produce:

    patches          base  → next
    inverse_patches  next  → base

A scalar change yields a single REPLACE at the scalar's path, never a
replacement of the whole enclosing subtree.  Lists are compared
positionally: changed slots in the common prefix become REPLACE (or
nested patches when the slot still holds a draft of its original
element), growth becomes ADD at each new index, and shrinkage becomes
REMOVE from the highest index down.

Patches are plain data.  Container values are deep-copied into the
patch, so a patch never aliases the snapshot it was computed from.


§4  DRAFT LIFETIME
──────────────────

Drafts are only valid during the recipe call.  Once produce returns
(or the recipe raises), every draft created for that call is revoked,
and touching one raises RecipeError.

Only exact `dict` and `list` instances are drafted.  Anything else is
treated as an immutable leaf.

License: MIT
"""

import copy
import logging
from collections.abc import MutableMapping, MutableSequence, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

from .errors import RecipeError

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  PATCH RECORDS
# ═══════════════════════════════════════════════════════════════════

class PatchOp(Enum):
    """Kinds of structural edit."""
    ADD = "add"
    REMOVE = "remove"
    REPLACE = "replace"


PathKey = Union[int, str]


@dataclass(frozen=True, slots=True)
class Patch:
    """
    A single structural edit.

    `path` runs from the root of the value to the edited slot.  `value`
    is meaningful for ADD and REPLACE only.
    """
    op: PatchOp
    path: tuple[PathKey, ...]
    value: Any = None

    def __post_init__(self):
        object.__setattr__(self, "op", PatchOp(self.op))
        object.__setattr__(self, "path", tuple(self.path))

    def __repr__(self) -> str:
        path_str = "/".join(str(p) for p in self.path) or "(root)"
        if self.op is PatchOp.REMOVE:
            return f"REMOVE at {path_str}"
        return f"{self.op.name} at {path_str}: {self.value!r}"


@dataclass(frozen=True, eq=False)
class PatchEvent(Mapping):
    """
    An event whose payload is a pre-computed patch list.

    Readable both as attributes and as a plain mapping with the keys
    "type", "patches" and "inversePatches".  Equality is mapping
    equality, so an event equals its plain-dict form.  Events are not
    hashable.
    """
    type: str
    patches: tuple[Patch, ...] = ()
    inverse_patches: tuple[Patch, ...] = ()

    _KEYS = ("type", "patches", "inversePatches")

    def __post_init__(self):
        object.__setattr__(self, "patches", tuple(self.patches))
        object.__setattr__(self, "inverse_patches", tuple(self.inverse_patches))

    def __getitem__(self, key: str) -> Any:
        if key == "type":
            return self.type
        if key == "patches":
            return self.patches
        if key == "inversePatches":
            return self.inverse_patches
        raise KeyError(key)

    def __iter__(self):
        return iter(self._KEYS)

    def __len__(self) -> int:
        return len(self._KEYS)

    def __repr__(self) -> str:
        return f"PatchEvent({self.type!r}, patches={len(self.patches)})"


class _Nothing:
    """Recipe return value meaning "replace the whole value with None"."""
    __slots__ = ()

    def __repr__(self) -> str:
        return "NOTHING"


NOTHING = _Nothing()


# ═══════════════════════════════════════════════════════════════════
#  DRAFT STATE
# ═══════════════════════════════════════════════════════════════════

def _is_draftable(value: Any) -> bool:
    return type(value) is dict or type(value) is list


class _DraftState:
    """Change-tracking metadata for one drafted container."""
    __slots__ = ("base", "copy", "parent", "modified", "finalizing",
                 "finalized", "result", "revoked")

    def __init__(self, base, parent: Optional["_DraftState"]):
        self.base = base
        self.copy = None
        self.parent = parent
        self.modified = False
        self.finalizing = False
        self.finalized = False
        self.result = None
        self.revoked = False

    def source(self):
        return self.copy if self.copy is not None else self.base

    def prepare_copy(self) -> None:
        if self.copy is None:
            self.copy = dict(self.base) if type(self.base) is dict else list(self.base)

    def mark_changed(self) -> None:
        state = self
        while state is not None and not state.modified:
            state.modified = True
            state.prepare_copy()
            state = state.parent


def _same(existing: Any, value: Any) -> bool:
    """True when writing `value` over `existing` would change nothing."""
    if existing is value:
        return True
    # Equal containers still count as a write; finalize compares entries by identity.
    if isinstance(existing, (Draft, dict, list)) or isinstance(value, (Draft, dict, list)):
        return False
    return type(existing) is type(value) and existing == value


# ═══════════════════════════════════════════════════════════════════
#  DRAFTS
# ═══════════════════════════════════════════════════════════════════

class Draft:
    """Base class for mutable views handed to recipes."""
    __slots__ = ("_state", "_scope")

    def __init__(self, state: _DraftState, scope: list):
        self._state = state
        self._scope = scope

    def _live(self) -> _DraftState:
        state = self._state
        if state.revoked:
            raise RecipeError("draft used after its recipe finished")
        return state

    def _child(self, key, value):
        if isinstance(value, Draft) or not _is_draftable(value):
            return value
        state = self._state
        child = _create_draft(value, state, self._scope)
        state.prepare_copy()
        state.copy[key] = child
        return child

    def __repr__(self) -> str:
        if self._state.revoked:
            return f"<revoked {type(self).__name__}>"
        return f"{type(self).__name__}({current(self)!r})"


class DraftDict(Draft, MutableMapping):
    """Draft over a dict."""
    __slots__ = ()

    def __getitem__(self, key):
        value = self._live().source()[key]
        return self._child(key, value)

    def __setitem__(self, key, value):
        state = self._live()
        source = state.source()
        if key in source and _same(source[key], value):
            return
        state.prepare_copy()
        state.copy[key] = value
        state.mark_changed()

    def __delitem__(self, key):
        state = self._live()
        if key not in state.source():
            raise KeyError(key)
        state.prepare_copy()
        del state.copy[key]
        state.mark_changed()

    def __contains__(self, key) -> bool:
        return key in self._live().source()

    def __iter__(self):
        return iter(list(self._live().source()))

    def __len__(self) -> int:
        return len(self._live().source())

    def clear(self) -> None:
        state = self._live()
        if state.source():
            state.prepare_copy()
            state.copy.clear()
            state.mark_changed()


class DraftList(Draft, MutableSequence):
    """Draft over a list."""
    __slots__ = ()

    __hash__ = None

    def __getitem__(self, index):
        source = self._live().source()
        if isinstance(index, slice):
            return [self[i] for i in range(*index.indices(len(source)))]
        value = source[index]
        if index < 0:
            index += len(source)
        return self._child(index, value)

    def __setitem__(self, index, value):
        state = self._live()
        if isinstance(index, slice):
            state.prepare_copy()
            state.copy[index] = value
            state.mark_changed()
            return
        if _same(state.source()[index], value):
            return
        state.prepare_copy()
        state.copy[index] = value
        state.mark_changed()

    def __delitem__(self, index):
        state = self._live()
        source = state.source()
        if isinstance(index, slice):
            if not range(*index.indices(len(source))):
                return
        else:
            source[index]  # IndexError before copying
        state.prepare_copy()
        del state.copy[index]
        state.mark_changed()

    def __len__(self) -> int:
        return len(self._live().source())

    def __eq__(self, other) -> bool:
        if isinstance(other, (list, DraftList)):
            return list(self) == list(other)
        return NotImplemented

    def insert(self, index, value) -> None:
        state = self._live()
        state.prepare_copy()
        state.copy.insert(index, value)
        state.mark_changed()

    def clear(self) -> None:
        state = self._live()
        if state.source():
            state.prepare_copy()
            state.copy.clear()
            state.mark_changed()

    def reverse(self) -> None:
        state = self._live()
        if len(state.source()) > 1:
            state.prepare_copy()
            state.copy.reverse()
            state.mark_changed()

    def sort(self, *, key=None, reverse: bool = False) -> None:
        """Sort in place.  `key` receives drafts for container elements."""
        state = self._live()
        if len(state.source()) > 1:
            entries = [self[i] for i in range(len(state.source()))]
            entries.sort(key=key, reverse=reverse)
            state.prepare_copy()
            state.copy[:] = entries
            state.mark_changed()


def _create_draft(value, parent: Optional[_DraftState], scope: list) -> Draft:
    state = _DraftState(value, parent)
    scope.append(state)
    cls = DraftDict if type(value) is dict else DraftList
    return cls(state, scope)


def is_draft(value: Any) -> bool:
    """True if `value` is a draft handed out by produce."""
    return isinstance(value, Draft)


def original(draft: Draft) -> Any:
    """The unmodified base value behind a draft."""
    if not isinstance(draft, Draft):
        raise TypeError(f"original() expects a draft, got {type(draft).__name__}")
    return draft._live().base


def current(value: Any) -> Any:
    """
    A plain snapshot of a draft's present state.

    Nested drafts are snapshotted recursively; plain values are
    returned as they are.  The draft itself is left untouched.
    """
    if not isinstance(value, Draft):
        return value
    source = value._live().source()
    if type(source) is dict:
        return {k: current(v) for k, v in source.items()}
    return [current(v) for v in source]


# ═══════════════════════════════════════════════════════════════════
#  FINALIZATION
# ═══════════════════════════════════════════════════════════════════

def _patch_value(value: Any) -> Any:
    return copy.deepcopy(value) if _is_draftable(value) else value


def _record(patches: Optional[list], op: PatchOp, path: tuple, value: Any = None) -> None:
    if patches is not None:
        patches.append(Patch(op, path, _patch_value(value)))


def _holds(base, key, value) -> bool:
    if type(base) is dict:
        return key in base and base[key] is value
    return 0 <= key < len(base) and base[key] is value


def _finalize_fresh(value: Any) -> Any:
    """Replace drafts nested inside a newly assigned value."""
    if isinstance(value, Draft):
        return _finalize(value._state, None, None, None)
    if type(value) is dict:
        for k, v in value.items():
            if isinstance(v, (Draft, dict, list)):
                new = _finalize_fresh(v)
                if new is not v:
                    value[k] = new
    elif type(value) is list:
        for i, v in enumerate(value):
            if isinstance(v, (Draft, dict, list)):
                new = _finalize_fresh(v)
                if new is not v:
                    value[i] = new
    return value


def _finalize_entry(state: _DraftState, key, entry, path, patches, inverse):
    """Finalize one slot of a modified container.

    Returns (value, nested) where `nested` means patches for this slot
    were emitted below it and no REPLACE is needed at `path + (key,)`.
    """
    if isinstance(entry, Draft):
        child = entry._state
        if not child.finalized and child.parent is state and _holds(state.base, key, child.base):
            return _finalize(child, path + (key,) if path is not None else None,
                             patches, inverse), True
        return _finalize(child, None, None, None), False
    return _finalize_fresh(entry), False


def _finalize(state: _DraftState, path: Optional[tuple],
              patches: Optional[list], inverse: Optional[list]) -> Any:
    if state.finalized:
        return state.result
    if state.finalizing:
        raise RecipeError("cyclic draft: a draft was stored inside itself")
    if not state.modified:
        state.result = state.base
        state.finalized = True
        return state.base

    state.finalizing = True
    if type(state.base) is dict:
        result = _finalize_dict(state, path, patches, inverse)
    else:
        result = _finalize_list(state, path, patches, inverse)
    state.result = result
    state.finalized = True
    return result


def _finalize_dict(state, path, patches, inverse):
    base = state.base
    result = {}
    changed = len(base) != len(state.copy)

    for key, entry in list(state.copy.items()):
        value, nested = _finalize_entry(state, key, entry, path, patches, inverse)
        result[key] = value
        if key not in base:
            changed = True
            if path is not None:
                _record(patches, PatchOp.ADD, path + (key,), value)
                _record(inverse, PatchOp.REMOVE, path + (key,))
        elif value is not base[key]:
            changed = True
            if path is not None and not nested:
                _record(patches, PatchOp.REPLACE, path + (key,), value)
                _record(inverse, PatchOp.REPLACE, path + (key,), base[key])

    for key in base:
        if key not in result:
            changed = True
            if path is not None:
                _record(patches, PatchOp.REMOVE, path + (key,))
                _record(inverse, PatchOp.ADD, path + (key,), base[key])

    return result if changed else base


def _finalize_list(state, path, patches, inverse):
    base = state.base
    result = []
    changed = len(base) != len(state.copy)

    for index, entry in enumerate(list(state.copy)):
        value, nested = _finalize_entry(state, index, entry, path, patches, inverse)
        result.append(value)
        if index < len(base) and value is not base[index]:
            changed = True
            if path is not None and not nested:
                _record(patches, PatchOp.REPLACE, path + (index,), value)
                _record(inverse, PatchOp.REPLACE, path + (index,), base[index])

    if path is not None:
        # Growth: forward adds ascending, inverse removes descending.
        for index in range(len(base), len(result)):
            _record(patches, PatchOp.ADD, path + (index,), result[index])
        for index in range(len(result) - 1, len(base) - 1, -1):
            _record(inverse, PatchOp.REMOVE, path + (index,))
        # Shrinkage: forward removes descending, inverse adds ascending.
        for index in range(len(base) - 1, len(result) - 1, -1):
            _record(patches, PatchOp.REMOVE, path + (index,))
        for index in range(len(result), len(base)):
            _record(inverse, PatchOp.ADD, path + (index,), base[index])

    return result if changed else base


# ═══════════════════════════════════════════════════════════════════
#  PRODUCE
# ═══════════════════════════════════════════════════════════════════

Recipe = Callable[[Any], Any]


def produce_with_patches(base: Any, recipe: Recipe) -> tuple[Any, list[Patch], list[Patch]]:
    """
    Run `recipe` against a draft of `base`.

    Returns (next, patches, inverse_patches).

    The recipe either edits the draft in place and returns None (or
    the draft itself), or returns a replacement value.  Returning
    NOTHING replaces the value with None.  If the recipe both edits
    the draft and returns a replacement, the replacement wins.

    Exceptions raised by the recipe propagate unchanged; `base` is
    never modified either way.
    """
    patches: list[Patch] = []
    inverse: list[Patch] = []
    result = _produce(base, recipe, patches, inverse)
    return result, patches, inverse


def produce(base: Any, recipe: Recipe) -> Any:
    """Run `recipe` against a draft of `base` and return the next value."""
    return _produce(base, recipe, None, None)


def _produce(base: Any, recipe: Recipe,
             patches: Optional[list], inverse: Optional[list]) -> Any:
    """Run the recipe; patches are only recorded when lists are given."""
    scope: list[_DraftState] = []
    root = _create_draft(base, None, scope) if _is_draftable(base) else base

    try:
        returned = recipe(root)

        if returned is None or (returned is root and isinstance(root, Draft)):
            if isinstance(root, Draft):
                result = _finalize(root._state, (), patches, inverse)
            else:
                result = base
        else:
            if isinstance(root, Draft) and root._state.modified:
                logger.warning("recipe_replaced_modified_draft type=%s",
                               type(returned).__name__)
            result = None if returned is NOTHING else _finalize_fresh(returned)
            if result is not base:
                _record(patches, PatchOp.REPLACE, (), result)
                _record(inverse, PatchOp.REPLACE, (), base)
    finally:
        for state in scope:
            state.revoked = True

    logger.debug("produce_finished changed=%s patches=%s",
                 result is not base, len(patches) if patches is not None else "-")
    return result
