"""
draftpatch.replay — Apply patch lists against a live value.

A patch list is computed against one snapshot and may be replayed
against another: the context a machine holds when the event finally
arrives.  Patches are therefore applied one at a time, each addressed
by path directly against the live value, never against a cached copy
of the snapshot it came from.

ALGORITHM:
    For each patch, in order:
        1. Walk the path from the root of the live value
        2. Copy only the containers along that path
        3. Splice the edit into the copied parent
        4. If the path does not resolve → CONFLICT
           • SKIP  policy: record it, leave the value as it was, continue
           • ABORT policy: raise PatchConflictError

Consequences:
    • Two patch lists built from the SAME base but touching DIFFERENT
      paths compose: replaying A then B keeps both edits.
    • Patches touching the SAME path apply in arrival order, last
      write wins.
    • Untouched subtrees keep their identity; the input is never
      modified.

Resolution rules per container:
    dict   add/replace set the key (the parent must resolve);
           remove requires the key.
    list   add inserts at 0 ≤ i ≤ len ("-" appends);
           replace/remove require 0 ≤ i < len.
    root   replace/add swap the whole value; remove is a conflict.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Union

from .core import Patch, PatchOp
from .errors import PatchConflictError
from .formats import coerce_patch

logger = logging.getLogger(__name__)


class ConflictPolicy(Enum):
    """What to do with a patch whose path no longer resolves."""
    SKIP = "skip"
    ABORT = "abort"


DEFAULT_CONFLICT_POLICY = ConflictPolicy.SKIP


@dataclass
class PatchConflict:
    """A patch that could not be applied to the live value."""
    patch: Patch
    index: int
    reason: str

    def __repr__(self) -> str:
        path_str = "/".join(str(p) for p in self.patch.path) or "(root)"
        return f"CONFLICT at {path_str}: {self.patch.op.value} #{self.index} ({self.reason})"


@dataclass
class ReplayResult:
    """Result of replaying a patch list."""
    value: Any
    applied: int
    conflicts: list[PatchConflict] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return len(self.conflicts) > 0

    def __repr__(self) -> str:
        if self.has_conflicts:
            return f"ReplayResult(applied={self.applied}, CONFLICTS: {len(self.conflicts)})"
        return f"ReplayResult(applied={self.applied})"


class _Unresolved(Exception):
    """Internal: the patch path does not resolve."""


def replay_patches(
    base: Any,
    patches: Iterable[Union[Patch, dict]],
    *,
    on_conflict: Union[ConflictPolicy, str] = DEFAULT_CONFLICT_POLICY,
) -> ReplayResult:
    """
    Apply `patches` to `base` in order.

    Returns a ReplayResult with the new value, the number of patches
    applied and the conflicts that were skipped.  Under
    ConflictPolicy.ABORT the first conflict raises PatchConflictError
    instead.
    """
    policy = ConflictPolicy(on_conflict)
    value = base
    applied = 0
    conflicts: list[PatchConflict] = []

    for index, entry in enumerate(patches):
        patch = coerce_patch(entry)
        try:
            value = _apply(value, patch.path, patch.op, patch.value)
        except _Unresolved as exc:
            conflict = PatchConflict(patch=patch, index=index, reason=str(exc))
            if policy is ConflictPolicy.ABORT:
                raise PatchConflictError(conflict) from None
            logger.warning("patch_conflict_skipped op=%s path=%s reason=%s",
                           patch.op.value, list(patch.path), exc)
            conflicts.append(conflict)
            continue
        applied += 1

    logger.debug("replay_finished applied=%d conflicts=%d", applied, len(conflicts))
    return ReplayResult(value=value, applied=applied, conflicts=conflicts)


def apply_patches(
    base: Any,
    patches: Iterable[Union[Patch, dict]],
    *,
    on_conflict: Union[ConflictPolicy, str] = DEFAULT_CONFLICT_POLICY,
) -> Any:
    """Apply `patches` to `base` and return the resulting value."""
    return replay_patches(base, patches, on_conflict=on_conflict).value


# ═══════════════════════════════════════════════════════════════════
#  PATH WALKING
# ═══════════════════════════════════════════════════════════════════

def _index(node: list, key, *, allow_end: bool) -> int:
    """Resolve a list index, accepting numeric strings and "-"."""
    if allow_end and key == "-":
        return len(node)
    if isinstance(key, str) and key.isascii() and key.isdigit():
        key = int(key)
    if not isinstance(key, int) or isinstance(key, bool):
        raise _Unresolved(f"{key!r} is not a list index")
    limit = len(node) if allow_end else len(node) - 1
    if not 0 <= key <= limit:
        raise _Unresolved(f"index {key} out of range for length {len(node)}")
    return key


def _apply(node: Any, path: tuple, op: PatchOp, value: Any) -> Any:
    if not path:
        if op is PatchOp.REMOVE:
            raise _Unresolved("cannot remove the root")
        return value

    key = path[0]
    if len(path) == 1:
        return _apply_leaf(node, key, op, value)

    if type(node) is dict:
        if key not in node:
            raise _Unresolved(f"missing key {key!r}")
        child = node[key]
        new_child = _apply(child, path[1:], op, value)
        if new_child is child:
            return node
        result = dict(node)
        result[key] = new_child
        return result

    if type(node) is list:
        index = _index(node, key, allow_end=False)
        child = node[index]
        new_child = _apply(child, path[1:], op, value)
        if new_child is child:
            return node
        result = list(node)
        result[index] = new_child
        return result

    raise _Unresolved(f"cannot descend into {type(node).__name__} at {key!r}")


def _apply_leaf(node: Any, key, op: PatchOp, value: Any) -> Any:
    if type(node) is dict:
        if op is PatchOp.REMOVE:
            if key not in node:
                raise _Unresolved(f"missing key {key!r}")
            result = dict(node)
            del result[key]
            return result
        if key in node and node[key] is value:
            return node
        result = dict(node)
        result[key] = value
        return result

    if type(node) is list:
        if op is PatchOp.ADD:
            index = _index(node, key, allow_end=True)
            result = list(node)
            result.insert(index, value)
            return result
        index = _index(node, key, allow_end=False)
        result = list(node)
        if op is PatchOp.REMOVE:
            del result[index]
        else:
            if node[index] is value:
                return node
            result[index] = value
        return result

    raise _Unresolved(f"cannot {op.value} inside {type(node).__name__}")
