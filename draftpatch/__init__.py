"""
draftpatch
==========

Immutable context updates for state machines, written as mutations.

    produce({"count": 0}, lambda d: d.update(count=1))   → {"count": 1}

A recipe edits a short-lived DRAFT; the result is a new value that
shares every untouched subtree with the original, which is never
modified.  The same edit can also be captured as a PATCH LIST, carried
inside an event, and replayed later against whatever context the
machine holds at that point:

    event = patch_event("UPDATE", snapshot, lambda d: d.update(name="David"))
    action = assign_patch()
    action(live_context, event)   → live_context with name="David"

Pieces:
  • produce / produce_with_patches   draft recipes → value (+ patches)
  • apply_patches / replay_patches   patch lists → value
  • assign / assign_patch            actions for a state machine
  • patch_event                      events carrying patch lists
"""

from draftpatch.core import (
    # Types
    Patch,
    PatchOp,
    PatchEvent,
    Draft,
    DraftDict,
    DraftList,
    NOTHING,
    # Drafts
    produce,
    produce_with_patches,
    is_draft,
    original,
    current,
)
from draftpatch.replay import (
    ConflictPolicy, PatchConflict, ReplayResult,
    apply_patches, replay_patches,
)
from draftpatch.actions import assign, assign_patch, patch_event, type_of
from draftpatch.errors import (
    DraftPatchError, RecipeError, MissingPatchError,
    InvalidPatchError, PatchConflictError,
)
from draftpatch.formats import (
    patch_to_dict, patch_from_dict, event_to_dict, event_from_dict,
    to_json, from_json, to_json_patch, to_pointer, from_pointer,
)
from draftpatch.machine import Machine, State, Service, interpret

__version__ = "0.1.0"
__all__ = [
    "Patch", "PatchOp", "PatchEvent", "Draft", "DraftDict", "DraftList", "NOTHING",
    "produce", "produce_with_patches", "is_draft", "original", "current",
    "ConflictPolicy", "PatchConflict", "ReplayResult",
    "apply_patches", "replay_patches",
    "assign", "assign_patch", "patch_event", "type_of",
    "DraftPatchError", "RecipeError", "MissingPatchError",
    "InvalidPatchError", "PatchConflictError",
    "patch_to_dict", "patch_from_dict", "event_to_dict", "event_from_dict",
    "to_json", "from_json", "to_json_patch", "to_pointer", "from_pointer",
    "Machine", "State", "Service", "interpret",
]
