"""
draftpatch.actions — Context-updating actions for a state machine.

An action is a plain function (context, event) → next_context.  This
module builds such functions from draft recipes:

    assign(recipe)       the recipe runs against a draft of the live
                         context at transition time
    assign_patch()       the event carries a pre-computed patch list,
                         replayed against the live context
    patch_event(...)     builds that event from a base snapshot and a
                         recipe, ahead of dispatch

Example:

    increment = assign(lambda ctx, event: ctx.update(count=ctx["count"] + 1))

    update = assign_patch()
    event = patch_event("UPDATE", known_context, set_name)
    # ... later, the machine runs update(live_context, event)
"""

import logging
from collections.abc import Mapping
from typing import Any, Callable, Union

from .core import PatchEvent, produce, produce_with_patches
from .errors import MissingPatchError
from .replay import ConflictPolicy, DEFAULT_CONFLICT_POLICY, replay_patches

logger = logging.getLogger(__name__)

Action = Callable[[Any, Any], Any]


def type_of(event: Any) -> Any:
    """The type of an event given as a string, mapping or object."""
    if isinstance(event, str):
        return event
    if isinstance(event, Mapping):
        return event.get("type")
    return getattr(event, "type", None)


def assign(recipe: Callable[[Any, Any], Any]) -> Action:
    """
    Wrap a draft recipe as an action.

    `recipe(draft, event)` edits the draft in place or returns a
    replacement value.  The action returns the next context; patch
    lists are not kept.
    """
    def assign_action(context, event):
        return produce(context, lambda draft: recipe(draft, event))

    assign_action.__name__ = f"assign({getattr(recipe, '__name__', 'recipe')})"
    return assign_action


def _event_patches(event: Any):
    if isinstance(event, Mapping):
        patches = event.get("patches")
    else:
        patches = getattr(event, "patches", None)
    if patches is None:
        raise MissingPatchError(type_of(event))
    return patches


def assign_patch(*, on_conflict: Union[ConflictPolicy, str] = DEFAULT_CONFLICT_POLICY) -> Action:
    """
    Build an action that replays the patch list carried by the event.

    Each patch is applied against the live context by path, so patch
    events built from the same snapshot but touching different paths
    compose when dispatched one after another; for the same path the
    last one dispatched wins.  Events without patches raise
    MissingPatchError.
    """
    policy = ConflictPolicy(on_conflict)

    def assign_patch_action(context, event):
        result = replay_patches(context, _event_patches(event), on_conflict=policy)
        if result.has_conflicts:
            logger.warning("patch_event_partially_applied type=%s applied=%d skipped=%d",
                           type_of(event), result.applied, len(result.conflicts))
        return result.value

    return assign_patch_action


def patch_event(event_type: str, base: Any, recipe: Callable[[Any], Any]) -> PatchEvent:
    """
    Run `recipe` against `base` and capture its effect as an event.

    `base` is the caller's snapshot of the context; it may already be
    stale relative to the machine.  Nothing here reads machine state.
    """
    if not isinstance(event_type, str):
        raise TypeError(f"event type must be a string, got {type(event_type).__name__}")
    _, patches, inverse = produce_with_patches(base, recipe)
    return PatchEvent(event_type, tuple(patches), tuple(inverse))
