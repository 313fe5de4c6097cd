"""
draftpatch.errors — Exceptions raised by drafts, actions and patch replay.
"""


class DraftPatchError(Exception):
    """Base class for all draftpatch errors."""


class RecipeError(DraftPatchError):
    """A draft was used outside the recipe call that created it."""


class MissingPatchError(DraftPatchError, KeyError):
    """A patch-consuming action received an event without a patch list."""

    def __init__(self, event_type=None):
        self.event_type = event_type
        super().__init__(f"event {event_type!r} carries no patches")

    def __str__(self) -> str:
        return self.args[0]


class InvalidPatchError(DraftPatchError, ValueError):
    """Patch data is malformed (unknown op, missing value, bad pointer)."""


class PatchConflictError(DraftPatchError):
    """A patch path does not resolve against the live value."""

    def __init__(self, conflict):
        self.conflict = conflict
        super().__init__(repr(conflict))
