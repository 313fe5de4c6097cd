"""
draftpatch.formats — Convert patches and patch events to and from plain data.

Supported conversions:
    • Patch      ↔ dict  {"op": "replace", "path": ["a", 0], "value": ...}
    • PatchEvent ↔ dict  {"type": ..., "patches": [...], "inversePatches": [...]}
    • PatchEvent ↔ JSON string
    • path tuple ↔ RFC 6901 JSON pointer ("/a/0")
    • patch list → RFC 6902 JSON Patch document
"""

import json
from collections.abc import Mapping
from typing import Any, Iterable

from .core import Patch, PatchEvent, PatchOp
from .errors import InvalidPatchError


# ═══════════════════════════════════════════════════════════════════
#  JSON POINTERS
# ═══════════════════════════════════════════════════════════════════

def to_pointer(path: Iterable) -> str:
    """Render a path tuple as an RFC 6901 JSON pointer."""
    return "".join(
        "/" + str(key).replace("~", "~0").replace("/", "~1") for key in path
    )


def from_pointer(pointer: str) -> tuple[str, ...]:
    """
    Parse an RFC 6901 JSON pointer into a path tuple.

    Every segment comes back as a string; list indices are resolved
    against the live value when the patch is applied.
    """
    if pointer == "":
        return ()
    if not pointer.startswith("/"):
        raise InvalidPatchError(f"JSON pointer must start with '/': {pointer!r}")
    return tuple(
        part.replace("~1", "/").replace("~0", "~") for part in pointer[1:].split("/")
    )


# ═══════════════════════════════════════════════════════════════════
#  PATCHES ↔ DICTS
# ═══════════════════════════════════════════════════════════════════

def patch_to_dict(patch: Patch) -> dict:
    """Convert a Patch to a plain dict.  REMOVE carries no "value"."""
    data = {"op": patch.op.value, "path": list(patch.path)}
    if patch.op is not PatchOp.REMOVE:
        data["value"] = patch.value
    return data


def patch_from_dict(data: Mapping) -> Patch:
    """
    Build a Patch from a plain dict.

    `path` may be a list/tuple of keys or a JSON pointer string.
    """
    try:
        op = PatchOp(data["op"])
    except KeyError:
        raise InvalidPatchError(f"patch has no 'op': {dict(data)!r}") from None
    except ValueError:
        raise InvalidPatchError(f"unknown patch op: {data['op']!r}") from None

    if "path" not in data:
        raise InvalidPatchError(f"patch has no 'path': {dict(data)!r}")
    path = data["path"]
    if isinstance(path, str):
        path = from_pointer(path)
    elif not isinstance(path, (list, tuple)):
        raise InvalidPatchError(f"patch path must be a list or pointer: {path!r}")

    if op is not PatchOp.REMOVE and "value" not in data:
        raise InvalidPatchError(f"{op.value} patch has no 'value'")
    return Patch(op, tuple(path), data.get("value"))


def coerce_patch(entry: Any) -> Patch:
    """Accept a Patch or its dict form."""
    if isinstance(entry, Patch):
        return entry
    if isinstance(entry, Mapping):
        return patch_from_dict(entry)
    raise InvalidPatchError(f"not a patch: {entry!r}")


def to_json_patch(patches: Iterable[Patch]) -> list[dict]:
    """Render a patch list as an RFC 6902 JSON Patch document."""
    document = []
    for patch in patches:
        data = patch_to_dict(coerce_patch(patch))
        data["path"] = to_pointer(data["path"])
        document.append(data)
    return document


# ═══════════════════════════════════════════════════════════════════
#  PATCH EVENTS ↔ DICTS / JSON
# ═══════════════════════════════════════════════════════════════════

def event_to_dict(event: PatchEvent) -> dict:
    """Convert a PatchEvent to plain data."""
    return {
        "type": event.type,
        "patches": [patch_to_dict(p) for p in event.patches],
        "inversePatches": [patch_to_dict(p) for p in event.inverse_patches],
    }


def event_from_dict(data: Mapping) -> PatchEvent:
    """Rebuild a PatchEvent from plain data."""
    return PatchEvent(
        data["type"],
        tuple(coerce_patch(p) for p in data.get("patches", ())),
        tuple(coerce_patch(p) for p in data.get("inversePatches", ())),
    )


def to_json(event: PatchEvent, **kwargs) -> str:
    """Convert a PatchEvent to a JSON string."""
    return json.dumps(event_to_dict(event), **kwargs)


def from_json(text: str) -> PatchEvent:
    """Parse a JSON string into a PatchEvent."""
    return event_from_dict(json.loads(text))
