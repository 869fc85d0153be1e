"""Field-by-field comparison of a proposed edit against the current entity."""

from __future__ import annotations

import difflib
import json
import re
from typing import Any, Dict, List, Mapping, Optional

CHANGE_NEW = "new"
CHANGE_REMOVED = "removed"
CHANGE_CHANGED = "changed"
CHANGE_UNCHANGED = "unchanged"

_DIFF_TOKEN_RE = re.compile(r"\s+|[^\s]+")


def _is_empty(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def _canonical(value: object) -> str:
    return json.dumps(value, ensure_ascii=True, sort_keys=True)


def classify_change(old: object, new: object) -> str:
    if _canonical(old) == _canonical(new):
        return CHANGE_UNCHANGED
    if _is_empty(old) and not _is_empty(new):
        return CHANGE_NEW
    if _is_empty(new) and not _is_empty(old):
        return CHANGE_REMOVED
    if _is_empty(old) and _is_empty(new):
        return CHANGE_UNCHANGED
    return CHANGE_CHANGED


def inline_segments(current_text: str, proposed_text: str) -> List[Dict[str, str]]:
    """Word-level segments: ``equal`` text is shared, ``delete``/``insert`` only on one side."""
    current_tokens = _DIFF_TOKEN_RE.findall(current_text or "")
    proposed_tokens = _DIFF_TOKEN_RE.findall(proposed_text or "")
    matcher = difflib.SequenceMatcher(a=current_tokens, b=proposed_tokens, autojunk=False)
    segments: List[Dict[str, str]] = []
    for opcode, i1, i2, j1, j2 in matcher.get_opcodes():
        current_chunk = "".join(current_tokens[i1:i2])
        proposed_chunk = "".join(proposed_tokens[j1:j2])
        if opcode == "equal":
            segments.append({"op": "equal", "text": current_chunk})
            continue
        if current_chunk:
            segments.append({"op": "delete", "text": current_chunk})
        if proposed_chunk:
            segments.append({"op": "insert", "text": proposed_chunk})
    return segments


def field_diff(current: Optional[Mapping[str, Any]], proposed: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """
    One entry per proposed key, in payload order. Keys the proposal does not touch
    are left out: approval is a merge-patch and leaves them as they are.
    A new-entity proposal has no current record, so every old side is None.
    """
    diff: List[Dict[str, Any]] = []
    for field, new_value in proposed.items():
        old_value = current.get(field) if current else None
        change = classify_change(old_value, new_value)
        if change == CHANGE_UNCHANGED and _is_empty(new_value) and current is None:
            continue
        entry: Dict[str, Any] = {"field": field, "old": old_value, "new": new_value, "change": change}
        if change == CHANGE_CHANGED and isinstance(old_value, str) and isinstance(new_value, str):
            entry["segments"] = inline_segments(old_value, new_value)
        diff.append(entry)
    return diff
