"""
Pending-edit ledger: proposed changes and their resolution.

Resolution is a single conditional UPDATE guarded by ``status = 'Pending'``;
an edit that is no longer pending affects zero rows and is reported as an
invalid transition. The ledger never deletes rows.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.engine import RowMapping
from sqlalchemy.orm import Session

from netrika.db import parse_db_timestamp
from netrika.errors import InvalidTransitionError, MalformedRecordError, NotFoundError

logger = logging.getLogger(__name__)

STATUS_PENDING = "Pending"
STATUS_APPROVED = "Approved"
STATUS_DENIED = "Denied"
TERMINAL_STATUSES = frozenset({STATUS_APPROVED, STATUS_DENIED})
DEFAULT_DENIAL_REASON = "Denied by moderator."

_EDIT_SELECT = """
    SELECT
        e.id,
        e.entity_type,
        e.entity_id,
        e.proposed_data,
        e.change_reason,
        e.proposer_id,
        e.status,
        e.moderator_id,
        e.admin_feedback,
        e.created_at,
        e.updated_at,
        u.email AS proposer_email,
        u.full_name AS proposer_name
    FROM pending_edits e
    LEFT JOIN users u
        ON u.id = e.proposer_id
"""


@dataclass(frozen=True)
class PendingEdit:
    id: int
    entity_type: str
    entity_id: Optional[int]
    proposed_data: Dict[str, Any]
    change_reason: Optional[str]
    proposer_id: Optional[str]
    status: str
    moderator_id: Optional[str] = None
    admin_feedback: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    proposer_email: Optional[str] = None
    proposer_name: Optional[str] = None
    payload_error: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == STATUS_PENDING

    @property
    def is_new_entity(self) -> bool:
        return self.entity_id is None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "proposed_data": self.proposed_data,
            "change_reason": self.change_reason,
            "proposer_id": self.proposer_id,
            "status": self.status,
            "moderator_id": self.moderator_id,
            "admin_feedback": self.admin_feedback,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "proposer": {"email": self.proposer_email, "full_name": self.proposer_name},
            "payload_error": self.payload_error,
        }


@dataclass(frozen=True)
class PendingPage:
    edits: Sequence[PendingEdit]
    total: int
    page: int
    page_size: int

    @property
    def page_count(self) -> int:
        if self.total <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size


def _decode_payload(edit_id: int, raw_value: object) -> Dict[str, Any]:
    if raw_value is None or raw_value == "":
        return {}
    if isinstance(raw_value, dict):
        return dict(raw_value)
    try:
        parsed = json.loads(str(raw_value))
    except json.JSONDecodeError as exc:
        logger.error("Malformed proposed_data on pending edit %s: %s", edit_id, exc.msg)
        raise MalformedRecordError(f"Pending edit {edit_id} has malformed proposed data.") from exc
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise MalformedRecordError(f"Pending edit {edit_id} proposed data is not an object.")
    return parsed


def _edit_from_row(row: RowMapping, *, strict: bool = True) -> PendingEdit:
    """
    ``strict=False`` keeps an undecodable payload from failing the whole read:
    the edit comes back with empty ``proposed_data`` and ``payload_error`` set.
    """
    edit_id = int(row["id"])
    entity_id = row.get("entity_id")
    payload_error = None
    try:
        proposed_data = _decode_payload(edit_id, row.get("proposed_data"))
    except MalformedRecordError as exc:
        if strict:
            raise
        proposed_data, payload_error = {}, exc.message
    return PendingEdit(
        id=edit_id,
        entity_type=str(row.get("entity_type") or ""),
        entity_id=int(entity_id) if entity_id is not None else None,
        proposed_data=proposed_data,
        change_reason=row.get("change_reason"),
        proposer_id=row.get("proposer_id"),
        status=str(row.get("status") or ""),
        moderator_id=row.get("moderator_id"),
        admin_feedback=row.get("admin_feedback"),
        created_at=parse_db_timestamp(row.get("created_at")),
        updated_at=parse_db_timestamp(row.get("updated_at")),
        proposer_email=row.get("proposer_email"),
        proposer_name=row.get("proposer_name"),
        payload_error=payload_error,
    )


def propose(
    session: Session,
    *,
    entity_type: str,
    entity_id: Optional[int],
    proposed_data: Mapping[str, Any],
    change_reason: Optional[str],
    proposer_id: str,
) -> PendingEdit:
    edit_id = session.execute(
        text(
            """
            INSERT INTO pending_edits (
                entity_type,
                entity_id,
                proposed_data,
                change_reason,
                proposer_id,
                status
            )
            VALUES (:entity_type, :entity_id, :proposed_data, :change_reason, :proposer_id, :status)
            RETURNING id
            """
        ),
        {
            "entity_type": entity_type,
            "entity_id": int(entity_id) if entity_id is not None else None,
            "proposed_data": json.dumps(dict(proposed_data), ensure_ascii=True, sort_keys=True),
            "change_reason": change_reason,
            "proposer_id": proposer_id,
            "status": STATUS_PENDING,
        },
    ).scalar_one()
    edit = get_edit(session, int(edit_id))
    if edit is None:
        raise NotFoundError(f"Pending edit {edit_id} vanished right after insert.")
    logger.info(
        "Proposed %s edit #%s (entity_id=%s) by %s", entity_type, edit.id, entity_id, proposer_id
    )
    return edit


def get_edit(session: Session, edit_id: int, *, strict: bool = True) -> Optional[PendingEdit]:
    row = session.execute(
        text(f"{_EDIT_SELECT} WHERE e.id = :edit_id"),
        {"edit_id": int(edit_id)},
    ).mappings().one_or_none()
    if row is None:
        return None
    return _edit_from_row(row, strict=strict)


def list_pending(
    session: Session,
    *,
    entity_type: Optional[str] = None,
    page: int = 1,
    page_size: int = 15,
) -> PendingPage:
    resolved_page = max(int(page or 1), 1)
    resolved_size = max(int(page_size or 1), 1)
    filters = ["e.status = :status"]
    params: Dict[str, Any] = {"status": STATUS_PENDING}
    if entity_type:
        filters.append("e.entity_type = :entity_type")
        params["entity_type"] = entity_type
    where_sql = " AND ".join(filters)

    total = session.execute(
        text(f"SELECT COUNT(*) FROM pending_edits e WHERE {where_sql}"),
        params,
    ).scalar_one()
    rows = session.execute(
        text(
            f"""
            {_EDIT_SELECT}
            WHERE {where_sql}
            ORDER BY e.created_at DESC, e.id DESC
            LIMIT :limit OFFSET :offset
            """
        ),
        {**params, "limit": resolved_size, "offset": (resolved_page - 1) * resolved_size},
    ).mappings().all()
    return PendingPage(
        edits=[_edit_from_row(row, strict=False) for row in rows],
        total=int(total or 0),
        page=resolved_page,
        page_size=resolved_size,
    )


def list_for_entity(session: Session, *, entity_type: str, entity_id: int) -> List[PendingEdit]:
    rows = session.execute(
        text(
            f"""
            {_EDIT_SELECT}
            WHERE e.entity_type = :entity_type
              AND e.entity_id = :entity_id
            ORDER BY e.created_at DESC, e.id DESC
            """
        ),
        {"entity_type": entity_type, "entity_id": int(entity_id)},
    ).mappings().all()
    return [_edit_from_row(row, strict=False) for row in rows]


def list_by_proposer(session: Session, proposer_id: str, *, limit: int = 50) -> List[PendingEdit]:
    rows = session.execute(
        text(
            f"""
            {_EDIT_SELECT}
            WHERE e.proposer_id = :proposer_id
            ORDER BY e.created_at DESC, e.id DESC
            LIMIT :limit
            """
        ),
        {"proposer_id": proposer_id, "limit": max(int(limit), 1)},
    ).mappings().all()
    return [_edit_from_row(row, strict=False) for row in rows]


def _raise_missed_transition(session: Session, edit_id: int, target_status: str) -> None:
    current_status = session.execute(
        text("SELECT status FROM pending_edits WHERE id = :edit_id"),
        {"edit_id": int(edit_id)},
    ).scalar_one_or_none()
    if current_status is None:
        raise NotFoundError(f"Pending edit with ID {edit_id} not found.")
    raise InvalidTransitionError(
        f"Edit {edit_id} is `{current_status}`, not `{STATUS_PENDING}`; it cannot be marked `{target_status}`."
    )


def mark_approved(
    session: Session,
    *,
    edit_id: int,
    moderator_id: str,
    resolved_entity_id: int,
) -> None:
    result = session.execute(
        text(
            """
            UPDATE pending_edits
            SET status = :approved,
                moderator_id = :moderator_id,
                entity_id = :entity_id,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = :edit_id
              AND status = :pending
            """
        ),
        {
            "approved": STATUS_APPROVED,
            "pending": STATUS_PENDING,
            "moderator_id": moderator_id,
            "entity_id": int(resolved_entity_id),
            "edit_id": int(edit_id),
        },
    )
    if result.rowcount != 1:
        _raise_missed_transition(session, edit_id, STATUS_APPROVED)


def mark_denied(
    session: Session,
    *,
    edit_id: int,
    moderator_id: str,
    reason: Optional[str],
) -> None:
    result = session.execute(
        text(
            """
            UPDATE pending_edits
            SET status = :denied,
                moderator_id = :moderator_id,
                admin_feedback = :admin_feedback,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = :edit_id
              AND status = :pending
            """
        ),
        {
            "denied": STATUS_DENIED,
            "pending": STATUS_PENDING,
            "moderator_id": moderator_id,
            "admin_feedback": (reason or "").strip() or DEFAULT_DENIAL_REASON,
            "edit_id": int(edit_id),
        },
    )
    if result.rowcount != 1:
        _raise_missed_transition(session, edit_id, STATUS_DENIED)
