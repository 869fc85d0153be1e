"""Append-only revision log for accepted changes."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.engine import RowMapping
from sqlalchemy.orm import Session

from netrika.db import parse_db_timestamp
from netrika.errors import MalformedRecordError

logger = logging.getLogger(__name__)

DIRECT_UPDATE_REASON = "Admin direct update."


@dataclass(frozen=True)
class Revision:
    id: int
    entity_type: str
    entity_id: int
    data: Dict[str, Any]
    submitter_id: str
    approver_id: str
    edit_id: Optional[int]
    change_reason: Optional[str]
    created_at: Optional[datetime]
    submitter_name: Optional[str] = None
    approver_name: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "data": self.data,
            "submitter_id": self.submitter_id,
            "approver_id": self.approver_id,
            "edit_id": self.edit_id,
            "change_reason": self.change_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "submitter_name": self.submitter_name,
            "approver_name": self.approver_name,
        }


def _display_name(full_name: object, email: object) -> Optional[str]:
    return str(full_name or "").strip() or str(email or "").strip() or None


def _revision_from_row(row: RowMapping) -> Revision:
    revision_id = int(row["id"])
    raw_data = row.get("data")
    try:
        data = json.loads(raw_data) if isinstance(raw_data, str) else dict(raw_data or {})
    except json.JSONDecodeError as exc:
        raise MalformedRecordError(f"Revision {revision_id} has malformed data.") from exc
    edit_id = row.get("edit_id")
    return Revision(
        id=revision_id,
        entity_type=str(row["entity_type"]),
        entity_id=int(row["entity_id"]),
        data=data,
        submitter_id=str(row["submitter_id"]),
        approver_id=str(row["approver_id"]),
        edit_id=int(edit_id) if edit_id is not None else None,
        change_reason=row.get("change_reason"),
        created_at=parse_db_timestamp(row.get("created_at")),
        submitter_name=_display_name(row.get("submitter_full_name"), row.get("submitter_email")),
        approver_name=_display_name(row.get("approver_full_name"), row.get("approver_email")),
    )


def append(
    session: Session,
    *,
    entity_type: str,
    entity_id: int,
    data: Mapping[str, Any],
    submitter_id: str,
    approver_id: str,
    edit_id: Optional[int] = None,
    change_reason: Optional[str] = None,
) -> int:
    revision_id = session.execute(
        text(
            """
            INSERT INTO entity_revisions (
                entity_type,
                entity_id,
                data,
                submitter_id,
                approver_id,
                edit_id,
                change_reason
            )
            VALUES (:entity_type, :entity_id, :data, :submitter_id, :approver_id, :edit_id, :change_reason)
            RETURNING id
            """
        ),
        {
            "entity_type": entity_type,
            "entity_id": int(entity_id),
            "data": json.dumps(dict(data), ensure_ascii=True, sort_keys=True),
            "submitter_id": submitter_id,
            "approver_id": approver_id,
            "edit_id": int(edit_id) if edit_id is not None else None,
            "change_reason": change_reason,
        },
    ).scalar_one()
    logger.info(
        "Appended revision #%s for %s %s (edit_id=%s approver=%s)",
        revision_id,
        entity_type,
        entity_id,
        edit_id,
        approver_id,
    )
    return int(revision_id)


def list_for_entity(session: Session, *, entity_type: str, entity_id: int) -> List[Revision]:
    rows = session.execute(
        text(
            """
            SELECT
                r.id,
                r.entity_type,
                r.entity_id,
                r.data,
                r.submitter_id,
                r.approver_id,
                r.edit_id,
                r.change_reason,
                r.created_at,
                su.full_name AS submitter_full_name,
                su.email AS submitter_email,
                au.full_name AS approver_full_name,
                au.email AS approver_email
            FROM entity_revisions r
            LEFT JOIN users su
                ON su.id = r.submitter_id
            LEFT JOIN users au
                ON au.id = r.approver_id
            WHERE r.entity_type = :entity_type
              AND r.entity_id = :entity_id
            ORDER BY r.created_at DESC, r.id DESC
            """
        ),
        {"entity_type": entity_type, "entity_id": int(entity_id)},
    ).mappings().all()
    return [_revision_from_row(row) for row in rows]
