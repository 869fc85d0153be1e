from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from netrika.db import parse_db_timestamp
from netrika.errors import MalformedRecordError, NotFoundError
from netrika.politician_payloads import POLITICIAN_FIELDS

logger = logging.getLogger(__name__)

STATUS_APPROVED = "Approved"
JSON_COLUMNS: frozenset[str] = frozenset(
    {
        "education",
        "political_journey",
        "criminal_records",
        "asset_declarations",
        "contact_information",
        "social_media_handles",
    }
)
_SELECT_COLUMNS = ", ".join(("id",) + POLITICIAN_FIELDS + ("status", "created_at", "updated_at"))


def _encode_columns(values: Mapping[str, Any]) -> Dict[str, Any]:
    encoded: Dict[str, Any] = {}
    for key, value in values.items():
        if key not in POLITICIAN_FIELDS:
            raise ValueError(f"Unknown politician column: {key}")
        if key in JSON_COLUMNS and value is not None:
            encoded[key] = json.dumps(value, ensure_ascii=True, sort_keys=True)
        else:
            encoded[key] = value
    return encoded


def _decode_json_column(politician_id: int, column: str, raw_value: object) -> Any:
    if raw_value is None:
        return None
    if not isinstance(raw_value, str):
        return raw_value
    try:
        return json.loads(raw_value)
    except json.JSONDecodeError as exc:
        logger.error(
            "Malformed JSON in politicians.%s for politician %s: %s", column, politician_id, exc.msg
        )
        raise MalformedRecordError(
            f"Politician {politician_id} has malformed `{column}` data and cannot be decoded."
        ) from exc


def insert_politician(session: Session, *, values: Mapping[str, Any]) -> int:
    encoded = _encode_columns(values)
    if not encoded.get("name"):
        raise ValueError("A politician requires a name.")
    encoded["status"] = STATUS_APPROVED
    columns_sql = ", ".join(encoded.keys())
    params_sql = ", ".join(f":{column}" for column in encoded.keys())
    new_id = session.execute(
        text(
            f"""
            INSERT INTO politicians ({columns_sql})
            VALUES ({params_sql})
            RETURNING id
            """
        ),
        encoded,
    ).scalar_one()
    return int(new_id)


def patch_politician(session: Session, *, politician_id: int, values: Mapping[str, Any]) -> None:
    """Merge-patch: only the given columns change, everything else stays as stored."""
    encoded = _encode_columns(values)
    if not encoded:
        raise ValueError("Nothing to update.")
    set_sql = ", ".join(f"{column} = :set_{column}" for column in encoded.keys())
    params = {f"set_{column}": value for column, value in encoded.items()}
    params["politician_id"] = int(politician_id)
    result = session.execute(
        text(
            f"""
            UPDATE politicians
            SET {set_sql},
                updated_at = CURRENT_TIMESTAMP
            WHERE id = :politician_id
            """
        ),
        params,
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Politician {politician_id} not found.")


def politician_exists(session: Session, politician_id: int) -> bool:
    return (
        session.execute(
            text("SELECT 1 FROM politicians WHERE id = :politician_id"),
            {"politician_id": int(politician_id)},
        ).scalar_one_or_none()
        is not None
    )


def fetch_politician(session: Session, politician_id: int) -> Optional[Dict[str, Any]]:
    row = session.execute(
        text(f"SELECT {_SELECT_COLUMNS} FROM politicians WHERE id = :politician_id"),
        {"politician_id": int(politician_id)},
    ).mappings().one_or_none()
    if row is None:
        return None
    politician = dict(row)
    for column in ("created_at", "updated_at"):
        stamp = parse_db_timestamp(row[column])
        politician[column] = stamp.isoformat() if stamp else None
    for column in JSON_COLUMNS:
        politician[column] = _decode_json_column(int(row["id"]), column, row[column])
    return politician
