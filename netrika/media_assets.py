"""Resolve media asset ids (e.g. a politician's photo) to URLs served by the /media route."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from netrika.gcs_storage import media_path

logger = logging.getLogger(__name__)


def _coerce_asset_id(asset_id: object) -> Optional[int]:
    raw = str(asset_id if asset_id is not None else "").strip()
    if not raw.isdigit():
        return None
    return int(raw)


def resolve_asset_url(session: Session, asset_id: object) -> Optional[str]:
    normalized_id = _coerce_asset_id(asset_id)
    if normalized_id is None:
        return None
    storage_path = session.execute(
        text("SELECT storage_path FROM media_assets WHERE id = :asset_id"),
        {"asset_id": normalized_id},
    ).scalar_one_or_none()
    if not storage_path or not str(storage_path).strip():
        logger.info("Media asset %s has no stored object", normalized_id)
        return None
    return media_path(str(storage_path))
