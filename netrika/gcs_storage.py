from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Optional
from urllib.parse import quote

from google.api_core.exceptions import NotFound
from google.auth.exceptions import GoogleAuthError
from google.cloud import storage
from google.oauth2 import service_account

logger = logging.getLogger(__name__)

# Overridable through env vars without touching code
DEFAULT_BUCKET = os.getenv("BUCKET_NAME", "netrika-media")
DEFAULT_KEYFILE = os.getenv("MEDIA_BUCKET_KEY_FILE", "")


def _credentials():
    """
    Explicit service-account key file when MEDIA_BUCKET_KEY_FILE points at one,
    otherwise None so the client falls back to Application Default Credentials.
    """
    path = DEFAULT_KEYFILE
    if not path or not os.path.exists(path):
        return None
    try:
        return service_account.Credentials.from_service_account_file(path)
    except (GoogleAuthError, ValueError) as exc:
        logger.warning("Ignoring unreadable media bucket key file %s: %s", path, exc)
        return None


def storage_client() -> storage.Client:
    creds = _credentials()
    if creds is not None:
        return storage.Client(credentials=creds, project=creds.project_id)
    return storage.Client()  # ADC


def get_bucket(name: Optional[str] = None) -> storage.Bucket:
    return storage_client().bucket(name or DEFAULT_BUCKET)


def bucket_name() -> str:
    return DEFAULT_BUCKET


def media_path(blob_name: str) -> str:
    normalized = str(blob_name or "").strip().lstrip("/")
    return f"/media/{quote(normalized, safe='/')}"


def download_bytes(blob_name: str) -> bytes:
    client = storage_client()
    blob = client.bucket(DEFAULT_BUCKET).blob(blob_name)
    try:
        return blob.download_as_bytes(client=client)
    except NotFound:
        raise FileNotFoundError(blob_name)


def blob_http_metadata(blob_name: str) -> tuple[Optional[str], Optional[str], Optional[datetime]]:
    """
    Return (content_type, etag, updated_at_utc) for a blob without downloading payload bytes.
    Raises FileNotFoundError when the blob does not exist.
    """
    client = storage_client()
    blob = client.bucket(DEFAULT_BUCKET).blob(blob_name)
    try:
        blob.reload(client=client)
    except NotFound:
        raise FileNotFoundError(blob_name)
    return blob.content_type, blob.etag, blob.updated
