from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from google.cloud import secretmanager

logger = logging.getLogger(__name__)

_REPO_ROOT = Path(__file__).resolve().parents[1]
SECRETS_DIR = _REPO_ROOT / "secrets"


def setup_secrets(env: str, secrets_dir: Path | None = None) -> dict[str, Path]:
    """
    Given env-provided secrets (ENV_FILE, SERVICE_ACCOUNT_KEY), write them to disk.
    Returns a mapping of the env var names to the file paths that were used.
    """
    target_dir = secrets_dir or SECRETS_DIR
    target_dir.mkdir(parents=True, exist_ok=True)

    secret_files_path: dict[str, Path] = {
        "ENV_FILE": target_dir / f"env.{env}",
        "SERVICE_ACCOUNT_KEY": target_dir / f"netrika-{env}-sa.json",
    }

    written: dict[str, Path] = {}
    for env_var, file_path in secret_files_path.items():
        value = os.environ.get(env_var)
        if not value:
            continue
        if not file_path.exists():
            file_path.write_text(value)
        else:
            logger.info("Secret file %s already exists, skipping", file_path)
        if env_var == "SERVICE_ACCOUNT_KEY":
            os.environ["GOOGLE_APPLICATION_CREDENTIALS"] = str(file_path)
        written[env_var] = file_path
    return written


@lru_cache(maxsize=1)
def _sm_client() -> secretmanager.SecretManagerServiceClient:
    return secretmanager.SecretManagerServiceClient()


@lru_cache(maxsize=256)
def _sm_get(resource: str) -> str:
    """Retrieve a secret value from Google Cloud Secret Manager."""
    resp = _sm_client().access_secret_version(name=resource)
    return resp.payload.data.decode("utf-8")


def get_secret(name: str, default: Optional[str] = None) -> str:
    """
    Resolution order:
      1) NAME (env/.env)
      2) NAME_RESOURCE (Secret Manager resource path)
      3) default, else raise RuntimeError
    """
    if (v := os.getenv(name)) is not None:
        return v
    if (r := os.getenv(f"{name}_RESOURCE")):
        return _sm_get(r)
    if default is not None:
        return default
    raise RuntimeError(f"Missing {name} (or {name}_RESOURCE)")
