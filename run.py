import argparse
import logging
import os
from pathlib import Path

import certifi
import uvicorn
from dotenv import load_dotenv

from netrika.secrets import setup_secrets

script_directory = Path(__file__).resolve().parent

if __name__ == "__main__":
    ap = argparse.ArgumentParser()
    ap.add_argument("--port", type=int, default=8086)
    ap.add_argument("--env", type=str, default="dev")
    ap.add_argument(
        "--revision-failure-policy",
        choices=("rollback", "flag"),
        default=None,
        help="Override NETRIKA_REVISION_FAILURE_POLICY for this process.",
    )

    args = ap.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    # If secrets are delivered via environment variables (Cloud Run), materialize them.
    if os.getenv("ENV_FILE") or os.getenv("SERVICE_ACCOUNT_KEY"):
        setup_secrets(args.env)

    # Load the env file relative to this script so it works regardless of CWD
    env_path = script_directory / "secrets" / f"env.{args.env}"
    if env_path.exists():
        load_dotenv(env_path, override=True)
    else:
        raise FileNotFoundError(f"Could not find an environment file for '{args.env}'. ")

    if args.revision_failure_policy:
        os.environ["NETRIKA_REVISION_FAILURE_POLICY"] = args.revision_failure_policy

    # TLS trust store for the Cloud SQL connector
    if not os.getenv("SSL_CERT_FILE") or not os.path.exists(os.getenv("SSL_CERT_FILE", "")):
        cert_path = certifi.where()
        os.environ.setdefault("SSL_CERT_FILE", cert_path)
        os.environ.setdefault("REQUESTS_CA_BUNDLE", cert_path)

    # Last, because the app reads its configuration at import time
    from app import app

    uvicorn.run(app, host="0.0.0.0", port=args.port)
