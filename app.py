# ---- Resolve secrets BEFORE importing modules that read env ----
from netrika.secrets import get_secret

from fastapi import FastAPI
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from netrika.api import create_app


def _install_proxy_headers(app: FastAPI) -> None:
    """Honor X-Forwarded-* from the Cloud Run / load balancer front end."""
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")


# Optional: session secret via secret manager (fallback for local runs)
session_secret = get_secret("SESSION_SECRET", default="dev-session-secret")

app = create_app(session_secret=session_secret)
_install_proxy_headers(app)
