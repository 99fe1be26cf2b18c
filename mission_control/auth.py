"""Shared-credential Basic authentication for the dashboard API."""
from __future__ import annotations

import secrets

from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from mission_control.config import get_settings

REALM = "Mission Control"

security = HTTPBasic(realm=REALM, auto_error=False)


def _matches(given: str, expected: str) -> bool:
    return secrets.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


def require_auth(credentials: HTTPBasicCredentials | None = Depends(security)) -> None:
    """Reject the request unless it carries the configured user and password.

    A no-op when no credentials are configured.
    """
    settings = get_settings()
    if not settings.auth_enabled:
        return
    # both comparisons always run
    if credentials is not None:
        user_ok = _matches(credentials.username, settings.basic_auth_user)
        password_ok = _matches(credentials.password, settings.basic_auth_password)
        if user_ok and password_ok:
            return
    raise HTTPException(
        401, "Authentication required",
        headers={"WWW-Authenticate": f'Basic realm="{REALM}"'},
    )


def require_sync_secret(x_sync_secret: str | None = Header(None)) -> None:
    """Collector pushes must also carry ``X-Sync-Secret``; refused when none is configured."""
    expected = get_settings().cron_sync_secret
    if not expected or x_sync_secret is None or not _matches(x_sync_secret, expected):
        raise HTTPException(401, "Unauthorized")
