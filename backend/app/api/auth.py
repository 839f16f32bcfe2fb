from __future__ import annotations

import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from backend.app.config import AppSettings
from backend.app.dependencies import get_settings, get_telemetry
from backend.app.telemetry import TelemetryClient

BEARER_PREFIX = "bearer "


def require_bearer_token(
    settings: Annotated[AppSettings, Depends(get_settings)],
    telemetry: Annotated[TelemetryClient, Depends(get_telemetry)],
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Reject the request before any handler runs unless it carries the configured token.

    Missing or malformed header: 401. Wrong token: 403.
    """
    if authorization is None or not authorization.strip():
        telemetry.emit("auth.rejected", reason="missing")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    raw = authorization.strip()
    if not raw.lower().startswith(BEARER_PREFIX) or not raw[len(BEARER_PREFIX):].strip():
        telemetry.emit("auth.rejected", reason="malformed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header must use the Bearer scheme.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    presented = raw[len(BEARER_PREFIX):].strip()
    expected = settings.api_key
    if expected is None or not secrets.compare_digest(
        presented.encode("utf-8"),
        expected.encode("utf-8"),
    ):
        telemetry.emit("auth.rejected", reason="mismatch")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid bearer token.",
        )
