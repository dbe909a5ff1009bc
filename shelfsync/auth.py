from __future__ import annotations

import logging
import time
from typing import Any

import jwt
import requests

from shelfsync.models import GOOGLE_TOKEN_URL, ServiceAccountCredential


logger = logging.getLogger(__name__)

CALENDAR_EVENTS_SCOPE = "https://www.googleapis.com/auth/calendar.events"
JWT_BEARER_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME_SECONDS = 600


class AuthError(Exception):
    """Signing the assertion or exchanging it for a token failed."""


def build_assertion(
    credential: ServiceAccountCredential,
    *,
    token_url: str = GOOGLE_TOKEN_URL,
    now: int | None = None,
) -> str:
    issued_at = int(time.time()) if now is None else int(now)
    claims = {
        "iss": credential.email,
        "scope": CALENDAR_EVENTS_SCOPE,
        "aud": token_url,
        "iat": issued_at,
        "exp": issued_at + ASSERTION_LIFETIME_SECONDS,
    }
    headers: dict[str, Any] = {"typ": "JWT"}
    if credential.private_key_id:
        headers["kid"] = credential.private_key_id
    try:
        return jwt.encode(claims, credential.private_key_pem, algorithm="RS256", headers=headers)
    except (jwt.PyJWTError, ValueError, TypeError) as exc:
        raise AuthError(f"Unable to sign assertion: {exc}") from exc


def get_access_token(
    credential: ServiceAccountCredential,
    *,
    session: requests.Session | None = None,
    token_url: str = GOOGLE_TOKEN_URL,
    timeout_seconds: int = 30,
) -> str:
    assertion = build_assertion(credential, token_url=token_url)
    http = session or requests
    try:
        response = http.post(
            token_url,
            data={"assertion": assertion, "grant_type": JWT_BEARER_GRANT_TYPE},
            timeout=timeout_seconds,
        )
    except requests.RequestException as exc:
        raise AuthError(f"Token request failed: {exc}") from exc
    if not response.ok:
        raise AuthError(f"Token endpoint returned HTTP {response.status_code}: {response.text[:300]}")
    try:
        payload = response.json()
    except ValueError as exc:
        raise AuthError("Token endpoint returned invalid JSON.") from exc
    token = payload.get("access_token") if isinstance(payload, dict) else None
    if not isinstance(token, str) or not token:
        raise AuthError("Token response has no access_token.")
    logger.debug("Obtained access token for %s", credential.email)
    return token
