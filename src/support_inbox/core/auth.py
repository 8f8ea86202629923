"""Gmail OAuth: cached token, refresh, and the browser consent flow as a last resort."""

from __future__ import annotations

import logging
from pathlib import Path

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import Resource, build

from support_inbox.core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

# modify covers reading and removing the UNREAD label
SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.send",
]


def _load_cached(token_path: Path) -> Credentials | None:
    """Cached credentials, or None if missing, unreadable or granted fewer scopes."""
    if not token_path.exists():
        return None
    try:
        creds = Credentials.from_authorized_user_file(str(token_path), SCOPES)
    except (ValueError, OSError) as e:
        logger.warning("Ignoring unreadable token cache %s: %s", token_path, e)
        return None
    if not creds.has_scopes(SCOPES):
        logger.warning("Cached token lacks send/modify scopes, consent required again")
        return None
    return creds


def _refresh(creds: Credentials, token_path: Path) -> bool:
    try:
        creds.refresh(Request())
    except GoogleAuthError as e:
        logger.warning("Token refresh failed: %s", e)
        return False
    _save_token(creds, token_path)
    logger.debug("Refreshed access token")
    return True


def _consent(credentials_path: Path, token_path: Path) -> Credentials:
    if not credentials_path.exists():
        raise AuthenticationError(
            f"Credentials file not found: {credentials_path}. "
            "Download it from Google Cloud Console."
        )
    try:
        flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), SCOPES)
        creds = flow.run_local_server(port=0)
    except Exception as e:
        raise AuthenticationError(f"OAuth flow failed: {e}") from e
    _save_token(creds, token_path)
    logger.info("Authentication successful, token cached at %s", token_path)
    return creds


def authenticate(
    credentials_path: Path, token_path: Path, *, allow_browser: bool = True
) -> Credentials:
    """Return credentials able to read, relabel and send mail.

    Tries the token cache, then a refresh, then (if allowed) the interactive
    consent flow. Unattended runs pass allow_browser=False so a revoked token
    fails the cycle instead of blocking on a browser.

    Raises:
        AuthenticationError: If no valid credentials can be obtained.
    """
    creds = _load_cached(token_path)
    if creds and creds.valid:
        return creds

    if creds and creds.expired and creds.refresh_token and _refresh(creds, token_path):
        return creds

    if not allow_browser:
        raise AuthenticationError(
            f"No valid token at {token_path} and interactive consent is disabled"
        )
    return _consent(credentials_path, token_path)


def build_gmail_service(creds: Credentials) -> Resource:
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


def _save_token(creds: Credentials, token_path: Path) -> None:
    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(creds.to_json())
