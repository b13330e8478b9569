"""Load Google credentials for the DV360 and Sheets APIs.

Two credential files are understood:

* a service account key (``"type": "service_account"``), validated and used
  directly;
* an OAuth desktop client secret (``"installed"``), which runs the installed
  app flow once and caches the authorised user token at ``token_path``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Tuple

from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

logger = logging.getLogger(__name__)

SCOPES: Sequence[str] = (
    "https://www.googleapis.com/auth/display-video",
    "https://www.googleapis.com/auth/spreadsheets",
)

REQUIRED_FIELDS: Tuple[str, ...] = (
    "type",
    "project_id",
    "private_key_id",
    "private_key",
    "client_email",
    "client_id",
    "token_uri",
)


class CredentialsFileInvalidError(Exception):
    """Raised when a credential file is missing or lacks required data."""


def _pem(key: str) -> str:
    # Keys pasted from the console often carry literal "\n" sequences.
    lines = key.replace("\\n", "\n").splitlines()
    return "\n".join(lines) + "\n"


def _read_payload(path: Path) -> Mapping[str, object]:
    try:
        text = path.read_text(encoding="utf-8-sig").strip()
    except OSError as exc:
        raise CredentialsFileInvalidError(f"Unable to read credential file {path}: {exc}") from exc
    if not text:
        raise CredentialsFileInvalidError(f"Credential file {path} is empty.")

    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise CredentialsFileInvalidError(f"Credential file {path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise CredentialsFileInvalidError(f"Credential file {path} must contain a JSON object.")
    return payload


def validate_service_account(payload: Mapping[str, object]) -> Dict[str, object]:
    """Return a copy of ``payload`` with a normalised private key.

    Every field in :data:`REQUIRED_FIELDS` must be a non-empty string and
    ``type`` must be ``service_account``.
    """

    blank = {name for name in REQUIRED_FIELDS if not str(payload.get(name) or "").strip()}
    if payload.get("type") != "service_account":
        blank.add("type")
    if blank:
        raise CredentialsFileInvalidError(f"Service account JSON is missing fields: {', '.join(sorted(blank))}")

    info = dict(payload)
    info["private_key"] = _pem(str(info["private_key"]))
    return info


def is_client_secret(payload: Mapping[str, object]) -> bool:
    return any(isinstance(payload.get(section), Mapping) for section in ("installed", "web"))


def _authorised_user(secret_path: Path, token_path: Optional[str], scopes: Sequence[str]):
    token_file = Path(token_path).expanduser() if token_path else None
    user_credentials = None
    if token_file is not None and token_file.exists():
        user_credentials = Credentials.from_authorized_user_file(str(token_file), list(scopes))
        if user_credentials.valid:
            return user_credentials

    if user_credentials is not None and user_credentials.expired and user_credentials.refresh_token:
        logger.info("Refreshing cached OAuth token %s", token_file)
        user_credentials.refresh(Request())
    else:
        logger.info("Starting OAuth consent flow for %s", secret_path)
        flow = InstalledAppFlow.from_client_secrets_file(str(secret_path), list(scopes))
        user_credentials = flow.run_local_server(port=0)

    if token_file is not None:
        token_file.parent.mkdir(parents=True, exist_ok=True)
        token_file.write_text(user_credentials.to_json(), encoding="utf-8")
    return user_credentials


def load_credentials(
    path: str,
    *,
    token_path: Optional[str] = None,
    scopes: Sequence[str] = SCOPES,
):
    """Return google-auth credentials from the file at ``path``."""

    credential_path = Path(path).expanduser()
    if not credential_path.is_file():
        raise CredentialsFileInvalidError(f"Credential file not found: {credential_path}")

    payload = _read_payload(credential_path)
    if is_client_secret(payload):
        logger.info("Using OAuth client secret %s", credential_path)
        return _authorised_user(credential_path, token_path, scopes)

    info = validate_service_account(payload)
    logger.info("Using service account %s", info["client_email"])
    return service_account.Credentials.from_service_account_info(info, scopes=list(scopes))


__all__ = [
    "CredentialsFileInvalidError",
    "REQUIRED_FIELDS",
    "SCOPES",
    "is_client_secret",
    "load_credentials",
    "validate_service_account",
]
