from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any


SESSION_TTL_SECONDS = 60 * 60 * 12
LOCAL_ADMIN_USERNAME = "admin"
AUTH_LOGGER = logging.getLogger("video_rental.auth")

_LOCK = threading.Lock()
_SESSIONS: dict[str, dict[str, Any]] = {}
_REVOKED_TOKENS: dict[str, float] = {}


def _require_session_secret() -> bytes:
    raw = (os.environ.get("SESSION_SIGNING_SECRET") or "").strip()
    if len(raw) < 32:
        raise RuntimeError("SESSION_SIGNING_SECRET must be set and at least 32 characters long.")
    return raw.encode("utf-8")


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _revoked_tokens_path() -> Path | None:
    raw = (os.environ.get("SESSION_REVOCATION_FILE") or "").strip()
    return Path(raw) if raw else None


def _load_revoked_tokens_unlocked() -> dict[str, float]:
    path = _revoked_tokens_path()
    if path is None:
        return dict(_REVOKED_TOKENS)
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        AUTH_LOGGER.warning("Revoked session file unreadable path=%s error=%s", path, exc)
        return {}
    if not isinstance(payload, dict):
        return {}
    out: dict[str, float] = {}
    for token, expires_at in payload.items():
        try:
            out[str(token)] = float(expires_at)
        except (TypeError, ValueError):
            continue
    return out


def _save_revoked_tokens_unlocked(tokens: dict[str, float]) -> None:
    path = _revoked_tokens_path()
    if path is None:
        _REVOKED_TOKENS.clear()
        _REVOKED_TOKENS.update(tokens)
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(tokens, ensure_ascii=True, indent=2), encoding="utf-8")


def _prune_expired(revoked: dict[str, float], now: float) -> bool:
    expired = [token for token, expires_at in revoked.items() if now >= expires_at]
    for token in expired:
        revoked.pop(token, None)
    return bool(expired)


def _decode_token(token: str, secret: bytes) -> dict[str, Any] | None:
    """Return the payload of a correctly signed token, or None."""
    try:
        encoded, encoded_sig = token.split(".", 1)
        expected_sig = hmac.new(secret, encoded.encode("ascii"), hashlib.sha256).digest()
        if not hmac.compare_digest(expected_sig, _b64decode(encoded_sig)):
            return None
        decoded = json.loads(_b64decode(encoded).decode("utf-8"))
    except (ValueError, UnicodeError):
        return None
    if not isinstance(decoded, dict):
        return None
    try:
        decoded["expiresAt"] = float(decoded.get("expiresAt") or 0.0)
    except (TypeError, ValueError):
        return None
    return decoded


def _load_staff_accounts() -> dict[str, str]:
    accounts: dict[str, str] = {}
    admin_password = (os.environ.get("LOCAL_ADMIN_PASSWORD") or "").strip()
    if admin_password:
        accounts[LOCAL_ADMIN_USERNAME] = admin_password
    # STAFF_ACCOUNTS="frontdesk:secret,night:other"
    for entry in (os.environ.get("STAFF_ACCOUNTS") or "").split(","):
        username, sep, password = entry.strip().partition(":")
        username = username.strip().lower()
        if not sep or not username or not password.strip():
            continue
        accounts.setdefault(username, password.strip())
    return accounts


def verify_staff_credentials(username: str, password: str) -> bool:
    expected = _load_staff_accounts().get((username or "").strip().lower())
    if not expected:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), (password or "").encode("utf-8"))


def create_session(payload: dict[str, Any]) -> str:
    secret = _require_session_secret()
    session_payload = dict(payload)
    session_payload["expiresAt"] = time.time() + SESSION_TTL_SECONDS
    body = json.dumps(session_payload, ensure_ascii=True, separators=(",", ":")).encode("utf-8")
    encoded = _b64encode(body)
    signature = hmac.new(secret, encoded.encode("ascii"), hashlib.sha256).digest()
    token = f"{encoded}.{_b64encode(signature)}"
    with _LOCK:
        _SESSIONS[token] = session_payload
    return token


def get_session(token: str | None) -> dict[str, Any] | None:
    if not token:
        return None
    decoded_session = _decode_token(token, _require_session_secret())
    if decoded_session is None:
        return None

    now = time.time()
    with _LOCK:
        revoked = _load_revoked_tokens_unlocked()
        if _prune_expired(revoked, now):
            _save_revoked_tokens_unlocked(revoked)
        if now >= decoded_session["expiresAt"] or token in revoked:
            _SESSIONS.pop(token, None)
            return None
        _SESSIONS[token] = decoded_session
        return dict(decoded_session)


def remove_session(token: str | None) -> bool:
    """Revoke a live session token. Unsigned or expired tokens are ignored."""
    if not token:
        return False
    decoded_session = _decode_token(token, _require_session_secret())
    now = time.time()
    with _LOCK:
        _SESSIONS.pop(token, None)
        revoked = _load_revoked_tokens_unlocked()
        changed = _prune_expired(revoked, now)
        recorded = decoded_session is not None and decoded_session["expiresAt"] > now
        if recorded:
            revoked[token] = decoded_session["expiresAt"]
            changed = True
        if changed:
            _save_revoked_tokens_unlocked(revoked)
    return recorded
