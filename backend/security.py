import base64
import hashlib
import hmac
import json
from datetime import datetime
from typing import TypedDict

import backend.config as config


class ScanClaims(TypedDict):
    sessionId: int
    issuedAtMillis: int
    teacherId: str


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(payload_b64: str) -> str:
    digest = hmac.new(
        config.SIGNING_KEY.encode("utf-8"),
        payload_b64.encode("ascii"),
        hashlib.sha256,
    ).digest()
    return _b64url_encode(digest)


def to_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def issue_scan_token(session_id: int, teacher_id: str, issued_at: datetime) -> tuple[str, ScanClaims]:
    claims: ScanClaims = {
        "sessionId": int(session_id),
        "issuedAtMillis": to_millis(issued_at),
        "teacherId": teacher_id,
    }
    payload_json = json.dumps(claims, separators=(",", ":"), sort_keys=True)
    payload_b64 = _b64url_encode(payload_json.encode("utf-8"))
    token = f"{payload_b64}.{_sign(payload_b64)}"
    return token, claims


def decode_scan_token(token: str | None) -> ScanClaims | None:
    """
    Parse and verify a scanned token string. Returns None for anything that
    is not a well-formed token signed by this deployment; expiry is judged
    by the caller.
    """
    if not token or not isinstance(token, str):
        return None

    candidate = token.strip()
    if "." not in candidate:
        return None

    payload_b64, signature = candidate.split(".", 1)
    try:
        expected = _sign(payload_b64)
    except UnicodeEncodeError:
        return None
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("ascii")):
        return None

    try:
        payload_raw = _b64url_decode(payload_b64).decode("utf-8")
        payload = json.loads(payload_raw)
    except (ValueError, UnicodeDecodeError):
        return None

    if not isinstance(payload, dict):
        return None

    session_id = payload.get("sessionId")
    issued_at = payload.get("issuedAtMillis")
    teacher_id = payload.get("teacherId")
    if not isinstance(session_id, int) or isinstance(session_id, bool):
        return None
    if not isinstance(issued_at, int) or isinstance(issued_at, bool):
        return None
    if not isinstance(teacher_id, str) or not teacher_id.strip():
        return None

    return {
        "sessionId": session_id,
        "issuedAtMillis": issued_at,
        "teacherId": teacher_id,
    }
