"""
Rotating check-in codes.

A member's app shows ``member_id|window|signature`` as a QR code, where
``window`` is the current 10 second slot and the signature is an HMAC over
the first two parts. A scanner only accepts codes from the current window, so
a screenshot stops working within seconds.
"""
import base64
import hashlib
import hmac
import time
from typing import Dict, Optional

from chapterhub.config import CHECKIN_CODE_SECRET, CHECKIN_WINDOW_SECONDS


def _sign(member_id: str, window: int, secret: str) -> str:
    digest = hmac.new(secret.encode(), f"{member_id}|{window}".encode(), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


def window_for_time(timestamp: Optional[float] = None) -> int:
    if timestamp is None:
        timestamp = time.time()
    return int(timestamp // CHECKIN_WINDOW_SECONDS)


def generate_checkin_code(
    member_id: str, timestamp: Optional[float] = None, secret: str = CHECKIN_CODE_SECRET
) -> Dict[str, object]:
    window = window_for_time(timestamp)
    return {
        "code": f"{member_id}|{window}|{_sign(member_id, window, secret)}",
        "window": window,
        # epoch milliseconds, when the next window begins
        "expires_at": (window + 1) * CHECKIN_WINDOW_SECONDS * 1000,
    }


def verify_checkin_code(
    code: str, timestamp: Optional[float] = None, secret: str = CHECKIN_CODE_SECRET
) -> Optional[Dict[str, object]]:
    """Returns ``{"member_id", "window"}`` for a valid current code, else None."""
    parts = (code or "").split("|")
    if len(parts) != 3 or not all(parts):
        return None
    member_id, window_str, signature = parts
    try:
        window = int(window_str)
    except ValueError:
        return None
    if window != window_for_time(timestamp):
        return None
    if not hmac.compare_digest(_sign(member_id, window, secret), signature):
        return None
    return {"member_id": member_id, "window": window}
