"""Slack request signature verification (v0 HMAC-SHA256 scheme)."""

from __future__ import annotations

import hashlib
import hmac
import time
from typing import Mapping

from .payloads import InvalidSlackRequest

MAX_REQUEST_AGE_SECONDS = 60 * 5


def compute_signature(signing_secret: str, timestamp: str, body: str) -> str:
    basestring = f"v0:{timestamp}:{body}".encode()
    digest = hmac.new(signing_secret.encode(), basestring, hashlib.sha256).hexdigest()
    return f"v0={digest}"


def verify_slack_request(
    headers: Mapping[str, str],
    body: str,
    signing_secret: str,
    now: float | None = None,
) -> None:
    """Raise InvalidSlackRequest unless the request was signed by Slack recently."""
    lowered = {k.lower(): v for k, v in headers.items()}
    timestamp = lowered.get("x-slack-request-timestamp")
    signature = lowered.get("x-slack-signature")
    if timestamp is None:
        raise InvalidSlackRequest("Timestamp header missing")
    if signature is None:
        raise InvalidSlackRequest("Signature header missing")

    try:
        sent_at = int(timestamp)
    except ValueError:
        raise InvalidSlackRequest(f"Invalid timestamp header: {timestamp}") from None
    current = time.time() if now is None else now
    if abs(current - sent_at) > MAX_REQUEST_AGE_SECONDS:
        raise InvalidSlackRequest("Request timestamp is too old")

    expected = compute_signature(signing_secret, timestamp, body)
    if not hmac.compare_digest(expected, signature):
        raise InvalidSlackRequest("Verification failed. Signatures do not match.")
