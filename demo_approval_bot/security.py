"""Slack request signature checks for the HTTP events endpoint."""

from __future__ import annotations

import hmac
import time
from hashlib import sha256
from typing import Mapping


SLACK_SIGNATURE_HEADER = "X-Slack-Signature"
SLACK_TIMESTAMP_HEADER = "X-Slack-Request-Timestamp"
VERSION = "v0"
DEFAULT_TOLERANCE = 60 * 5


def compute_signature(signing_secret: str, timestamp: str, body: str) -> str:
    """Return the ``v0=...`` signature Slack sends for *body*."""

    basestring = f"{VERSION}:{timestamp}:{body}".encode("utf-8")
    digest = hmac.new(signing_secret.encode("utf-8"), basestring, sha256).hexdigest()
    return f"{VERSION}={digest}"


def is_fresh_timestamp(timestamp: str, *, tolerance: int = DEFAULT_TOLERANCE) -> bool:
    try:
        request_ts = int(timestamp)
    except (TypeError, ValueError):
        return False
    return abs(int(time.time()) - request_ts) <= tolerance


def verify_slack_request(
    *,
    signing_secret: str,
    headers: Mapping[str, str],
    body: str,
    tolerance: int = DEFAULT_TOLERANCE,
) -> bool:
    """Return True when *headers* carry a fresh, valid signature for *body*."""

    timestamp = headers.get(SLACK_TIMESTAMP_HEADER, "")
    signature = headers.get(SLACK_SIGNATURE_HEADER, "")
    if not timestamp or not signature:
        return False

    if not is_fresh_timestamp(timestamp, tolerance=tolerance):
        return False

    expected = compute_signature(signing_secret, timestamp, body)
    return hmac.compare_digest(expected, signature)
