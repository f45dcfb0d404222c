"""Utilities for handling Slack interaction payloads."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable

PAYLOAD_VERSION = 1


@dataclass(frozen=True)
class ActionPayload:
    """Context carried by every interactive button the bot renders."""

    channel: str
    thread_ts: str
    item: str
    requester: str | None = None
    version: int = PAYLOAD_VERSION

    def with_requester(self, requester: str) -> "ActionPayload":
        return ActionPayload(
            channel=self.channel,
            thread_ts=self.thread_ts,
            item=self.item,
            requester=requester,
            version=self.version,
        )


def encode_action_payload(payload: ActionPayload) -> str:
    """Serialise *payload* into a compact button value."""

    data: Dict[str, Any] = {
        "v": payload.version,
        "channel": payload.channel,
        "thread_ts": payload.thread_ts,
        "item": payload.item,
    }
    if payload.requester is not None:
        data["requester"] = payload.requester
    return json.dumps(data, separators=(",", ":"))


def _require_text(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Invalid action payload.")
    return value


def parse_action_payload(raw_value: str | None, *, require_requester: bool = False) -> ActionPayload:
    """Parse a button value into an :class:`ActionPayload`.

    Values without a ``"v"`` tag are read as version 1 so that buttons posted
    before the tag existed keep working.
    """

    try:
        payload = json.loads(raw_value or "")
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid action payload.") from exc

    if not isinstance(payload, dict):
        raise ValueError("Invalid action payload.")

    version = payload.get("v", PAYLOAD_VERSION)
    if version != PAYLOAD_VERSION:
        raise ValueError("Unsupported action payload version.")

    requester = payload.get("requester")
    if requester is not None and (not isinstance(requester, str) or not requester):
        raise ValueError("Invalid action payload.")
    if require_requester and requester is None:
        raise ValueError("Invalid action payload.")

    return ActionPayload(
        channel=_require_text(payload, "channel"),
        thread_ts=_require_text(payload, "thread_ts"),
        item=_require_text(payload, "item"),
        requester=requester,
        version=version,
    )


def is_user_authorized(user_id: str, allowed_ids: Iterable[str]) -> bool:
    """Return True when the user is in the configured allow list."""

    normalized = {item.strip() for item in allowed_ids if item}
    return user_id in normalized
