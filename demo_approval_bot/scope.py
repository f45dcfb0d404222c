"""Decide which Slack channels the bot answers in."""

from __future__ import annotations

from typing import Iterable


def is_channel_in_scope(
    channel_id: str | None,
    *,
    allowed_channel_ids: Iterable[str] = (),
    test_channel_id: str | None = None,
    allow_all: bool = False,
) -> bool:
    """Return True when the bot should act in *channel_id*.

    An explicit allow-list always wins. Without one, a configured test channel
    must match exactly. With neither configured every channel is in scope, so
    ``allow_all`` never widens a list or test-channel restriction.
    """

    allowed = {item.strip() for item in allowed_channel_ids if item and item.strip()}
    if allowed:
        return channel_id in allowed

    if test_channel_id:
        return channel_id == test_channel_id

    return True
