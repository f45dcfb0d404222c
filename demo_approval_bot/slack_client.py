"""Thin wrapper utilities around the Slack WebClient."""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Sequence

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError
import structlog

IMAGE_FILETYPES = frozenset({"jpg", "jpeg", "png", "heic", "webp"})
THREAD_HISTORY_LIMIT = 200

# Join failures that just mean there is nothing to do.
_BENIGN_JOIN_ERRORS = frozenset(
    {"already_in_channel", "method_not_supported_for_channel_type", "not_in_channel"}
)


def slack_error_code(exc: SlackApiError) -> str:
    """Return the Slack ``error`` code carried by *exc*, or its message."""

    response = getattr(exc, "response", None)
    if response is not None:
        try:
            code = response.get("error")
        except AttributeError:
            code = None
        if code:
            return str(code)
    return str(exc)


def is_image_file(file: Mapping[str, Any]) -> bool:
    mimetype = (file.get("mimetype") or "").lower()
    if mimetype.startswith("image/"):
        return True
    return (file.get("filetype") or "").lower() in IMAGE_FILETYPES


def find_first_image(messages: Iterable[Mapping[str, Any]]) -> Mapping[str, Any] | None:
    """Return the first image attachment across *messages*, if any."""

    for message in messages:
        for file in message.get("files") or []:
            if is_image_file(file):
                return file
    return None


class SlackClient:
    """Encapsulate Slack WebClient interactions for easier testing."""

    def __init__(self, *, token: str | None = None, client: WebClient | None = None) -> None:
        if client is None and token is None:
            raise ValueError("Either an instantiated client or a bot token must be provided.")

        self._client = client or WebClient(token=token)

    @property
    def client(self) -> WebClient:
        """Expose the underlying WebClient for advanced use cases."""

        return self._client

    def post_message(
        self,
        *,
        channel: str,
        text: str,
        blocks: Sequence[Mapping[str, Any]] | None = None,
        thread_ts: str | None = None,
    ) -> Mapping[str, Any]:
        """Post a message, optionally with Block Kit content or into a thread."""

        kwargs: dict[str, Any] = {"channel": channel, "text": text}
        if blocks is not None:
            kwargs["blocks"] = list(blocks)
        if thread_ts is not None:
            kwargs["thread_ts"] = thread_ts
        return self._client.chat_postMessage(**kwargs)

    def post_ephemeral(
        self,
        *,
        channel: str,
        user: str,
        text: str,
        thread_ts: str | None = None,
    ) -> Mapping[str, Any]:
        """Post a message only *user* can see."""

        kwargs: dict[str, Any] = {"channel": channel, "user": user, "text": text}
        if thread_ts is not None:
            kwargs["thread_ts"] = thread_ts
        return self._client.chat_postEphemeral(**kwargs)

    def update_message(
        self,
        *,
        channel: str,
        ts: str,
        text: str,
        blocks: Sequence[Mapping[str, Any]],
    ) -> Mapping[str, Any]:
        """Update an existing Slack message."""

        return self._client.chat_update(channel=channel, ts=ts, text=text, blocks=list(blocks))

    def get_permalink(self, *, channel: str, message_ts: str) -> str | None:
        response = self._client.chat_getPermalink(channel=channel, message_ts=message_ts)
        return response.get("permalink")

    def list_thread_messages(
        self,
        *,
        channel: str,
        thread_ts: str,
        limit: int = THREAD_HISTORY_LIMIT,
    ) -> List[Mapping[str, Any]]:
        """Return up to *limit* messages of a thread, parent included."""

        response = self._client.conversations_replies(channel=channel, ts=thread_ts, limit=limit)
        return list(response.get("messages") or [])

    def channel_label(self, channel: str) -> str:
        """Return ``#name`` for *channel*, falling back to a channel mention."""

        try:
            response = self._client.conversations_info(channel=channel)
        except SlackApiError as exc:
            structlog.get_logger().info(
                "channel_info_unavailable", channel=channel, error=slack_error_code(exc)
            )
            return f"<#{channel}>"

        name = (response.get("channel") or {}).get("name")
        return f"#{name}" if name else f"<#{channel}>"

    def ensure_in_channel(self, channel: str) -> bool:
        """Best-effort join so the bot can read and post in *channel*."""

        try:
            self._client.conversations_join(channel=channel)
        except SlackApiError as exc:
            code = slack_error_code(exc)
            if code not in _BENIGN_JOIN_ERRORS:
                structlog.get_logger().warning("channel_join_failed", channel=channel, error=code)
            return False
        return True
