"""Block Kit message builders for demo approval requests."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Sequence

from .actions import ActionPayload, encode_action_payload

REQUEST_APPROVAL_ACTION_ID = "request_approval"
APPROVE_ACTION_ID = "approve_demo"
DECLINE_ACTION_ID = "decline_demo"
MORE_INFO_ACTION_ID = "request_more_info"

APPROVED = "APPROVED"
DECLINED = "DECLINED"

DECISION_LABELS = {
    APPROVED: "APPROVED ✅",
    DECLINED: "DECLINED ❌",
}

SAFETY_NOTE = "Please see picture, there is suspect wet material behind the wall."

PROMPT_TEXT = (
    "Send a picture and I’ll request approval to remove. "
    "Upload 1–2 photos here in this thread, then press Request approval."
)
PROMPT_MRKDWN = (
    "*Send a picture and I’ll request approval to remove.*\n"
    "Upload 1–2 photos here in this thread, then press *Request approval*."
)
COMPACT_PROMPT_TEXT = "Add a photo and press Request approval."
MENTION_HINT_TEXT = (
    "Say what you need (e.g., *remove vanity*) then upload a photo and press *Request approval*."
)
PHOTO_REQUIRED_TEXT = "I need a photo in this thread before I can send the approval."
UNAUTHORIZED_APPROVER_TEXT = "Only designated approvers can take this action."
INVALID_PAYLOAD_TEXT = "This action payload is invalid. Please retry from the original message."
MENTION_ERROR_TEXT = "I hit a snag. Try again or ping a manager."
ACTION_ERROR_TEXT = "I hit a snag handling that click. Try again or ping a manager."


def _button(text: str, action_id: str, value: str, style: str | None = None) -> Dict[str, Any]:
    button: Dict[str, Any] = {
        "type": "button",
        "text": {"type": "plain_text", "text": text, "emoji": True},
        "action_id": action_id,
        "value": value,
    }
    if style:
        button["style"] = style
    return button


def build_approval_prompt(
    *,
    channel: str,
    thread_ts: str,
    item: str,
    compact: bool = False,
) -> Dict[str, Any]:
    """Ask the crew for a photo and offer the Request approval button.

    The compact form is used when an SLA answer was already posted to the
    thread and only the button needs to follow it.
    """

    value = encode_action_payload(ActionPayload(channel=channel, thread_ts=thread_ts, item=item))
    actions = {
        "type": "actions",
        "block_id": "demo_request_actions",
        "elements": [_button("Request approval", REQUEST_APPROVAL_ACTION_ID, value)],
    }

    if compact:
        return {"text": COMPACT_PROMPT_TEXT, "blocks": [actions]}

    return {
        "text": PROMPT_TEXT,
        "blocks": [
            {"type": "section", "text": {"type": "mrkdwn", "text": PROMPT_MRKDWN}},
            actions,
        ],
    }


def build_approval_card(
    *,
    crew_name: str,
    item: str,
    origin_label: str,
    permalink: str | None,
    payload: ActionPayload,
) -> Dict[str, Any]:
    """Build the message approvers act on."""

    lines = [
        f"*{crew_name} is requesting approval to remove {item}.*",
        SAFETY_NOTE,
        "",
        f"From {origin_label}",
    ]
    if permalink:
        lines.append(f"<{permalink}|Open original thread>")

    value = encode_action_payload(payload)
    blocks: List[Dict[str, Any]] = [
        {"type": "section", "text": {"type": "mrkdwn", "text": "\n".join(lines)}},
        {
            "type": "actions",
            "block_id": "demo_decision_buttons",
            "elements": [
                _button("Approve", APPROVE_ACTION_ID, value, style="primary"),
                _button("Decline", DECLINE_ACTION_ID, value, style="danger"),
                _button("Ask for more info", MORE_INFO_ACTION_ID, value),
            ],
        },
    ]

    return {
        "text": f"{crew_name} requests approval to remove {item}.",
        "blocks": blocks,
    }


def format_decided_at(decided_at: datetime) -> str:
    return decided_at.strftime("%Y-%m-%d %H:%M %Z").strip()


def build_decision_update(
    *,
    blocks: Sequence[Mapping[str, Any]],
    decision: str,
    decided_by: str,
    decided_at: datetime,
) -> Dict[str, Any]:
    """Return the approval card with its buttons replaced by a decision note."""

    label = DECISION_LABELS[decision]
    kept = [dict(block) for block in blocks if block.get("type") != "actions"]
    kept.append(
        {
            "type": "context",
            "elements": [
                {
                    "type": "mrkdwn",
                    "text": f"*{label}* by <@{decided_by}> • {format_decided_at(decided_at)}",
                }
            ],
        }
    )
    return {"text": f"{label} recorded", "blocks": kept}


def decision_verdict(decision: str, item: str) -> str:
    if decision == APPROVED:
        return f"Approved—proceed with *minimal demo* and full documentation for {item}."
    return f"Declined—hold demo on {item}."


def decision_notice(decision: str, item: str) -> str:
    return f"Decision on *{item}*: {DECISION_LABELS[decision]}"


def more_info_checklist(item: str) -> str:
    return (
        f"Need more info to decide on *{item}*:\n"
        "• Wide shot of area\n"
        "• Close-up of suspect wet material\n"
        "• Moisture reading photo (if available)\n"
        "• Note any utilities behind"
    )


def sent_for_approval_text(*, target_channel: str, origin_channel: str) -> str:
    if target_channel == origin_channel:
        return "Sent for approval in this thread’s channel. I’ll update here when there’s a decision."
    return f"Sent for approval in <#{target_channel}>. I’ll update here when there’s a decision."


def post_failure_text(*, target_channel: str, error: str) -> str:
    return (
        f"I couldn't post in <#{target_channel}>. Error: *{error}*.\n"
        "Invite me there and confirm the channel ID."
    )
