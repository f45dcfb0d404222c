"""Event handlers driving the photo → approval → decision flow."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Callable, Mapping
from uuid import uuid4

from slack_sdk.errors import SlackApiError
import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars

from .actions import ActionPayload, is_user_authorized, parse_action_payload
from .config import AppSettings
from .intent import classify_text, strip_mentions
from .messages import (
    ACTION_ERROR_TEXT,
    APPROVED,
    DECLINED,
    INVALID_PAYLOAD_TEXT,
    MENTION_ERROR_TEXT,
    MENTION_HINT_TEXT,
    PHOTO_REQUIRED_TEXT,
    UNAUTHORIZED_APPROVER_TEXT,
    build_approval_card,
    build_approval_prompt,
    build_decision_update,
    decision_notice,
    decision_verdict,
    more_info_checklist,
    post_failure_text,
    sent_for_approval_text,
)
from .qa import DEFAULT_AUDIENCE, SlaRelay
from .registry import ApprovalRecord, ApprovalRegistry
from .scope import is_channel_in_scope
from .slack_client import SlackClient, find_first_image, slack_error_code


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _action_channel(body: Mapping[str, Any]) -> str | None:
    channel = (body.get("channel") or {}).get("id")
    if channel:
        return channel
    return (body.get("container") or {}).get("channel_id")


class ApprovalWorkflow:
    """Orchestrate mentions and button clicks for demo approvals.

    Each public handler is an isolation boundary: failures are logged and,
    where a destination is known, answered with a short apology. Nothing is
    retried; the crew or approver simply clicks again.
    """

    def __init__(
        self,
        settings: AppSettings,
        *,
        registry: ApprovalRegistry,
        relay: SlaRelay,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._relay = relay
        self._clock = clock

    @property
    def registry(self) -> ApprovalRegistry:
        return self._registry

    @property
    def relay(self) -> SlaRelay:
        return self._relay

    def in_scope(self, channel_id: str | None) -> bool:
        return is_channel_in_scope(
            channel_id,
            allowed_channel_ids=self._settings.allowed_channel_ids,
            test_channel_id=self._settings.test_channel_id,
            allow_all=self._settings.allow_all_channels,
        )

    def approval_target(self, origin_channel: str) -> str:
        if self._settings.uses_central_approvals:
            return self._settings.approval_channel
        return origin_channel

    # -- mentions -----------------------------------------------------------

    def handle_mention(self, event: Mapping[str, Any], client, say) -> None:
        trace_id = str(uuid4())
        bind_contextvars(trace_id=trace_id)
        channel = event.get("channel")
        thread_ts = event.get("thread_ts") or event.get("ts")
        log = structlog.get_logger().bind(trace_id=trace_id, channel=channel, thread_ts=thread_ts)

        try:
            if not channel or not self.in_scope(channel):
                log.info("mention_out_of_scope")
                return

            SlackClient(client=client).ensure_in_channel(channel)

            text = strip_mentions(event.get("text"))
            intent = classify_text(text)
            log = log.bind(user_id=event.get("user"), item=intent.item)
            log.info("mention_received", is_removal_request=intent.is_removal_request)

            if self._relay.ready:
                result = self._relay.ask(text, audience=DEFAULT_AUDIENCE)
                log.info("sla_reply", outcome=result.outcome.value)
                say(text=result.text, thread_ts=thread_ts)

                if intent.is_removal_request:
                    prompt = build_approval_prompt(
                        channel=channel, thread_ts=thread_ts, item=intent.item, compact=True
                    )
                    say(text=prompt["text"], blocks=prompt["blocks"], thread_ts=thread_ts)
                return

            if intent.is_removal_request:
                prompt = build_approval_prompt(channel=channel, thread_ts=thread_ts, item=intent.item)
                say(text=prompt["text"], blocks=prompt["blocks"], thread_ts=thread_ts)
                log.info("approval_prompt_sent")
                return

            say(text=MENTION_HINT_TEXT, thread_ts=thread_ts)
        except Exception:
            log.exception("mention_failed")
            try:
                say(text=MENTION_ERROR_TEXT, thread_ts=thread_ts)
            except SlackApiError as exc:
                log.error("mention_apology_failed", error=slack_error_code(exc))
        finally:
            unbind_contextvars("trace_id")

    # -- crew clicks "Request approval" -------------------------------------

    def handle_request_approval(self, ack, body: Mapping[str, Any], client) -> None:
        ack()
        trace_id = str(uuid4())
        bind_contextvars(trace_id=trace_id)
        user_id = (body.get("user") or {}).get("id")
        log = structlog.get_logger().bind(trace_id=trace_id, user_id=user_id)
        slack = SlackClient(client=client)

        try:
            payload = self._parse_action(body, slack, user_id, log)
            if payload is None or not user_id:
                return

            log = log.bind(channel=payload.channel, thread_ts=payload.thread_ts, item=payload.item)
            log.info("approval_requested")

            messages = slack.list_thread_messages(channel=payload.channel, thread_ts=payload.thread_ts)
            if find_first_image(messages) is None:
                slack.post_ephemeral(
                    channel=payload.channel,
                    user=user_id,
                    thread_ts=payload.thread_ts,
                    text=PHOTO_REQUIRED_TEXT,
                )
                log.info("approval_photo_missing", message_count=len(messages))
                return

            permalink = slack.get_permalink(channel=payload.channel, message_ts=payload.thread_ts)
            card = build_approval_card(
                crew_name=self._settings.crew_name,
                item=payload.item,
                origin_label=slack.channel_label(payload.channel),
                permalink=permalink,
                payload=payload.with_requester(user_id),
            )

            target = self.approval_target(payload.channel)
            if target != payload.channel:
                slack.ensure_in_channel(target)

            try:
                response = slack.post_message(channel=target, text=card["text"], blocks=card["blocks"])
            except SlackApiError as exc:
                error_code = slack_error_code(exc)
                log.error("approval_card_post_failed", target_channel=target, error=error_code)
                slack.post_message(
                    channel=payload.channel,
                    thread_ts=payload.thread_ts,
                    text=post_failure_text(target_channel=target, error=error_code),
                )
                return

            card_ts = response.get("ts")
            if card_ts:
                self._registry.put(
                    card_ts,
                    ApprovalRecord(
                        origin_channel=payload.channel,
                        origin_thread_ts=payload.thread_ts,
                        requester_id=user_id,
                        item=payload.item,
                    ),
                )
            else:
                log.warning("approval_card_missing_ts", target_channel=target)

            slack.post_message(
                channel=payload.channel,
                thread_ts=payload.thread_ts,
                text=sent_for_approval_text(target_channel=target, origin_channel=payload.channel),
            )
            log.info("approval_card_posted", target_channel=target, card_ts=card_ts)
        except Exception:
            log.exception("request_approval_failed")
            self._apologise(slack, body, user_id, log)
        finally:
            unbind_contextvars("trace_id")

    # -- approvers click Approve / Decline ----------------------------------

    def handle_approve(self, ack, body: Mapping[str, Any], client) -> None:
        self.handle_decision(APPROVED, ack, body, client)

    def handle_decline(self, ack, body: Mapping[str, Any], client) -> None:
        self.handle_decision(DECLINED, ack, body, client)

    def handle_decision(self, decision: str, ack, body: Mapping[str, Any], client) -> None:
        ack()
        trace_id = str(uuid4())
        bind_contextvars(trace_id=trace_id)
        user_id = (body.get("user") or {}).get("id")
        log = structlog.get_logger().bind(trace_id=trace_id, user_id=user_id, decision=decision)
        slack = SlackClient(client=client)

        try:
            payload = self._parse_action(body, slack, user_id, log, require_requester=True)
            if payload is None or not user_id:
                return

            log = log.bind(channel=payload.channel, thread_ts=payload.thread_ts, item=payload.item)
            card_channel = _action_channel(body)

            approvers = self._settings.approver_ids
            if approvers and not is_user_authorized(user_id, approvers):
                if card_channel:
                    slack.post_ephemeral(channel=card_channel, user=user_id, text=UNAUTHORIZED_APPROVER_TEXT)
                log.warning("unauthorized_attempt")
                return

            message = body.get("message") or {}
            card_ts = message.get("ts")
            if card_channel and card_ts:
                update = build_decision_update(
                    blocks=message.get("blocks") or [],
                    decision=decision,
                    decided_by=user_id,
                    decided_at=self._clock(),
                )
                slack.update_message(
                    channel=card_channel,
                    ts=card_ts,
                    text=update["text"],
                    blocks=update["blocks"],
                )
            else:
                log.warning("approval_card_reference_missing")

            slack.post_message(
                channel=payload.channel,
                thread_ts=payload.thread_ts,
                text=decision_verdict(decision, payload.item),
            )
            slack.post_ephemeral(
                channel=payload.channel,
                user=payload.requester,
                thread_ts=payload.thread_ts,
                text=decision_notice(decision, payload.item),
            )
            log.info("decision_recorded", card_ts=card_ts, requester=payload.requester)
        except Exception:
            log.exception("decision_failed")
            self._apologise(slack, body, user_id, log)
        finally:
            unbind_contextvars("trace_id")

    # -- approvers ask for more info ----------------------------------------

    def handle_more_info(self, ack, body: Mapping[str, Any], client) -> None:
        ack()
        trace_id = str(uuid4())
        bind_contextvars(trace_id=trace_id)
        user_id = (body.get("user") or {}).get("id")
        log = structlog.get_logger().bind(trace_id=trace_id, user_id=user_id)
        slack = SlackClient(client=client)

        try:
            payload = self._parse_action(body, slack, user_id, log)
            if payload is None:
                return

            slack.post_message(
                channel=payload.channel,
                thread_ts=payload.thread_ts,
                text=more_info_checklist(payload.item),
            )
            log.info("more_info_requested", channel=payload.channel, item=payload.item)
        except Exception:
            log.exception("more_info_failed")
            self._apologise(slack, body, user_id, log)
        finally:
            unbind_contextvars("trace_id")

    # -- helpers --------------------------------------------------------------

    def _parse_action(
        self,
        body: Mapping[str, Any],
        slack: SlackClient,
        user_id: str | None,
        log,
        *,
        require_requester: bool = False,
    ) -> ActionPayload | None:
        actions = body.get("actions") or []
        if not actions:
            log.warning("action_missing_payload")
            return None

        try:
            return parse_action_payload(actions[0].get("value"), require_requester=require_requester)
        except ValueError:
            log.warning("invalid_action_payload")
            channel = _action_channel(body)
            if channel and user_id:
                slack.post_ephemeral(channel=channel, user=user_id, text=INVALID_PAYLOAD_TEXT)
            return None

    def _apologise(self, slack: SlackClient, body: Mapping[str, Any], user_id: str | None, log) -> None:
        channel = _action_channel(body)
        if not channel or not user_id:
            return
        try:
            slack.post_ephemeral(channel=channel, user=user_id, text=ACTION_ERROR_TEXT)
        except SlackApiError as exc:
            log.error("action_apology_failed", error=slack_error_code(exc))
