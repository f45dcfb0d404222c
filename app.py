"""Application entry point for the demo approval bot."""

from __future__ import annotations

import os
from importlib.metadata import PackageNotFoundError, version
from uuid import uuid4

from flask import Flask, jsonify, request, copy_current_request_context
from slack_bolt import App as SlackApp
from slack_bolt.adapter.flask import SlackRequestHandler
from slack_bolt.adapter.socket_mode import SocketModeHandler
import structlog

from demo_approval_bot.background import run_async
from demo_approval_bot.config import AppSettings, get_settings
from demo_approval_bot.logging_config import configure_logging
from demo_approval_bot.messages import (
    APPROVE_ACTION_ID,
    DECLINE_ACTION_ID,
    MORE_INFO_ACTION_ID,
    REQUEST_APPROVAL_ACTION_ID,
)
from demo_approval_bot.qa import build_relay
from demo_approval_bot.registry import ApprovalRegistry
from demo_approval_bot.security import verify_slack_request
from demo_approval_bot.workflow import ApprovalWorkflow

DEFAULT_PORT = 3000

_LOGGING_CONFIGURED = False


def _ensure_logging() -> None:
    global _LOGGING_CONFIGURED
    if not _LOGGING_CONFIGURED:
        configure_logging()
        _LOGGING_CONFIGURED = True


def _load_version() -> str:
    try:
        return version("demo-approval-bot")
    except PackageNotFoundError:
        return "unknown"


def build_workflow(settings: AppSettings) -> ApprovalWorkflow:
    relay = build_relay(settings)
    structlog.get_logger().info(
        "sla_brain_status",
        ready=relay.ready,
        vector_store_id=settings.vector_store_id or "none",
    )
    return ApprovalWorkflow(settings, registry=ApprovalRegistry(), relay=relay)


def _register_event_logger(bolt_app: SlackApp) -> None:
    @bolt_app.middleware
    def log_inbound(body, next):
        event = body.get("event") or {}
        structlog.get_logger().info(
            "slack_inbound",
            type=event.get("type") or body.get("type"),
            channel=event.get("channel") or (body.get("channel") or {}).get("id"),
        )
        return next()


def _register_handlers(bolt_app: SlackApp, workflow: ApprovalWorkflow) -> None:
    @bolt_app.event("app_mention")
    def handle_mention(event, client, say):
        workflow.handle_mention(event=event, client=client, say=say)

    @bolt_app.action(REQUEST_APPROVAL_ACTION_ID)
    def handle_request_approval(ack, body, client):
        workflow.handle_request_approval(ack=ack, body=body, client=client)

    @bolt_app.action(APPROVE_ACTION_ID)
    def handle_approve(ack, body, client):
        workflow.handle_approve(ack=ack, body=body, client=client)

    @bolt_app.action(DECLINE_ACTION_ID)
    def handle_decline(ack, body, client):
        workflow.handle_decline(ack=ack, body=body, client=client)

    @bolt_app.action(MORE_INFO_ACTION_ID)
    def handle_more_info(ack, body, client):
        workflow.handle_more_info(ack=ack, body=body, client=client)


def create_bolt_app(settings: AppSettings, workflow: ApprovalWorkflow) -> SlackApp:
    """Initialise the Slack Bolt application with every listener registered."""

    bolt_app = SlackApp(
        token=settings.bot_token,
        signing_secret=settings.signing_secret,
        token_verification_enabled=False,
    )
    _register_event_logger(bolt_app)
    _register_handlers(bolt_app, workflow)
    return bolt_app


def _register_error_handlers(flask_app: Flask) -> None:
    """Register a JSON error handler that attaches a trace identifier."""

    @flask_app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):  # type: ignore[override]
        trace_id = str(uuid4())
        structlog.get_logger().error("unhandled_http_error", trace_id=trace_id, exc_info=error)
        response = jsonify({"error": "internal_server_error", "trace_id": trace_id})
        response.status_code = 500
        return response


def create_app() -> Flask:
    """Create the Flask application serving Slack's HTTP event delivery."""

    _ensure_logging()
    settings = get_settings()
    workflow = build_workflow(settings)
    bolt_app = create_bolt_app(settings, workflow)
    handler = SlackRequestHandler(bolt_app)

    flask_app = Flask(__name__)
    flask_app.config["APP_VERSION"] = _load_version()
    flask_app.extensions["approval_workflow"] = workflow
    _register_error_handlers(flask_app)

    @flask_app.route("/slack/events", methods=["POST"])
    def slack_events():
        raw_body = request.get_data(as_text=True)
        if not verify_slack_request(
            signing_secret=settings.signing_secret,
            headers=request.headers,
            body=raw_body,
        ):
            response = jsonify({"error": "invalid_signature"})
            response.status_code = 401
            return response

        @copy_current_request_context
        def process_request():
            handler.handle(request)

        run_async(process_request, trace_id=str(uuid4()))
        return "", 200

    @flask_app.route("/healthz", methods=["GET"])
    def healthz():
        health: dict[str, object] = {"ok": True}
        health["version"] = flask_app.config.get("APP_VERSION", "unknown")

        try:
            get_settings()
            health["config"] = "valid"
        except RuntimeError as exc:
            health["config"] = "invalid"
            health["config_error"] = str(exc)
            health["ok"] = False

        health["sla"] = "ready" if workflow.relay.ready else "disabled"
        health["approvals_posted"] = len(workflow.registry)
        status = 200 if health["ok"] else 503
        return jsonify(health), status

    return flask_app


def main() -> None:
    """Run over Socket Mode when an app token is configured, else serve HTTP."""

    _ensure_logging()
    settings = get_settings()
    log = structlog.get_logger()

    if settings.app_token:
        bolt_app = create_bolt_app(settings, build_workflow(settings))
        log.info("approval_bot_starting", mode="socket")
        SocketModeHandler(bolt_app, settings.app_token).start()
        return

    port = int(os.environ.get("PORT", DEFAULT_PORT))
    log.info("approval_bot_starting", mode="http", port=port)
    create_app().run(host="0.0.0.0", port=port)


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    main()
