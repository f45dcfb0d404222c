"""Relay crew questions to an OpenAI assistant grounded in the SLA documents."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List

import openai
import structlog

from .config import AppSettings

SYSTEM_INSTRUCTIONS = (
    "You answer restoration crew SLA questions. Be concise (3–5 lines), "
    "demo-first, checklist style. When certain, include the clause/section or filename. "
    "Prefer carrier-specific guidance. If unsure, say so and request a clear photo and job #."
)
ASSISTANT_NAME = "SLA brain"
DEFAULT_AUDIENCE = "Crew"
STORE_FILE_LIMIT = 50

TERMINAL_RUN_STATUSES = frozenset({"completed", "failed", "cancelled", "expired", "incomplete"})

NOT_CONFIGURED_TEXT = "SLA brain is not configured yet (need OPENAI_API_KEY and SLA_VECTOR_STORE_ID)."
EMPTY_STORE_TEXT = "Your vector store has no processed files yet. Upload the SLA PDFs and try again."
NO_CLAUSE_TEXT = "I couldn’t find a clear clause. Add a photo or specify the carrier/program."
TIMEOUT_TEXT = "The SLA lookup took too long. Try again in a minute or ping a manager."
SNAG_TEXT = "I hit a snag reading the SLA. Double-check my API key and vector store, then try again."


class QAOutcome(str, Enum):
    ANSWERED = "answered"
    NOT_CONFIGURED = "not_configured"
    EMPTY_STORE = "empty_store"
    TIMEOUT = "timeout"
    FAILED = "failed"


@dataclass(frozen=True)
class QAResult:
    outcome: QAOutcome
    text: str

    @property
    def answered(self) -> bool:
        return self.outcome is QAOutcome.ANSWERED


@dataclass(frozen=True)
class PollOutcome:
    run: Any
    timed_out: bool

    @property
    def status(self) -> str | None:
        return getattr(self.run, "status", None)


class SlaConfigurationError(RuntimeError):
    """Raised when the OpenAI key or vector store id is missing."""


def poll_until_terminal(
    fetch: Callable[[], Any],
    *,
    interval: float,
    timeout: float,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> PollOutcome:
    """Call *fetch* until it returns a terminal run or *timeout* seconds pass.

    A timeout is reported through ``PollOutcome.timed_out`` rather than an
    exception so callers can tell it apart from a provider failure.
    """

    if interval <= 0 or timeout <= 0:
        raise ValueError("Polling interval and timeout must be greater than zero.")

    deadline = clock() + timeout
    while True:
        run = fetch()
        if getattr(run, "status", None) in TERMINAL_RUN_STATUSES:
            return PollOutcome(run=run, timed_out=False)
        if clock() >= deadline:
            return PollOutcome(run=run, timed_out=True)
        sleep(interval)


def extract_text(message: Any) -> str:
    """Join the text content blocks of an assistant message."""

    parts: List[str] = []
    for block in getattr(message, "content", None) or []:
        if getattr(block, "type", None) != "text":
            continue
        value = getattr(getattr(block, "text", None), "value", None)
        if value and value.strip():
            parts.append(value.strip())
    return "\n".join(parts)


class SlaRelay:
    """Answer questions through one cached assistant per vector store.

    The assistant is created lazily on the first question and reused until the
    configured vector store id changes.
    """

    def __init__(
        self,
        client: openai.OpenAI | None,
        *,
        vector_store_id: str | None,
        model: str = "gpt-5-mini",
        carrier_hint: str = "Contractor Connection",
        poll_interval: float = 0.8,
        timeout: float = 90.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._vector_store_id = vector_store_id
        self._model = model
        self._carrier_hint = carrier_hint
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self._assistant_id: str | None = None
        self._assistant_store_id: str | None = None

    @property
    def ready(self) -> bool:
        return bool(self._client is not None and self._vector_store_id)

    @property
    def vector_store_id(self) -> str | None:
        return self._vector_store_id

    @property
    def cached_assistant_id(self) -> str | None:
        return self._assistant_id

    def set_vector_store(self, vector_store_id: str | None) -> None:
        with self._lock:
            self._vector_store_id = vector_store_id

    def ask(
        self,
        question: str,
        *,
        audience: str = DEFAULT_AUDIENCE,
        carrier_hint: str | None = None,
    ) -> QAResult:
        """Return a short answer for *question*; never raises."""

        log = structlog.get_logger().bind(vector_store_id=self._vector_store_id)
        try:
            return self._ask(question, audience=audience, carrier_hint=carrier_hint, log=log)
        except SlaConfigurationError:
            log.warning("sla_not_configured")
            return QAResult(QAOutcome.NOT_CONFIGURED, NOT_CONFIGURED_TEXT)
        except openai.AuthenticationError as exc:
            log.error("sla_auth_failed", error=str(exc))
            return QAResult(QAOutcome.NOT_CONFIGURED, NOT_CONFIGURED_TEXT)
        except openai.OpenAIError as exc:
            log.error("sla_provider_error", error=str(exc), error_type=type(exc).__name__)
            return QAResult(QAOutcome.FAILED, SNAG_TEXT)
        except Exception:
            log.exception("sla_unexpected_error")
            return QAResult(QAOutcome.FAILED, SNAG_TEXT)

    def _require_ready(self) -> tuple[openai.OpenAI, str]:
        if self._client is None or not self._vector_store_id:
            raise SlaConfigurationError("OPENAI_API_KEY and SLA_VECTOR_STORE_ID are required.")
        return self._client, self._vector_store_id

    def _ask(self, question: str, *, audience: str, carrier_hint: str | None, log) -> QAResult:
        client, store_id = self._require_ready()

        page = client.vector_stores.files.list(vector_store_id=store_id, limit=STORE_FILE_LIMIT)
        file_ids = [item.id for item in (page.data or [])]
        if not file_ids:
            log.warning("sla_store_empty")
            return QAResult(QAOutcome.EMPTY_STORE, EMPTY_STORE_TEXT)

        assistant_id = self._ensure_assistant(client, store_id, log)
        hint = carrier_hint or self._carrier_hint
        prompt = f"Audience: {audience}\nCarrier/Program hint: {hint}\nQuestion: {question}"

        run = client.beta.threads.create_and_run(
            assistant_id=assistant_id,
            thread={"messages": [{"role": "user", "content": prompt}]},
        )
        log = log.bind(run_id=run.id, thread_id=run.thread_id)
        log.info("sla_run_created")

        outcome = poll_until_terminal(
            lambda: client.beta.threads.runs.retrieve(run.id, thread_id=run.thread_id),
            interval=self._poll_interval,
            timeout=self._timeout,
            sleep=self._sleep,
            clock=self._clock,
        )

        if outcome.timed_out:
            log.warning("sla_run_timeout", status=outcome.status, timeout=self._timeout)
            self._cancel_run(client, run, log)
            return QAResult(QAOutcome.TIMEOUT, TIMEOUT_TEXT)

        if outcome.status != "completed":
            last_error = getattr(outcome.run, "last_error", None)
            log.error(
                "sla_run_failed",
                status=outcome.status,
                error=getattr(last_error, "message", None),
                code=getattr(last_error, "code", None),
            )
            return QAResult(QAOutcome.FAILED, SNAG_TEXT)

        messages = client.beta.threads.messages.list(
            thread_id=run.thread_id,
            run_id=run.id,
            order="desc",
            limit=10,
        )
        answer = ""
        for message in messages.data or []:
            if getattr(message, "role", None) == "assistant":
                answer = extract_text(message)
                break

        if not answer:
            log.info("sla_answer_empty")
            return QAResult(QAOutcome.ANSWERED, NO_CLAUSE_TEXT)

        log.info("sla_answered", length=len(answer))
        return QAResult(QAOutcome.ANSWERED, answer)

    def _ensure_assistant(self, client: openai.OpenAI, store_id: str, log) -> str:
        # Held across the create call so concurrent first questions share one assistant.
        with self._lock:
            if self._assistant_id and self._assistant_store_id == store_id:
                return self._assistant_id

            if self._assistant_id:
                log.info("sla_assistant_invalidated", previous_store_id=self._assistant_store_id)

            assistant = client.beta.assistants.create(
                name=ASSISTANT_NAME,
                model=self._model,
                instructions=SYSTEM_INSTRUCTIONS,
                tools=[{"type": "file_search"}],
                tool_resources={"file_search": {"vector_store_ids": [store_id]}},
            )
            self._assistant_id = assistant.id
            self._assistant_store_id = store_id
            log.info("sla_assistant_created", assistant_id=assistant.id)
            return assistant.id

    def _cancel_run(self, client: openai.OpenAI, run: Any, log) -> None:
        try:
            client.beta.threads.runs.cancel(run.id, thread_id=run.thread_id)
        except openai.OpenAIError as exc:
            log.info("sla_run_cancel_failed", error=str(exc))


def build_relay(settings: AppSettings) -> SlaRelay:
    """Create the relay; without an API key it stays unready and answers nothing."""

    client = openai.OpenAI(api_key=settings.openai_api_key) if settings.openai_api_key else None
    return SlaRelay(
        client,
        vector_store_id=settings.vector_store_id,
        model=settings.qa_model,
        carrier_hint=settings.carrier_hint,
        poll_interval=settings.qa_poll_interval,
        timeout=settings.qa_timeout,
    )
