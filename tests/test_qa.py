"""Tests for the SLA question relay."""

from pathlib import Path
import sys
from types import SimpleNamespace

import openai
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from demo_approval_bot import config  # noqa: E402
from demo_approval_bot.qa import (  # noqa: E402
    EMPTY_STORE_TEXT,
    NO_CLAUSE_TEXT,
    NOT_CONFIGURED_TEXT,
    SNAG_TEXT,
    SYSTEM_INSTRUCTIONS,
    TIMEOUT_TEXT,
    QAOutcome,
    SlaRelay,
    build_relay,
    extract_text,
    poll_until_terminal,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _text_message(*values, role="assistant"):
    content = [SimpleNamespace(type="text", text=SimpleNamespace(value=value)) for value in values]
    return SimpleNamespace(role=role, content=content)


class FakeRuns:
    def __init__(self, statuses) -> None:
        self.statuses = list(statuses)
        self.retrieved = 0
        self.cancelled: list[str] = []

    def retrieve(self, run_id, *, thread_id):
        status = self.statuses[min(self.retrieved, len(self.statuses) - 1)]
        self.retrieved += 1
        last_error = SimpleNamespace(code="rate_limit_exceeded", message="quota") if status == "failed" else None
        return SimpleNamespace(id=run_id, thread_id=thread_id, status=status, last_error=last_error)

    def cancel(self, run_id, *, thread_id):
        self.cancelled.append(run_id)
        return SimpleNamespace(id=run_id, thread_id=thread_id, status="cancelling")


class FakeOpenAI:
    def __init__(self, *, files=("file-1",), statuses=("completed",), messages=None, list_error=None) -> None:
        self.files = list(files)
        self.list_error = list_error
        self.messages = messages if messages is not None else [_text_message("Clause 4.2: demo only wet material.")]
        self.file_list_calls: list[dict] = []
        self.assistants: list[dict] = []
        self.runs_created: list[dict] = []
        self.runs = FakeRuns(statuses)
        self.vector_stores = SimpleNamespace(files=SimpleNamespace(list=self._list_files))
        self.beta = SimpleNamespace(
            assistants=SimpleNamespace(create=self._create_assistant),
            threads=SimpleNamespace(
                create_and_run=self._create_and_run,
                runs=self.runs,
                messages=SimpleNamespace(list=self._list_messages),
            ),
        )

    def _list_files(self, **kwargs):
        self.file_list_calls.append(kwargs)
        if self.list_error is not None:
            raise self.list_error
        return SimpleNamespace(data=[SimpleNamespace(id=file_id) for file_id in self.files])

    def _create_assistant(self, **kwargs):
        self.assistants.append(kwargs)
        return SimpleNamespace(id=f"asst_{len(self.assistants)}")

    def _create_and_run(self, **kwargs):
        self.runs_created.append(kwargs)
        return SimpleNamespace(id=f"run_{len(self.runs_created)}", thread_id="thread_1", status="queued")

    def _list_messages(self, **kwargs):
        return SimpleNamespace(data=list(self.messages))


def _relay(client, *, store="vs_1", timeout=5.0, interval=1.0, clock=None):
    clock = clock or FakeClock()
    return SlaRelay(
        client,
        vector_store_id=store,
        model="gpt-test",
        carrier_hint="Contractor Connection",
        poll_interval=interval,
        timeout=timeout,
        sleep=clock.sleep,
        clock=clock,
    )


def test_poll_returns_first_terminal_run():
    clock = FakeClock()
    statuses = iter(["queued", "in_progress", "completed"])

    outcome = poll_until_terminal(
        lambda: SimpleNamespace(status=next(statuses)),
        interval=0.8,
        timeout=90,
        sleep=clock.sleep,
        clock=clock,
    )

    assert outcome.timed_out is False
    assert outcome.status == "completed"
    assert clock.sleeps == [0.8, 0.8]


def test_poll_reports_timeout_instead_of_raising():
    clock = FakeClock()

    outcome = poll_until_terminal(
        lambda: SimpleNamespace(status="in_progress"),
        interval=1,
        timeout=3,
        sleep=clock.sleep,
        clock=clock,
    )

    assert outcome.timed_out is True
    assert outcome.status == "in_progress"
    assert clock.now == 3


def test_poll_rejects_non_positive_window():
    with pytest.raises(ValueError):
        poll_until_terminal(lambda: None, interval=0, timeout=1)


def test_extract_text_joins_text_blocks_only():
    message = SimpleNamespace(
        content=[
            SimpleNamespace(type="text", text=SimpleNamespace(value="Line one")),
            SimpleNamespace(type="image_file", image_file=SimpleNamespace(file_id="f")),
            SimpleNamespace(type="text", text=SimpleNamespace(value=" Line two ")),
        ]
    )

    assert extract_text(message) == "Line one\nLine two"


def test_not_configured_without_client_or_store():
    assert _relay(None).ready is False
    assert _relay(FakeOpenAI(), store=None).ready is False

    result = _relay(None).ask("what is the SLA?")

    assert result.outcome is QAOutcome.NOT_CONFIGURED
    assert result.text == NOT_CONFIGURED_TEXT


def test_empty_store_short_circuits_before_creating_assistant():
    client = FakeOpenAI(files=())

    result = _relay(client).ask("what is the SLA?")

    assert result.outcome is QAOutcome.EMPTY_STORE
    assert result.text == EMPTY_STORE_TEXT
    assert client.assistants == []
    assert client.file_list_calls == [{"vector_store_id": "vs_1", "limit": 50}]


def test_answer_uses_assistant_bound_to_store():
    client = FakeOpenAI(messages=[_text_message("Clause 4.2", "Take a moisture photo.")])

    result = _relay(client).ask("can we pull the vanity?", audience="Crew")

    assert result.answered
    assert result.text == "Clause 4.2\nTake a moisture photo."
    (assistant,) = client.assistants
    assert assistant["instructions"] == SYSTEM_INSTRUCTIONS
    assert assistant["model"] == "gpt-test"
    assert assistant["tools"] == [{"type": "file_search"}]
    assert assistant["tool_resources"] == {"file_search": {"vector_store_ids": ["vs_1"]}}
    (run,) = client.runs_created
    assert run["assistant_id"] == "asst_1"
    prompt = run["thread"]["messages"][0]["content"]
    assert prompt == "Audience: Crew\nCarrier/Program hint: Contractor Connection\nQuestion: can we pull the vanity?"


def test_carrier_hint_can_be_overridden_per_question():
    client = FakeOpenAI()

    _relay(client).ask("q", carrier_hint="Alacrity")

    assert "Carrier/Program hint: Alacrity" in client.runs_created[0]["thread"]["messages"][0]["content"]


def test_assistant_is_reused_for_same_store():
    client = FakeOpenAI()
    relay = _relay(client)

    relay.ask("first")
    relay.ask("second")

    assert len(client.assistants) == 1
    assert len(client.runs_created) == 2
    assert relay.cached_assistant_id == "asst_1"


def test_store_change_creates_new_assistant():
    client = FakeOpenAI()
    relay = _relay(client)

    relay.ask("first")
    relay.set_vector_store("vs_2")
    relay.ask("second")

    assert len(client.assistants) == 2
    assert client.assistants[1]["tool_resources"] == {"file_search": {"vector_store_ids": ["vs_2"]}}
    assert client.runs_created[1]["assistant_id"] == "asst_2"


def test_empty_answer_falls_back_to_no_clause_text():
    client = FakeOpenAI(messages=[_text_message("   ")])

    result = _relay(client).ask("q")

    assert result.outcome is QAOutcome.ANSWERED
    assert result.text == NO_CLAUSE_TEXT


def test_user_messages_are_not_mistaken_for_answers():
    client = FakeOpenAI(messages=[_text_message("my own question", role="user")])

    assert _relay(client).ask("q").text == NO_CLAUSE_TEXT


def test_timeout_is_distinct_and_cancels_run():
    client = FakeOpenAI(statuses=("in_progress",))

    result = _relay(client, timeout=3, interval=1).ask("q")

    assert result.outcome is QAOutcome.TIMEOUT
    assert result.text == TIMEOUT_TEXT
    assert result.text not in (NOT_CONFIGURED_TEXT, SNAG_TEXT)
    assert client.runs.cancelled == ["run_1"]


def test_failed_run_reports_snag():
    client = FakeOpenAI(statuses=("queued", "failed"))

    result = _relay(client).ask("q")

    assert result.outcome is QAOutcome.FAILED
    assert result.text == SNAG_TEXT


def test_provider_error_is_converted_not_raised():
    client = FakeOpenAI(list_error=openai.OpenAIError("vector store not found"))

    result = _relay(client).ask("q")

    assert result.outcome is QAOutcome.FAILED
    assert result.text == SNAG_TEXT


def test_authentication_error_reads_as_not_configured():
    response = SimpleNamespace(status_code=401, request=SimpleNamespace(method="GET"), headers={})
    client = FakeOpenAI(list_error=openai.AuthenticationError("bad key", response=response, body=None))

    result = _relay(client).ask("q")

    assert result.outcome is QAOutcome.NOT_CONFIGURED


def test_build_relay_without_key_is_not_ready(monkeypatch):
    monkeypatch.setenv("SLACK_BOT_TOKEN", "token")
    monkeypatch.setenv("SLACK_SIGNING_SECRET", "secret")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("SLA_VECTOR_STORE_ID", "vs_1")
    config.get_settings.cache_clear()

    relay = build_relay(config.get_settings())

    assert relay.ready is False
    assert relay.vector_store_id == "vs_1"
    config.get_settings.cache_clear()


def test_build_relay_with_key_and_store_is_ready(monkeypatch):
    monkeypatch.setenv("SLACK_BOT_TOKEN", "token")
    monkeypatch.setenv("SLACK_SIGNING_SECRET", "secret")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("SLA_VECTOR_STORE_ID", "vs_1")
    config.get_settings.cache_clear()

    assert build_relay(config.get_settings()).ready is True
    config.get_settings.cache_clear()
