"""Pydantic-based configuration helpers for the demo approval bot."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Iterable, List

from pydantic import BaseModel, Field, ValidationError, field_validator

SAME_CHANNEL = "SAME"


class AppSettings(BaseModel):
    """Settings required to initialise the Slack bot and the SLA relay."""

    bot_token: str = Field(..., alias="SLACK_BOT_TOKEN")
    signing_secret: str = Field(..., alias="SLACK_SIGNING_SECRET")
    app_token: str | None = Field(None, alias="SLACK_APP_TOKEN")

    openai_api_key: str | None = Field(None, alias="OPENAI_API_KEY")
    vector_store_id: str | None = Field(None, alias="SLA_VECTOR_STORE_ID")
    carrier_hint: str = Field("Contractor Connection", alias="SLA_HINT")
    qa_model: str = Field("gpt-5-mini", alias="SLA_MODEL")
    qa_poll_interval: float = Field(0.8, alias="SLA_POLL_INTERVAL")
    qa_timeout: float = Field(90.0, alias="SLA_TIMEOUT")

    crew_name: str = Field("Crew", alias="CREW_NAME")
    approval_channel: str = Field(SAME_CHANNEL, alias="APPROVAL_CHANNEL_ID")
    allowed_channel_ids: List[str] = Field(default_factory=list, alias="ALLOWED_CHANNEL_IDS")
    test_channel_id: str | None = Field(None, alias="TEST_CHANNEL_ID")
    allow_all_channels: bool = Field(False, alias="ALLOW_ALL_CHANNELS")
    approver_ids: List[str] = Field(default_factory=list, alias="APPROVER_IDS")

    @field_validator("allowed_channel_ids", "approver_ids", mode="before")
    @classmethod
    def _split_ids(cls, value: str | list[str] | None) -> list[str]:
        if value is None:
            return []
        if isinstance(value, list):
            return [item.strip() for item in value if item.strip()]
        return [item.strip() for item in value.split(",") if item.strip()]

    @field_validator(
        "app_token",
        "openai_api_key",
        "vector_store_id",
        "test_channel_id",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("carrier_hint", "qa_model", "crew_name", mode="before")
    @classmethod
    def _strip_text(cls, value: str) -> str:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("approval_channel", mode="before")
    @classmethod
    def _normalise_approval_channel(cls, value: str | None) -> str:
        if value is None:
            return SAME_CHANNEL
        cleaned = str(value).strip()
        if not cleaned or cleaned.upper() == SAME_CHANNEL:
            return SAME_CHANNEL
        return cleaned

    @field_validator("allow_all_channels", mode="before")
    @classmethod
    def _parse_flag(cls, value: str | bool | None) -> bool:
        if isinstance(value, bool):
            return value
        return str(value or "").strip().lower() == "true"

    @field_validator("qa_poll_interval", "qa_timeout")
    @classmethod
    def _ensure_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("SLA polling values must be greater than zero")
        return value

    @property
    def uses_central_approvals(self) -> bool:
        return self.approval_channel != SAME_CHANNEL

    @property
    def sla_configured(self) -> bool:
        return bool(self.openai_api_key and self.vector_store_id)


def _format_missing(fields: Iterable[str]) -> str:
    """Return a human-friendly comma-separated list of missing env vars."""

    unique: List[str] = []
    for field in fields:
        if field not in unique:
            unique.append(field)
    return ", ".join(unique)


@lru_cache()
def get_settings() -> AppSettings:
    """Fetch and cache settings from environment variables."""

    try:
        return AppSettings.model_validate(os.environ)
    except ValidationError as exc:
        missing = [str(error["loc"][0]) for error in exc.errors() if error["type"] == "missing"]
        if missing:
            message = (
                "Missing required environment variables: "
                f"{_format_missing(missing)}"
            )
        else:
            invalid = [str(error["loc"][0]) for error in exc.errors()]
            message = f"Invalid environment variables: {_format_missing(invalid)}"
        raise RuntimeError(message) from exc
