"""Classify free-form mention text into demo requests."""

from __future__ import annotations

import re
from dataclasses import dataclass

DEFAULT_ITEM = "item"

_MENTION_RE = re.compile(r"<@[^>]+>")
_DEMO_RE = re.compile(r"remove|demo|cabinet|vanity|tear[\s-]?out|approval|approve", re.IGNORECASE)
_REMOVE_RE = re.compile(r"remove\s+([a-z0-9\-\s]+)", re.IGNORECASE)
# "remove the vanity" should yield "vanity", not "the vanity".
_LEADING_ARTICLE_RE = re.compile(r"^(?:the|a|an|this|that|these|those)\s+", re.IGNORECASE)
_LITERAL_ITEMS = ("vanity", "cabinet")


@dataclass(frozen=True)
class Intent:
    is_removal_request: bool
    item: str = DEFAULT_ITEM


def strip_mentions(text: str | None) -> str:
    """Drop ``<@U123>`` mention tokens and surrounding whitespace."""

    return _MENTION_RE.sub("", text or "").strip()


def extract_item(text: str | None) -> str:
    """Return the thing the crew wants removed, or ``"item"``."""

    text = text or ""
    match = _REMOVE_RE.search(text)
    if match:
        captured = _LEADING_ARTICLE_RE.sub("", match.group(1).strip()).strip()
        if captured:
            return captured

    lowered = text.lower()
    for literal in _LITERAL_ITEMS:
        if literal in lowered:
            return literal
    return DEFAULT_ITEM


def classify_text(text: str | None) -> Intent:
    text = text or ""
    return Intent(
        is_removal_request=bool(_DEMO_RE.search(text)),
        item=extract_item(text),
    )
