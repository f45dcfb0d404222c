"""In-memory bookkeeping for posted approval cards."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class ApprovalRecord:
    origin_channel: str
    origin_thread_ts: str
    requester_id: str
    item: str


class ApprovalRegistry:
    """Map approval-card message timestamps to their origin request.

    Entries live for the lifetime of the process only. Decision handlers read
    everything they need from the button payload, so a restart that empties
    the registry does not break cards that are still waiting for a decision.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, ApprovalRecord] = {}

    def put(self, message_ts: str, record: ApprovalRecord) -> None:
        with self._lock:
            self._records[message_ts] = record

    def get(self, message_ts: str) -> ApprovalRecord | None:
        with self._lock:
            return self._records.get(message_ts)

    def snapshot(self) -> Dict[str, ApprovalRecord]:
        with self._lock:
            return dict(self._records)

    def __contains__(self, message_ts: object) -> bool:
        with self._lock:
            return message_ts in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
