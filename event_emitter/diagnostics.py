"""Structured JSONL log of waiters dropped during teardown."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

CANCEL_REASON = "listeners removed while a context was still waiting"


class CancelledWaiter(BaseModel):
    """One waiting task that was cancelled instead of resumed."""

    task_name: str
    event: str
    reason: str = CANCEL_REASON
    stack: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class DiagnosticsLog:
    """Writes cancelled-waiter records as JSON lines."""

    def __init__(self, log_path: Path) -> None:
        self.log_path = log_path
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self.logger = logging.getLogger("ee.diagnostics")
        self.logger.setLevel(logging.INFO)

    def record(self, waiter: CancelledWaiter) -> None:
        """Append one JSONL record."""
        line = waiter.model_dump_json()
        with self.log_path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
        self.logger.info(line)
