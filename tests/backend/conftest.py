from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Optional

import pytest
from fastapi.testclient import TestClient

from backend.review_invites.main import create_app
from backend.review_invites.models import InvitationRecord, ReviewInvitationPayload, SendResult
from backend.review_invites.services.dispatcher import NotificationDispatcher
from backend.review_invites.services.stats import StatsAggregator
from backend.review_invites.store import InMemoryLogStore


class ScriptedSender:
    """Plays back outcomes in order: True, False, an exception, or a SendResult."""

    def __init__(self, outcomes: Optional[list[Any]] = None) -> None:
        self.outcomes = list(outcomes or [])
        self.payloads: list[ReviewInvitationPayload] = []

    def send(self, payload: ReviewInvitationPayload) -> SendResult:
        self.payloads.append(payload)
        outcome = self.outcomes.pop(0) if self.outcomes else True
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, SendResult):
            return outcome
        if outcome:
            return SendResult(success=True, raw={"message_id": f"<{payload.conversation_id}@test>"})
        return SendResult(success=False, error="451 temporary local problem")


class RecordingScheduler:
    def __init__(self) -> None:
        self.scheduled: list[tuple[str, int]] = []
        self._queue: list[tuple[str, int, Callable]] = []

    def schedule(self, conversation_id: str, delay_ms: int, attempt_fn: Callable) -> None:
        self.scheduled.append((conversation_id, delay_ms))
        self._queue.append((conversation_id, delay_ms, attempt_fn))

    def pending(self) -> dict[str, int]:
        return {conversation_id: delay_ms for conversation_id, delay_ms, _ in self._queue}

    def delays(self, conversation_id: str) -> list[int]:
        return [delay for cid, delay in self.scheduled if cid == conversation_id]

    def run_next(self) -> None:
        _, _, attempt_fn = self._queue.pop(0)
        asyncio.run(attempt_fn())

    def drain(self) -> None:
        while self._queue:
            self.run_next()


class MemoryAudit:
    def __init__(self) -> None:
        self.records: list[InvitationRecord] = []

    def record(self, record: InvitationRecord) -> None:
        self.records.append(record)


@pytest.fixture()
def sender() -> ScriptedSender:
    return ScriptedSender()


@pytest.fixture()
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture()
def audit() -> MemoryAudit:
    return MemoryAudit()


@pytest.fixture()
def store() -> InMemoryLogStore:
    return InMemoryLogStore()


@pytest.fixture()
def stats() -> StatsAggregator:
    return StatsAggregator()


@pytest.fixture()
def dispatcher(store, sender, scheduler, stats, audit) -> NotificationDispatcher:
    return NotificationDispatcher(
        store=store,
        sender=sender,
        scheduler=scheduler,
        stats=stats,
        audit=audit,
        business_name="Acme",
        review_domain="acme.trustpilot.com",
        send_timeout_seconds=2.0,
    )


@pytest.fixture()
def base_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> pytest.MonkeyPatch:
    monkeypatch.setenv("PERSISTENCE_ENABLED", "false")
    monkeypatch.setenv("AUTH_ENABLED", "false")
    monkeypatch.setenv("BUSINESS_NAME", "Acme")
    monkeypatch.setenv("TRUSTPILOT_DOMAIN", "acme.trustpilot.com")
    monkeypatch.setenv("AUDIT_LOG_PATH", str(tmp_path / "audit" / "invitations.jsonl"))
    monkeypatch.delenv("INTERCOM_ACCESS_TOKEN", raising=False)
    monkeypatch.delenv("SMTP_HOST", raising=False)
    monkeypatch.delenv("RETRY_DELAYS_MS", raising=False)
    monkeypatch.delenv("RECOGNIZED_EVENT_TYPES", raising=False)
    return monkeypatch


@pytest.fixture()
def client(base_env, sender, scheduler, audit) -> TestClient:
    app = create_app(sender=sender, scheduler=scheduler, audit=audit)
    return TestClient(app)


@pytest.fixture()
def close_event() -> Callable[..., dict]:
    def build(
        conversation_id: str = "conv_1001",
        *,
        event_type: str = "conversation.admin.closed",
        email: Optional[str] = "dana@example.com",
        name: Optional[str] = "Dana",
        contact_id: Optional[str] = "contact_1",
        agent_name: Optional[str] = "Priya",
        with_contacts: bool = True,
    ) -> dict:
        contacts = []
        if with_contacts:
            contacts.append({"type": "contact", "id": contact_id, "email": email, "name": name})
        parts = [{"part_type": "comment", "author": {"type": "user", "name": "Dana"}}]
        if agent_name is not None:
            parts.append({"part_type": "close", "author": {"type": "admin", "name": agent_name}})
        else:
            parts.append({"part_type": "close", "author": {"type": "admin"}})
        return {
            "type": event_type,
            "data": {
                "item": {
                    "id": conversation_id,
                    "contacts": {"type": "contact.list", "contacts": contacts},
                    "conversation_parts": {
                        "type": "conversation_part.list",
                        "conversation_parts": parts,
                    },
                }
            },
        }

    return build


def encode(payload: Any) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


@pytest.fixture()
def as_body() -> Callable[[Any], bytes]:
    return encode
