from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Protocol

from backend.review_invites.models import (
    ContactProfile,
    InvitationRecord,
    InvitationStatus,
    ReviewInvitationPayload,
    SendResult,
)

AttemptFn = Callable[[], Awaitable[None]]


class ContactLookup(Protocol):
    def fetch(self, contact_id: str) -> Optional[ContactProfile]: ...


class NotificationSender(Protocol):
    def send(self, payload: ReviewInvitationPayload) -> SendResult: ...


class LogStore(Protocol):
    def get(self, conversation_id: str) -> Optional[InvitationRecord]: ...

    def create(
        self,
        *,
        conversation_id: str,
        customer_email: str,
        customer_name: str,
        agent_name: str,
    ) -> InvitationRecord: ...

    def create_if_absent(
        self,
        *,
        conversation_id: str,
        customer_email: str,
        customer_name: str,
        agent_name: str,
    ) -> tuple[InvitationRecord, bool]: ...

    def update(self, conversation_id: str, **patch: Any) -> InvitationRecord: ...

    def list_invitations(self, limit: int = 50, offset: int = 0) -> list[InvitationRecord]: ...

    def count_by_status(self) -> dict[InvitationStatus, int]: ...


class AuditLogger(Protocol):
    def record(self, record: InvitationRecord) -> None: ...


class RetryScheduler(Protocol):
    def schedule(self, conversation_id: str, delay_ms: int, attempt_fn: AttemptFn) -> None: ...

    def pending(self) -> dict[str, int]: ...
