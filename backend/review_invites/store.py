from __future__ import annotations

from threading import RLock
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy.exc import IntegrityError

from backend.review_invites.models import InvitationRecord, InvitationStatus, utc_now
from backend.review_invites.services.workflow import ALLOWED_TRANSITIONS

if TYPE_CHECKING:
    from backend.review_invites.persistence import SqlitePersistence

MUTABLE_FIELDS = frozenset({"status", "retry_count", "error_message", "response_log"})


class StoreConflictError(Exception):
    pass


class StoreNotFoundError(Exception):
    pass


class InMemoryLogStore:
    """
    Invitation log keyed by conversation id. Every read-modify-write runs under one
    lock, and writes go to persistence before the in-memory copy is replaced.
    """

    def __init__(self, persistence: Optional["SqlitePersistence"] = None) -> None:
        self._lock = RLock()
        self.persistence = persistence
        self.invitations: dict[str, InvitationRecord] = {}

        if self.persistence:
            for record in self.persistence.list_invitation_logs():
                self.invitations[record.conversation_id] = record

    def get(self, conversation_id: str) -> Optional[InvitationRecord]:
        with self._lock:
            return self.invitations.get(conversation_id)

    def require(self, conversation_id: str) -> InvitationRecord:
        record = self.get(conversation_id)
        if not record:
            raise StoreNotFoundError(f"invitation log not found: {conversation_id}")
        return record

    def create(
        self,
        *,
        conversation_id: str,
        customer_email: str,
        customer_name: str,
        agent_name: str,
    ) -> InvitationRecord:
        record, created = self.create_if_absent(
            conversation_id=conversation_id,
            customer_email=customer_email,
            customer_name=customer_name,
            agent_name=agent_name,
        )
        if not created:
            raise StoreConflictError(f"invitation log already exists: {conversation_id}")
        return record

    def create_if_absent(
        self,
        *,
        conversation_id: str,
        customer_email: str,
        customer_name: str,
        agent_name: str,
    ) -> tuple[InvitationRecord, bool]:
        with self._lock:
            existing = self.invitations.get(conversation_id)
            if existing:
                return existing, False

            now = utc_now()
            record = InvitationRecord(
                conversation_id=conversation_id,
                customer_email=customer_email.strip(),
                customer_name=customer_name.strip(),
                agent_name=agent_name.strip(),
                status=InvitationStatus.processing,
                retry_count=0,
                created_at_utc=now,
                updated_at_utc=now,
            )
            if self.persistence:
                try:
                    self.persistence.insert_invitation_log(record)
                except IntegrityError:
                    # Another process sharing the database admitted it first.
                    stored = self.persistence.get_invitation_log(conversation_id)
                    if stored is None:
                        raise
                    self.invitations[conversation_id] = stored
                    return stored, False
            self.invitations[conversation_id] = record
            return record, True

    def update(self, conversation_id: str, **patch: Any) -> InvitationRecord:
        unknown = set(patch) - MUTABLE_FIELDS
        if unknown:
            raise StoreConflictError(f"immutable invitation fields: {sorted(unknown)}")

        with self._lock:
            current = self.require(conversation_id)
            to_status = patch.get("status", current.status)
            if to_status != current.status and to_status not in ALLOWED_TRANSITIONS[current.status]:
                raise StoreConflictError(
                    f"invalid transition {current.status.value} -> {to_status.value}"
                )
            if current.is_terminal:
                raise StoreConflictError(
                    f"invitation log is final: {conversation_id} ({current.status.value})"
                )
            retry_count = patch.get("retry_count", current.retry_count)
            if retry_count < current.retry_count:
                raise StoreConflictError("retry_count cannot decrease")

            updated = current.model_copy(update={**patch, "updated_at_utc": utc_now()})
            if self.persistence:
                self.persistence.upsert_invitation_log(updated)
            self.invitations[conversation_id] = updated
            return updated

    def list_invitations(self, limit: int = 50, offset: int = 0) -> list[InvitationRecord]:
        safe_limit = max(1, min(limit, 500))
        safe_offset = max(0, offset)
        with self._lock:
            records = sorted(
                self.invitations.values(),
                key=lambda record: record.created_at_utc,
                reverse=True,
            )
        return records[safe_offset : safe_offset + safe_limit]

    def count_by_status(self) -> dict[InvitationStatus, int]:
        counts = {status: 0 for status in InvitationStatus}
        with self._lock:
            for record in self.invitations.values():
                counts[record.status] += 1
        return counts
