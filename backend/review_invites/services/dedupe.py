from __future__ import annotations

import logging
from dataclasses import dataclass

from backend.review_invites.models import InvitationRecord
from backend.review_invites.services.contracts import LogStore

logger = logging.getLogger("review_invites.dedupe")


@dataclass(frozen=True)
class Admission:
    created: bool
    record: InvitationRecord


class ConversationDeduplicator:
    def __init__(self, store: LogStore) -> None:
        self.store = store

    def admit(
        self,
        conversation_id: str,
        *,
        customer_email: str,
        customer_name: str,
        agent_name: str,
    ) -> Admission:
        record, created = self.store.create_if_absent(
            conversation_id=conversation_id,
            customer_email=customer_email,
            customer_name=customer_name,
            agent_name=agent_name,
        )
        if not created:
            logger.info(
                "duplicate_conversation conversation_id=%s status=%s",
                conversation_id,
                record.status.value,
            )
        return Admission(created=created, record=record)
