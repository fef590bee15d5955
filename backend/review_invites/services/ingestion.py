from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, Optional, Union

from pydantic import ValidationError

from backend.review_invites.models import (
    ContactProfile,
    IntercomConversation,
    IntercomWebhookEnvelope,
)
from backend.review_invites.services.contracts import ContactLookup

logger = logging.getLogger("review_invites.ingestion")

DEFAULT_CUSTOMER_NAME = "Valued Customer"
DEFAULT_AGENT_NAME = "Our Support Team"


class RejectionReason(str, Enum):
    verification_ping = "verification_ping"
    malformed_event = "malformed_event"
    unrecognized_event_type = "unrecognized_event_type"
    no_usable_recipient = "no_usable_recipient"


@dataclass(frozen=True)
class IngestRejection:
    reason: RejectionReason
    detail: str
    event_type: Optional[str] = None
    conversation_id: Optional[str] = None


@dataclass(frozen=True)
class ClosedConversationEvent:
    event_type: str
    conversation_id: str
    contact_id: Optional[str]
    customer_email: str
    customer_name: str
    agent_name: str


IngestOutcome = Union[ClosedConversationEvent, IngestRejection]


def _error_fields(exc: ValidationError) -> str:
    fields = [".".join(str(part) for part in error["loc"]) or "body" for error in exc.errors()]
    return ", ".join(sorted(set(fields)))


def _malformed(detail: str, **context: Optional[str]) -> IngestRejection:
    return IngestRejection(reason=RejectionReason.malformed_event, detail=detail, **context)


def decode_close_event(raw_body: bytes, *, recognized_types: Iterable[str]) -> IngestOutcome:
    """
    Decode a raw Intercom webhook body into a closed-conversation event.

    Never raises for bad input: every problem with the body comes back as an
    IngestRejection so the caller can acknowledge the delivery and stop.
    """
    if not raw_body or not raw_body.strip():
        return IngestRejection(
            reason=RejectionReason.verification_ping,
            detail="empty body",
        )

    try:
        decoded = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return _malformed("body is not valid json")
    if not isinstance(decoded, dict):
        return _malformed("body must be a json object")

    try:
        envelope = IntercomWebhookEnvelope.model_validate(decoded)
    except ValidationError as exc:
        return _malformed(f"invalid event envelope: {_error_fields(exc)}")

    event_type = envelope.event_type
    if event_type not in set(recognized_types):
        return IngestRejection(
            reason=RejectionReason.unrecognized_event_type,
            detail=f"event type not handled: {event_type}",
            event_type=event_type,
        )

    try:
        conversation = IntercomConversation.model_validate(envelope.data.get("item"))
    except ValidationError as exc:
        return _malformed(
            f"invalid conversation payload: {_error_fields(exc)}",
            event_type=event_type,
        )

    if not conversation.contacts:
        return IngestRejection(
            reason=RejectionReason.no_usable_recipient,
            detail="no contacts on conversation",
            event_type=event_type,
            conversation_id=conversation.id,
        )

    contact = conversation.contacts[0]
    email = (contact.email or "").strip()
    contact_id = (contact.id or "").strip() or None
    if not email and not contact_id:
        return IngestRejection(
            reason=RejectionReason.no_usable_recipient,
            detail="first contact has no email",
            event_type=event_type,
            conversation_id=conversation.id,
        )

    agent_name = DEFAULT_AGENT_NAME
    if conversation.conversation_parts:
        author = conversation.conversation_parts[-1].author
        if author and author.name and author.name.strip():
            agent_name = author.name.strip()

    return ClosedConversationEvent(
        event_type=event_type,
        conversation_id=conversation.id,
        contact_id=contact_id,
        customer_email=email,
        customer_name=(contact.name or "").strip() or DEFAULT_CUSTOMER_NAME,
        agent_name=agent_name,
    )


def apply_contact_profile(
    event: ClosedConversationEvent, profile: Optional[ContactProfile]
) -> IngestOutcome:
    email = ((profile.email if profile else None) or "").strip()
    if not email:
        return IngestRejection(
            reason=RejectionReason.no_usable_recipient,
            detail=f"no email for contact {event.contact_id}",
            event_type=event.event_type,
            conversation_id=event.conversation_id,
        )
    name = event.customer_name
    if name == DEFAULT_CUSTOMER_NAME and profile and profile.name and profile.name.strip():
        name = profile.name.strip()
    return replace(event, customer_email=email, customer_name=name)


def resolve_recipient(
    event: ClosedConversationEvent, lookup: Optional[ContactLookup]
) -> IngestOutcome:
    """Fill in the recipient from the contact lookup when the event carries no email."""
    if event.customer_email:
        return event
    if lookup is None or not event.contact_id:
        return IngestRejection(
            reason=RejectionReason.no_usable_recipient,
            detail="first contact has no email",
            event_type=event.event_type,
            conversation_id=event.conversation_id,
        )
    logger.info(
        "contact_lookup conversation_id=%s contact_id=%s",
        event.conversation_id,
        event.contact_id,
    )
    return apply_contact_profile(event, lookup.fetch(event.contact_id))
