from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class InvitationStatus(str, Enum):
    processing = "processing"
    retrying = "retrying"
    success = "success"
    failed = "failed"


TERMINAL_STATUSES = frozenset({InvitationStatus.success, InvitationStatus.failed})


class InvitationRecord(BaseModel):
    conversation_id: str
    customer_email: str
    customer_name: str
    agent_name: str
    status: InvitationStatus = InvitationStatus.processing
    retry_count: int = Field(default=0, ge=0)
    error_message: Optional[str] = None
    response_log: Optional[str] = None
    created_at_utc: datetime
    updated_at_utc: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class StatsSnapshot(BaseModel):
    success_count: int = 0
    failed_count: int = 0


class ContactProfile(BaseModel):
    id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None


class ReviewInvitationPayload(BaseModel):
    customer_email: str
    customer_name: str
    agent_name: str
    conversation_id: str
    business_name: str
    review_link: str


class SendResult(BaseModel):
    success: bool
    error: Optional[str] = None
    raw: Any = None


def _unwrap_list(value: Any, key: str) -> Any:
    # Intercom nests lists as {"type": "contact.list", "contacts": [...]}.
    if value is None:
        return []
    if isinstance(value, dict):
        return value.get(key) or []
    return value


def _coerce_id(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return value


class IntercomAuthor(BaseModel):
    id: Optional[str] = None
    type: Optional[str] = None
    name: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return _coerce_id(value)


class IntercomContact(BaseModel):
    id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return _coerce_id(value)


class IntercomConversationPart(BaseModel):
    id: Optional[str] = None
    part_type: Optional[str] = None
    author: Optional[IntercomAuthor] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return _coerce_id(value)


class IntercomConversation(BaseModel):
    id: str = Field(min_length=1)
    contacts: list[IntercomContact] = Field(default_factory=list)
    conversation_parts: list[IntercomConversationPart] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return _coerce_id(value)

    @field_validator("contacts", mode="before")
    @classmethod
    def unwrap_contacts(cls, value: Any) -> Any:
        return _unwrap_list(value, "contacts")

    @field_validator("conversation_parts", mode="before")
    @classmethod
    def unwrap_parts(cls, value: Any) -> Any:
        return _unwrap_list(value, "conversation_parts")


class IntercomWebhookEnvelope(BaseModel):
    type: str = Field(min_length=1)
    topic: Optional[str] = None
    id: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def event_type(self) -> str:
        # Intercom's notification envelope carries the real event name in `topic`.
        if self.type == "notification_event" and self.topic:
            return self.topic
        return self.type


class WebhookAckResponse(BaseModel):
    status: str
    message: str
    conversation_id: Optional[str] = None
    customer_email: Optional[str] = None
    event_type: Optional[str] = None
    detail: Optional[str] = None
    timestamp_utc: datetime = Field(default_factory=utc_now)


class ConfigReportResponse(BaseModel):
    app_env: str
    business_name: str
    trustpilot_domain: str
    review_link: str
    recognized_event_types: list[str]
    max_retries: int
    retry_delays_ms: list[int]
    send_timeout_seconds: float
    dispatch_max_concurrency: int
    persistence_enabled: bool
    auth_enabled: bool
    smtp_configured: bool
    contact_lookup_configured: bool
