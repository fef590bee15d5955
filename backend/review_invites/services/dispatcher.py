from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from backend.review_invites.models import (
    InvitationRecord,
    InvitationStatus,
    ReviewInvitationPayload,
    SendResult,
)
from backend.review_invites.services.contracts import (
    AuditLogger,
    LogStore,
    NotificationSender,
    RetryScheduler,
)
from backend.review_invites.services.stats import StatsAggregator
from backend.review_invites.services.templates import build_review_link
from backend.review_invites.settings import DEFAULT_RETRY_DELAYS_MS, MAX_RETRIES
from backend.review_invites.store import StoreConflictError, StoreNotFoundError

logger = logging.getLogger("review_invites.dispatcher")


class NotificationDispatcher:
    """
    Drives one conversation's invitation from `processing` to `success` or `failed`.

    A failed send moves the record to `retrying` and hands the next attempt to the
    scheduler with the delay for that retry number. Once retry_count reaches
    max_retries, the next failure is final. Every transition is written to the
    log store before counters or the audit log see it.
    """

    def __init__(
        self,
        *,
        store: LogStore,
        sender: NotificationSender,
        scheduler: RetryScheduler,
        stats: StatsAggregator,
        audit: AuditLogger,
        business_name: str,
        review_domain: str,
        retry_delays_ms: tuple[int, ...] = DEFAULT_RETRY_DELAYS_MS,
        send_timeout_seconds: float = 30.0,
        max_concurrency: int = 8,
    ) -> None:
        self.store = store
        self.sender = sender
        self.scheduler = scheduler
        self.stats = stats
        self.audit = audit
        self.business_name = business_name
        self.review_domain = review_domain
        if len(retry_delays_ms) != MAX_RETRIES:
            raise ValueError(f"retry delay table needs {MAX_RETRIES} entries")
        self.retry_delays_ms = tuple(retry_delays_ms)
        self.send_timeout_seconds = send_timeout_seconds
        self._slots = asyncio.Semaphore(max(1, max_concurrency))

    @property
    def max_retries(self) -> int:
        return MAX_RETRIES

    def build_payload(self, record: InvitationRecord) -> ReviewInvitationPayload:
        return ReviewInvitationPayload(
            customer_email=record.customer_email,
            customer_name=record.customer_name,
            agent_name=record.agent_name,
            conversation_id=record.conversation_id,
            business_name=self.business_name,
            review_link=build_review_link(self.review_domain),
        )

    async def start(self, record: InvitationRecord) -> None:
        try:
            await self.attempt(record)
        except Exception:
            logger.exception("dispatch_crashed conversation_id=%s", record.conversation_id)

    async def attempt(self, record: InvitationRecord) -> None:
        current = self.store.get(record.conversation_id) or record
        if current.is_terminal:
            logger.info(
                "dispatch_skipped conversation_id=%s status=%s",
                current.conversation_id,
                current.status.value,
            )
            return

        result = await self._send(self.build_payload(current))
        if result.success:
            self._succeed(current, result)
        else:
            self._fail(current, result.error or "failed to send invitation")

    async def _send(self, payload: ReviewInvitationPayload) -> SendResult:
        async with self._slots:
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(self.sender.send, payload),
                    timeout=self.send_timeout_seconds,
                )
            except asyncio.TimeoutError:
                return SendResult(
                    success=False,
                    error=f"send timed out after {self.send_timeout_seconds:g}s",
                )
            except Exception as exc:
                return SendResult(success=False, error=str(exc) or exc.__class__.__name__)

    def _succeed(self, record: InvitationRecord, result: SendResult) -> None:
        updated = self._write(
            record.conversation_id,
            status=InvitationStatus.success,
            error_message=None,
            response_log=json.dumps(
                {"success": result.success, "error": result.error, "raw": result.raw},
                default=str,
            ),
        )
        if updated is None:
            return
        self.stats.increment_success()
        self._audit(updated)
        logger.info(
            "invitation_sent conversation_id=%s retry_count=%s",
            updated.conversation_id,
            updated.retry_count,
        )

    def _fail(self, record: InvitationRecord, error: str) -> None:
        if record.retry_count < self.max_retries:
            retry_count = record.retry_count + 1
            updated = self._write(
                record.conversation_id,
                status=InvitationStatus.retrying,
                retry_count=retry_count,
                error_message=error,
            )
            if updated is None:
                return
            delay_ms = self.retry_delays_ms[retry_count - 1]
            logger.warning(
                "invitation_send_failed conversation_id=%s retry=%s/%s delay_ms=%s error=%s",
                updated.conversation_id,
                retry_count,
                self.max_retries,
                delay_ms,
                error,
            )
            self.scheduler.schedule(
                updated.conversation_id,
                delay_ms,
                lambda: self.attempt(updated),
            )
            return

        updated = self._write(
            record.conversation_id,
            status=InvitationStatus.failed,
            error_message=error,
        )
        if updated is None:
            return
        self.stats.increment_failure()
        self._audit(updated)
        logger.error(
            "invitation_failed conversation_id=%s attempts=%s error=%s",
            updated.conversation_id,
            updated.retry_count + 1,
            error,
        )

    def _write(self, conversation_id: str, **patch: Any) -> Optional[InvitationRecord]:
        try:
            return self.store.update(conversation_id, **patch)
        except (StoreConflictError, StoreNotFoundError, SQLAlchemyError):
            logger.exception(
                "invitation_log_write_failed conversation_id=%s status=%s",
                conversation_id,
                patch.get("status"),
            )
            return None

    def _audit(self, record: InvitationRecord) -> None:
        try:
            self.audit.record(record)
        except Exception:
            logger.exception("audit_failed conversation_id=%s", record.conversation_id)
