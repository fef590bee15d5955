from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock

from backend.review_invites.models import InvitationRecord

logger = logging.getLogger("review_invites.audit")


class JsonlAuditLogger:
    """Appends one JSON line per finalized invitation. Best effort."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._lock = Lock()

    def record(self, record: InvitationRecord) -> None:
        line = record.model_dump_json()
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
        except OSError as exc:
            logger.warning(
                "audit_write_failed conversation_id=%s path=%s error=%s",
                record.conversation_id,
                self.path,
                exc,
            )
            return
        logger.info(
            "invitation_finalized conversation_id=%s status=%s retry_count=%s",
            record.conversation_id,
            record.status.value,
            record.retry_count,
        )
