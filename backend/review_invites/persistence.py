from __future__ import annotations

from pathlib import Path
from threading import Lock
from typing import Optional

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import SQLAlchemyError

from backend.review_invites.models import InvitationRecord, InvitationStatus, utc_now


def _normalize_database_url(database_url: str) -> str:
    value = database_url.strip()
    if value.startswith("sqlite:///"):
        sqlite_path = value[len("sqlite:///") :].split("?", 1)[0]
        if sqlite_path and sqlite_path != ":memory:":
            path = Path(sqlite_path)
            if path.parent:
                path.parent.mkdir(parents=True, exist_ok=True)
        return value
    if "://" in value:
        return value
    path = Path(value)
    if path.parent:
        path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{str(path).replace(chr(92), '/')}"


class SqlitePersistence:
    """
    Durable copy of the invitation log. Uses SQLAlchemy and supports both SQLite and
    PostgreSQL URLs. The primary key on conversation_id backs create-if-absent.
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = _normalize_database_url(database_url)
        self._lock = Lock()
        self.engine: Engine = create_engine(
            self.database_url,
            future=True,
            pool_pre_ping=True,
        )
        self.metadata = MetaData()
        self.invitation_logs = Table(
            "invitation_logs",
            self.metadata,
            Column("conversation_id", String(255), primary_key=True),
            Column("customer_email", String(320), nullable=False),
            Column("customer_name", String(255), nullable=False),
            Column("agent_name", String(255), nullable=False),
            Column("status", String(50), nullable=False),
            Column("retry_count", Integer, nullable=False),
            Column("error_message", Text, nullable=True),
            Column("response_log", Text, nullable=True),
            Column("created_at_utc", DateTime, nullable=False),
            Column("updated_at_utc", DateTime, nullable=False),
        )
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.metadata.create_all(self.engine)

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
            return True
        except SQLAlchemyError:
            return False

    @staticmethod
    def _row_values(record: InvitationRecord) -> dict:
        return {
            "customer_email": record.customer_email,
            "customer_name": record.customer_name,
            "agent_name": record.agent_name,
            "status": record.status.value,
            "retry_count": record.retry_count,
            "error_message": record.error_message,
            "response_log": record.response_log,
            "created_at_utc": record.created_at_utc,
            "updated_at_utc": record.updated_at_utc,
        }

    @staticmethod
    def _to_record(row: Row) -> InvitationRecord:
        return InvitationRecord(
            conversation_id=row.conversation_id,
            customer_email=row.customer_email,
            customer_name=row.customer_name,
            agent_name=row.agent_name,
            status=InvitationStatus(row.status),
            retry_count=row.retry_count,
            error_message=row.error_message,
            response_log=row.response_log,
            created_at_utc=row.created_at_utc or utc_now(),
            updated_at_utc=row.updated_at_utc or utc_now(),
        )

    def insert_invitation_log(self, record: InvitationRecord) -> None:
        """Raises IntegrityError when the conversation id is already stored."""
        with self._lock:
            with self.engine.begin() as conn:
                conn.execute(
                    self.invitation_logs.insert().values(
                        conversation_id=record.conversation_id,
                        **self._row_values(record),
                    )
                )

    def upsert_invitation_log(self, record: InvitationRecord) -> None:
        with self._lock:
            with self.engine.begin() as conn:
                existing = conn.execute(
                    select(self.invitation_logs.c.conversation_id).where(
                        self.invitation_logs.c.conversation_id == record.conversation_id
                    )
                ).first()
                payload = self._row_values(record)
                if existing:
                    conn.execute(
                        self.invitation_logs.update()
                        .where(self.invitation_logs.c.conversation_id == record.conversation_id)
                        .values(**payload)
                    )
                else:
                    conn.execute(
                        self.invitation_logs.insert().values(
                            conversation_id=record.conversation_id,
                            **payload,
                        )
                    )

    def get_invitation_log(self, conversation_id: str) -> Optional[InvitationRecord]:
        with self._lock:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(self.invitation_logs).where(
                        self.invitation_logs.c.conversation_id == conversation_id
                    )
                ).first()
        if not row:
            return None
        return self._to_record(row)

    def list_invitation_logs(self) -> list[InvitationRecord]:
        with self._lock:
            with self.engine.connect() as conn:
                rows = conn.execute(
                    select(self.invitation_logs).order_by(
                        self.invitation_logs.c.created_at_utc.desc()
                    )
                ).all()
        return [self._to_record(row) for row in rows]
