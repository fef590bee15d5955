from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    FastAPI,
    HTTPException,
    Request,
    Response,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import State

from backend.review_invites.auth import READ_ROLES, Operator, require_roles
from backend.review_invites.models import (
    ConfigReportResponse,
    InvitationRecord,
    InvitationStatus,
    StatsSnapshot,
    WebhookAckResponse,
)
from backend.review_invites.observability import MetricsRegistry, configure_logging, observe_request
from backend.review_invites.persistence import SqlitePersistence
from backend.review_invites.services.audit import JsonlAuditLogger
from backend.review_invites.services.contacts import IntercomContactLookup
from backend.review_invites.services.contracts import (
    AuditLogger,
    ContactLookup,
    NotificationSender,
    RetryScheduler,
)
from backend.review_invites.services.dedupe import ConversationDeduplicator
from backend.review_invites.services.dispatcher import NotificationDispatcher
from backend.review_invites.services.ingestion import (
    ClosedConversationEvent,
    IngestRejection,
    RejectionReason,
    decode_close_event,
    resolve_recipient,
)
from backend.review_invites.services.scheduler import AsyncioRetryScheduler
from backend.review_invites.services.sender import create_sender
from backend.review_invites.services.stats import StatsAggregator
from backend.review_invites.services.templates import build_review_link
from backend.review_invites.settings import Settings, load_settings
from backend.review_invites.store import InMemoryLogStore

logger = logging.getLogger("review_invites.webhook")

WEBHOOK_PATHS = ("/api/webhook/intercom", "/api/notifications/intercom")

REJECTION_ACKS = {
    RejectionReason.verification_ping: ("ready", "Webhook endpoint is ready and active"),
    RejectionReason.malformed_event: ("invalid", "Webhook received but payload was invalid"),
    RejectionReason.unrecognized_event_type: ("ignored", "Webhook received but not processed"),
    RejectionReason.no_usable_recipient: ("no_recipient", "No valid customer email found"),
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    scheduler = app.state.scheduler
    if hasattr(scheduler, "shutdown"):
        dropped = scheduler.shutdown()
        if dropped:
            logger.warning("shutdown_dropped_retries count=%s", dropped)


def create_app(
    *,
    sender: Optional[NotificationSender] = None,
    scheduler: Optional[RetryScheduler] = None,
    contact_lookup: Optional[ContactLookup] = None,
    audit: Optional[AuditLogger] = None,
) -> FastAPI:
    app = FastAPI(title="Review Invitation Service", version="0.1.0", lifespan=lifespan)
    configure_logging()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    settings = load_settings()
    persistence = SqlitePersistence(settings.database_url) if settings.persistence_enabled else None
    store = InMemoryLogStore(persistence=persistence)
    counts = store.count_by_status()
    stats = StatsAggregator(
        success_count=counts[InvitationStatus.success],
        failed_count=counts[InvitationStatus.failed],
    )
    if contact_lookup is None and settings.contact_lookup_configured:
        contact_lookup = IntercomContactLookup(
            access_token=settings.intercom_access_token,
            api_url=settings.intercom_api_url,
            timeout_seconds=settings.contact_lookup_timeout_seconds,
        )
    scheduler = scheduler or AsyncioRetryScheduler()

    app.state.settings = settings
    app.state.store = store
    app.state.stats = stats
    app.state.scheduler = scheduler
    app.state.contact_lookup = contact_lookup
    app.state.deduplicator = ConversationDeduplicator(store)
    app.state.dispatcher = NotificationDispatcher(
        store=store,
        sender=sender or create_sender(settings),
        scheduler=scheduler,
        stats=stats,
        audit=audit or JsonlAuditLogger(settings.audit_log_path),
        business_name=settings.business_name,
        review_domain=settings.trustpilot_domain,
        retry_delays_ms=settings.retry_delays_ms,
        send_timeout_seconds=settings.send_timeout_seconds,
        max_concurrency=settings.dispatch_max_concurrency,
    )
    app.state.metrics = MetricsRegistry()

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        return await observe_request(request, call_next, metrics=app.state.metrics)

    app.include_router(build_router())
    return app


def get_store(request: Request) -> InMemoryLogStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_stats(request: Request) -> StatsAggregator:
    return request.app.state.stats


def _ack_rejection(rejection: IngestRejection) -> WebhookAckResponse:
    ack_status, message = REJECTION_ACKS[rejection.reason]
    if rejection.reason == RejectionReason.unrecognized_event_type:
        logger.info("webhook_ignored event_type=%s", rejection.event_type)
    elif rejection.reason != RejectionReason.verification_ping:
        logger.info(
            "webhook_not_dispatched reason=%s conversation_id=%s detail=%s",
            rejection.reason.value,
            rejection.conversation_id,
            rejection.detail,
        )
    return WebhookAckResponse(
        status=ack_status,
        message=message,
        conversation_id=rejection.conversation_id,
        event_type=rejection.event_type,
        detail=rejection.detail,
    )


async def admit_close_event(
    state: State,
    raw_body: bytes,
    background_tasks: BackgroundTasks,
) -> WebhookAckResponse:
    settings: Settings = state.settings
    outcome = decode_close_event(raw_body, recognized_types=settings.recognized_event_types)
    if isinstance(outcome, ClosedConversationEvent):
        outcome = await run_in_threadpool(resolve_recipient, outcome, state.contact_lookup)
    if isinstance(outcome, IngestRejection):
        return _ack_rejection(outcome)

    admission = state.deduplicator.admit(
        outcome.conversation_id,
        customer_email=outcome.customer_email,
        customer_name=outcome.customer_name,
        agent_name=outcome.agent_name,
    )
    if not admission.created:
        return WebhookAckResponse(
            status="duplicate",
            message="Webhook processed (duplicate)",
            conversation_id=outcome.conversation_id,
            event_type=outcome.event_type,
        )

    background_tasks.add_task(state.dispatcher.start, admission.record)
    logger.info(
        "invitation_admitted conversation_id=%s event_type=%s",
        outcome.conversation_id,
        outcome.event_type,
    )
    return WebhookAckResponse(
        status="accepted",
        message="Webhook processed successfully",
        conversation_id=outcome.conversation_id,
        customer_email=outcome.customer_email,
        event_type=outcome.event_type,
    )


def build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @router.get("/health/ready")
    def readiness(request: Request) -> dict[str, str]:
        settings = get_settings(request)
        persistence = get_store(request).persistence
        if settings.persistence_enabled and persistence and not persistence.ping():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="database unavailable",
            )
        return {"status": "ready"}

    @router.get("/metrics", response_class=PlainTextResponse)
    def metrics(request: Request) -> Response:
        registry: MetricsRegistry = request.app.state.metrics
        return PlainTextResponse(
            registry.to_prometheus(
                invitations=get_stats(request).snapshot(),
                pending_retries=len(request.app.state.scheduler.pending()),
            )
        )

    @router.api_route(WEBHOOK_PATHS[0], methods=["GET", "HEAD"])
    @router.api_route(WEBHOOK_PATHS[1], methods=["GET", "HEAD"])
    def intercom_handshake(request: Request) -> Response:
        challenge = request.query_params.get("challenge")
        if challenge is None:
            challenge = request.query_params.get("hub.challenge")
        if challenge is not None:
            return PlainTextResponse(challenge)
        return JSONResponse({"status": "ok", "message": "Webhook endpoint is ready and active"})

    @router.post(WEBHOOK_PATHS[0], response_model=WebhookAckResponse)
    @router.post(WEBHOOK_PATHS[1], response_model=WebhookAckResponse)
    async def intercom_webhook(
        request: Request,
        background_tasks: BackgroundTasks,
    ) -> WebhookAckResponse:
        # The platform redelivers on any non-2xx, so every outcome is acknowledged.
        try:
            raw_body = await request.body()
            return await admit_close_event(request.app.state, raw_body, background_tasks)
        except Exception as exc:
            logger.exception("webhook_processing_failed path=%s", request.url.path)
            return WebhookAckResponse(
                status="error",
                message="Webhook received but processing failed",
                detail=str(exc),
            )

    @router.get("/api/invitations", response_model=list[InvitationRecord])
    def list_invitations(
        request: Request,
        limit: int = 50,
        offset: int = 0,
        _: Operator = Depends(require_roles(*READ_ROLES)),
    ) -> list[InvitationRecord]:
        return get_store(request).list_invitations(limit=limit, offset=offset)

    @router.get("/api/invitations/{conversation_id}", response_model=InvitationRecord)
    def get_invitation(
        conversation_id: str,
        request: Request,
        _: Operator = Depends(require_roles(*READ_ROLES)),
    ) -> InvitationRecord:
        record = get_store(request).get(conversation_id)
        if not record:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"invitation log not found: {conversation_id}",
            )
        return record

    @router.get("/api/stats", response_model=StatsSnapshot)
    def stats(
        request: Request,
        _: Operator = Depends(require_roles(*READ_ROLES)),
    ) -> StatsSnapshot:
        return get_stats(request).snapshot()

    @router.get("/api/config", response_model=ConfigReportResponse)
    def config_report(
        request: Request,
        _: Operator = Depends(require_roles("admin")),
    ) -> ConfigReportResponse:
        settings = get_settings(request)
        return ConfigReportResponse(
            app_env=settings.app_env,
            business_name=settings.business_name,
            trustpilot_domain=settings.trustpilot_domain,
            review_link=build_review_link(settings.trustpilot_domain),
            recognized_event_types=list(settings.recognized_event_types),
            max_retries=settings.max_retries,
            retry_delays_ms=list(settings.retry_delays_ms),
            send_timeout_seconds=settings.send_timeout_seconds,
            dispatch_max_concurrency=settings.dispatch_max_concurrency,
            persistence_enabled=settings.persistence_enabled,
            auth_enabled=settings.auth_enabled,
            smtp_configured=settings.smtp_configured,
            contact_lookup_configured=settings.contact_lookup_configured,
        )

    return router


app = create_app()
