from __future__ import annotations

import http.client

from fastapi.testclient import TestClient

from backend.review_invites.main import create_app
from backend.review_invites.models import ContactProfile
from backend.review_invites.services import contacts as contacts_module


def test_close_event_is_acknowledged_and_dispatched(client, close_event, sender) -> None:
    response = client.post("/api/webhook/intercom", json=close_event("conv_2001"))

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "accepted"
    assert data["conversation_id"] == "conv_2001"
    assert data["customer_email"] == "dana@example.com"

    record = client.get("/api/invitations/conv_2001").json()
    assert record["status"] == "success"
    assert record["retry_count"] == 0
    assert record["agent_name"] == "Priya"
    assert len(sender.payloads) == 1

    stats = client.get("/api/stats").json()
    assert stats == {"success_count": 1, "failed_count": 0}


def test_replayed_event_is_swallowed(client, close_event, sender) -> None:
    payload = close_event("conv_2002")
    first = client.post("/api/webhook/intercom", json=payload)
    replays = [client.post("/api/notifications/intercom", json=payload) for _ in range(3)]

    assert first.json()["status"] == "accepted"
    assert all(replay.status_code == 200 for replay in replays)
    assert all(replay.json()["status"] == "duplicate" for replay in replays)
    assert len(sender.payloads) == 1
    assert len(client.get("/api/invitations").json()) == 1


def test_body_is_read_regardless_of_content_type(client, close_event, as_body) -> None:
    response = client.post(
        "/api/webhook/intercom",
        content=as_body(close_event("conv_2003")),
        headers={"content-type": "text/plain"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "accepted"


def test_malformed_event_is_acknowledged_without_record(client) -> None:
    response = client.post(
        "/api/webhook/intercom",
        content=b"{this is not json",
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "invalid"
    assert client.get("/api/invitations").json() == []


def test_unrecognized_event_type_is_ignored(client, close_event, sender) -> None:
    response = client.post(
        "/api/webhook/intercom",
        json=close_event("conv_2004", event_type="conversation.user.created"),
    )

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"
    assert response.json()["event_type"] == "conversation.user.created"
    assert sender.payloads == []
    assert client.get("/api/invitations").json() == []


def test_conversation_without_contacts_is_not_dispatched(client, close_event) -> None:
    response = client.post(
        "/api/webhook/intercom",
        json=close_event("conv_2005", with_contacts=False),
    )

    assert response.status_code == 200
    assert response.json()["status"] == "no_recipient"
    assert client.get("/api/invitations/conv_2005").status_code == 404


def test_empty_post_is_treated_as_readiness_check(client) -> None:
    response = client.post("/api/webhook/intercom", content=b"")
    assert response.status_code == 200
    assert response.json()["status"] == "ready"


def test_handshake_echoes_challenge_verbatim(client) -> None:
    response = client.get("/api/webhook/intercom", params={"challenge": "abc 123+/="})
    assert response.status_code == 200
    assert response.text == "abc 123+/="

    hub = client.get("/api/notifications/intercom", params={"hub.challenge": "xyz"})
    assert hub.text == "xyz"

    plain = client.get("/api/webhook/intercom")
    assert plain.status_code == 200
    assert plain.json()["status"] == "ok"


def test_failed_send_schedules_retry_and_stays_acknowledged(
    client, close_event, sender, scheduler
) -> None:
    sender.outcomes = [False, False, False, False]
    response = client.post("/api/webhook/intercom", json=close_event("conv_2006"))
    assert response.json()["status"] == "accepted"

    record = client.get("/api/invitations/conv_2006").json()
    assert record["status"] == "retrying"
    assert record["retry_count"] == 1
    assert scheduler.pending() == {"conv_2006": 5000}

    scheduler.drain()

    record = client.get("/api/invitations/conv_2006").json()
    assert record["status"] == "failed"
    assert record["retry_count"] == 3
    assert scheduler.delays("conv_2006") == [5000, 10000, 20000]
    assert client.get("/api/stats").json() == {"success_count": 0, "failed_count": 1}


def test_internal_error_still_acknowledged(client, close_event) -> None:
    class ExplodingDeduplicator:
        def admit(self, *args, **kwargs):
            raise RuntimeError("log store offline")

    client.app.state.deduplicator = ExplodingDeduplicator()
    response = client.post("/api/webhook/intercom", json=close_event("conv_2007"))

    assert response.status_code == 200
    assert response.json()["status"] == "error"
    assert "log store offline" in response.json()["detail"]


def test_contact_lookup_enriches_event_without_email(
    base_env, close_event, sender, scheduler, audit
) -> None:
    class StubLookup:
        def fetch(self, contact_id: str):
            return ContactProfile(id=contact_id, email="lookup@example.com", name="Looked Up")

    client = TestClient(
        create_app(sender=sender, scheduler=scheduler, audit=audit, contact_lookup=StubLookup())
    )
    response = client.post(
        "/api/webhook/intercom",
        json=close_event("conv_2008", email=None, name=None),
    )

    assert response.json()["status"] == "accepted"
    assert response.json()["customer_email"] == "lookup@example.com"
    assert sender.payloads[0].customer_name == "Looked Up"


def test_invitation_listing_paginates(client, close_event) -> None:
    for index in range(4):
        client.post("/api/webhook/intercom", json=close_event(f"conv_30{index}"))

    first_page = client.get("/api/invitations", params={"limit": 2, "offset": 0}).json()
    second_page = client.get("/api/invitations", params={"limit": 2, "offset": 2}).json()

    ids = {item["conversation_id"] for item in first_page + second_page}
    assert len(first_page) == 2
    assert ids == {"conv_300", "conv_301", "conv_302", "conv_303"}


def test_config_report_hides_secrets(base_env, sender, scheduler, audit) -> None:
    base_env.setenv("SMTP_PASSWORD", "hunter2")
    client = TestClient(create_app(sender=sender, scheduler=scheduler, audit=audit))

    response = client.get("/api/config")

    assert response.status_code == 200
    data = response.json()
    assert data["business_name"] == "Acme"
    assert data["max_retries"] == 3
    assert data["retry_delays_ms"] == [5000, 10000, 20000]
    assert data["review_link"].startswith("https://www.trustpilot.com/evaluate/acme.trustpilot.com?")
    assert "hunter2" not in response.text


def test_retry_policy_ignores_short_delay_table(
    base_env, close_event, sender, scheduler, audit
) -> None:
    base_env.setenv("RETRY_DELAYS_MS", "5000")
    client = TestClient(create_app(sender=sender, scheduler=scheduler, audit=audit))
    sender.outcomes = [False, False, False, False]

    client.post("/api/webhook/intercom", json=close_event("conv_2009"))
    scheduler.drain()

    record = client.get("/api/invitations/conv_2009").json()
    assert record["status"] == "failed"
    assert record["retry_count"] == 3
    assert scheduler.delays("conv_2009") == [5000, 10000, 20000]
    assert len(sender.payloads) == 4
    assert client.get("/api/config").json()["max_retries"] == 3


def test_lookup_transport_error_is_acknowledged_as_no_recipient(
    base_env, close_event, sender, scheduler, audit
) -> None:
    def dropped(req, timeout):
        raise http.client.RemoteDisconnected("closed")

    base_env.setenv("INTERCOM_ACCESS_TOKEN", "tok")
    base_env.setattr(contacts_module.request, "urlopen", dropped)
    client = TestClient(create_app(sender=sender, scheduler=scheduler, audit=audit))

    response = client.post(
        "/api/webhook/intercom",
        json=close_event("conv_2010", email=None, name=None),
    )

    assert response.status_code == 200
    assert response.json()["status"] == "no_recipient"
    assert sender.payloads == []
