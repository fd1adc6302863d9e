"""
HTTP and WebSocket surface exercised through Starlette's TestClient.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from inbox_hub.main import create_app
from inbox_hub.repositories.memory_repository import create_memory_repositories
from inbox_hub.services.service_container import ServiceContainer
from tests.factories import (
    PAGE_ID, PHONE_NUMBER_ID, TENANT_A, TENANT_B, VERIFY_TOKEN, encode, messenger_message,
    messenger_payload, millis, sign, whatsapp_message
)

SIGNATURE = "X-Hub-Signature-256"


@pytest.fixture
def client(settings, graph):
    container = ServiceContainer(
        settings,
        repositories=create_memory_repositories(),
        graph_transport=graph.transport,
        fetch_profiles=False,
    )
    with TestClient(create_app(settings, container=container)) as test_client:
        yield test_client


def post_webhook(client, platform, payload, signature=None):
    body = encode(payload)
    return client.post(
        f"/webhooks/{platform}",
        content=body,
        headers={SIGNATURE: signature or sign(body), "Content-Type": "application/json"},
    )


def connect(client, platform_type, external_id, tenant_id=TENANT_A, token="page-token"):
    response = client.post(
        f"/api/v1/tenants/{tenant_id}/platforms",
        json={"type": platform_type, "external_id": external_id, "access_token": token},
    )
    assert response.status_code == 201
    return response.json()["data"]


def only_conversation(client, tenant_id=TENANT_A):
    (conversation,) = client.get(f"/api/v1/tenants/{tenant_id}/conversations").json()["data"]
    return conversation


def test_subscription_handshake(client):
    params = {"hub.mode": "subscribe", "hub.verify_token": VERIFY_TOKEN, "hub.challenge": "1158201444"}

    response = client.get("/webhooks/facebook", params=params)

    assert response.status_code == 200
    assert response.text == "1158201444"


def test_subscription_handshake_with_wrong_token(client):
    params = {"hub.mode": "subscribe", "hub.verify_token": "guess", "hub.challenge": "1158201444"}

    response = client.get("/webhooks/whatsapp", params=params)

    assert response.status_code == 403
    assert response.json()["error"]["error_code"] == "VERIFICATION_FAILED"


def test_unsigned_delivery_is_forbidden(client):
    response = client.post("/webhooks/facebook", content=encode(messenger_payload([])))
    assert response.status_code == 403


def test_malformed_delivery_is_bad_request(client):
    body = b"not-json"
    response = client.post("/webhooks/facebook", content=body, headers={SIGNATURE: sign(body)})
    assert response.status_code == 400


def test_unknown_platform_path(client):
    assert client.post("/webhooks/telegram", content=b"{}").status_code == 422


def test_delivery_is_ingested(client):
    connect(client, "facebook", PAGE_ID)

    response = post_webhook(client, "facebook", messenger_payload([messenger_message("u123", "m_1", "hello")]))

    assert response.status_code == 200
    assert response.json()["data"]["created"] == 1

    conversation = only_conversation(client)
    history = client.get(f"/api/v1/tenants/{TENANT_A}/conversations/{conversation['id']}/messages").json()["data"]
    assert [(m["direction"], m["content"]["text"]) for m in history] == [("inbound", "hello")]
    assert "raw_payload" not in history[0]


def test_connect_hides_token(client):
    platform = connect(client, "whatsapp", PHONE_NUMBER_ID, token="secret-token")

    assert platform["external_id"] == PHONE_NUMBER_ID
    assert platform["is_active"] is True
    assert "access_token" not in platform


def test_connect_conflict_across_tenants(client):
    connect(client, "facebook", PAGE_ID)

    response = client.post(
        f"/api/v1/tenants/{TENANT_B}/platforms",
        json={"type": "facebook", "external_id": PAGE_ID, "access_token": "other"},
    )

    assert response.status_code == 409


def test_disconnect(client):
    platform = connect(client, "facebook", PAGE_ID)

    response = client.delete(f"/api/v1/tenants/{TENANT_A}/platforms/{platform['id']}")

    assert response.status_code == 200
    assert response.json()["data"] == {"platform_id": platform["id"], "disconnected": True}


def test_send_reply(client, graph):
    connect(client, "facebook", PAGE_ID)
    graph.add("POST", "/me/messages", (200, {"recipient_id": "u123", "message_id": "m_reply"}))
    post_webhook(client, "facebook", messenger_payload([
        messenger_message("u123", "m_1", "hello", timestamp=millis(datetime.now(timezone.utc)))
    ]))
    conversation = only_conversation(client)

    response = client.post(
        f"/api/v1/tenants/{TENANT_A}/conversations/{conversation['id']}/messages",
        json={"text": "Hi there"},
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert (data["status"], data["platform_message_id"]) == ("sent", "m_reply")


def test_send_outside_window_requires_template(client, graph):
    connect(client, "whatsapp", PHONE_NUMBER_ID)
    post_webhook(client, "whatsapp", whatsapp_message(
        "wamid.in", timestamp=datetime.now(timezone.utc) - timedelta(days=2)
    ))
    conversation = only_conversation(client)

    response = client.post(
        f"/api/v1/tenants/{TENANT_A}/conversations/{conversation['id']}/messages",
        json={"text": "are you still there?"},
    )

    assert response.status_code == 422
    error = response.json()["error"]
    assert error["error_code"] == "OUTSIDE_MESSAGING_WINDOW"
    assert error["details"]["template_required"] is True
    assert graph.calls("POST") == []


def test_send_requires_a_body(client):
    response = client.post(f"/api/v1/tenants/{TENANT_A}/conversations/missing/messages", json={})
    assert response.status_code == 422


def test_conversation_of_other_tenant_is_not_found(client):
    connect(client, "facebook", PAGE_ID)
    post_webhook(client, "facebook", messenger_payload([messenger_message("u123", "m_1")]))
    conversation = only_conversation(client)

    response = client.get(f"/api/v1/tenants/{TENANT_B}/conversations/{conversation['id']}/messages")

    assert response.status_code == 404
    assert response.json()["status"] == "error"


def test_unknown_platform_diagnostics_is_not_found(client):
    assert client.get(f"/api/v1/tenants/{TENANT_A}/platforms/nope/diagnostics").status_code == 404


def test_diagnostics(client, graph):
    platform = connect(client, "facebook", PAGE_ID)
    graph.add("GET", f"/{PAGE_ID}", (200, {"id": PAGE_ID, "name": "Acme Shop"}))

    response = client.get(f"/api/v1/tenants/{TENANT_A}/platforms/{platform['id']}/diagnostics")

    assert response.status_code == 200
    assert response.json()["data"]["token_valid"] is True


def test_sync_rejects_non_facebook(client):
    platform = connect(client, "whatsapp", PHONE_NUMBER_ID)

    response = client.post(f"/api/v1/tenants/{TENANT_A}/platforms/{platform['id']}/sync")

    assert response.status_code == 400


def test_health_info_and_metrics(client):
    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "healthy"

    assert client.get("/info").json()["storage_backend"] == "memory"

    post_webhook(client, "facebook", messenger_payload([messenger_message("u123", "m_1")]))
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "inbox_hub_inbound_events_total" in metrics.text


def test_request_id_is_echoed(client):
    response = client.get("/info", headers={"X-Request-ID": "req-42"})
    assert response.headers["X-Request-ID"] == "req-42"


def test_realtime_session_receives_inbound_message(client):
    connect(client, "facebook", PAGE_ID)

    with client.websocket_connect(f"/realtime?tenant_id={TENANT_A}") as websocket:
        post_webhook(client, "facebook", messenger_payload([messenger_message("u123", "m_1", "hello")]))
        event = websocket.receive_json()

    assert event["type"] == "conversation.updated"
    assert event["tenant_id"] == TENANT_A
    assert event["payload"]["message"]["content"]["text"] == "hello"
