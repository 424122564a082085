import hashlib
import hmac
import json
from decimal import Decimal

import pytest
from chatcrm.main import create_app
from chatcrm.models import Contact, ConversationHistory, InboundMessageRecord, Order, Product
from chatcrm.settings import Settings
from sqlalchemy import func, select
from starlette.testclient import TestClient

from conftest import CLOUD_NUMBER, CLOUD_PHONE_NUMBER_ID, PAGE_ID, SMS_NUMBER

CUSTOMER = "22997000001"


@pytest.fixture
def make_client(pipeline_db, monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    clients = []

    def _make(**overrides):
        settings = Settings(
            processing_mode="inline",
            meta_verify_token="verify-me",
            routing_refresh_seconds=3600,
            **overrides,
        )
        app = create_app(settings, session_factory=pipeline_db.session_factory)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()


def _cloud_payload(text, message_id="wamid.1", display_number=CLOUD_NUMBER):
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "metadata": {
                                "display_phone_number": display_number,
                                "phone_number_id": CLOUD_PHONE_NUMBER_ID,
                            },
                            "contacts": [{"wa_id": CUSTOMER, "profile": {"name": "Awa"}}],
                            "messages": [
                                {
                                    "from": CUSTOMER,
                                    "id": message_id,
                                    "type": "text",
                                    "text": {"body": text},
                                }
                            ],
                        },
                    }
                ],
            }
        ],
    }


def _sent(client):
    return client.app.state.transports.dry_run_log


def _count(pipeline_db, column):
    with pipeline_db.session() as session:
        return session.execute(select(func.count(column))).scalar_one()


def test_whatsapp_order_end_to_end(client, pipeline_db):
    resp = client.post(
        "/api/webhooks/whatsapp", json=_cloud_payload("Je veux commander 2 Doliprane")
    )

    assert resp.status_code == 200
    assert resp.json() == {"status": "accepted", "messages": 1}

    with pipeline_db.session() as session:
        order = session.execute(select(Order)).scalars().one()
        assert order.total == Decimal("3000")
        contact = session.get(Contact, order.contact_id)
        assert contact.phone == CUSTOMER
        assert contact.display_name == "Awa"
        assert contact.contact_type == "prospect"
        assert session.get(Product, pipeline_db.products["doliprane"]).stock == 8
        history = session.execute(select(ConversationHistory)).scalars().one()
        assert history.mode == "rule"
        assert history.intent == "create-order"

    [sent] = _sent(client)
    assert sent["channel"] == "whatsapp-cloud"
    assert sent["destination"] == CUSTOMER
    assert f"Commande #{order.id}" in sent["body"]


def test_provider_retry_is_processed_once(client, pipeline_db):
    payload = _cloud_payload("Je veux commander 1 Doliprane", message_id="wamid.dup")

    first = client.post("/api/webhooks/whatsapp", json=payload)
    second = client.post("/api/webhooks/whatsapp", json=payload)

    assert first.status_code == second.status_code == 200
    assert _count(pipeline_db, Order.id) == 1
    assert _count(pipeline_db, InboundMessageRecord.id) == 1
    assert len(_sent(client)) == 1


def test_status_request_for_known_order(client, pipeline_db):
    contact_id = pipeline_db.add_contact(CUSTOMER)
    with pipeline_db.session_factory.begin() as session:
        session.add(
            Order(
                id=42,
                tenant_id=pipeline_db.tenant_id,
                contact_id=contact_id,
                total=Decimal("1500"),
                status="en cours",
            )
        )

    client.post("/api/webhooks/whatsapp", json=_cloud_payload("statut commande 42"))

    [sent] = _sent(client)
    assert "#42" in sent["body"]
    assert "en cours" in sent["body"]


def test_unrecognised_text_still_gets_a_reply(client):
    resp = client.post("/api/webhooks/whatsapp", json=_cloud_payload("xyzzy plugh"))
    assert resp.status_code == 200
    [sent] = _sent(client)
    assert sent["body"].strip()


def test_twilio_sms_returns_empty_twiml(client, pipeline_db):
    resp = client.post(
        "/api/webhooks/twilio",
        data={
            "From": f"+{CUSTOMER}",
            "To": SMS_NUMBER,
            "Body": "Bonjour",
            "MessageSid": "SM1",
        },
    )

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/xml")
    assert resp.text == "<Response></Response>"
    [sent] = _sent(client)
    assert sent["channel"] == "sms"
    assert "Pharmacie du Centre" in sent["body"]


def test_sms_and_whatsapp_share_one_contact(client, pipeline_db):
    client.post(
        "/api/webhooks/twilio",
        data={"From": f"whatsapp:+{CUSTOMER}", "To": f"whatsapp:{SMS_NUMBER}", "Body": "salut"},
    )
    client.post("/api/webhooks/whatsapp", json=_cloud_payload("catalogue"))
    assert _count(pipeline_db, Contact.id) == 1


def test_messenger_message_is_answered(client):
    payload = {
        "object": "page",
        "entry": [
            {
                "id": PAGE_ID,
                "messaging": [
                    {
                        "sender": {"id": "psid-77"},
                        "recipient": {"id": PAGE_ID},
                        "message": {"mid": "m_77", "text": "catalogue"},
                    }
                ],
            }
        ],
    }
    resp = client.post("/api/webhooks/messenger", json=payload)
    assert resp.json() == {"status": "accepted", "messages": 1}
    [sent] = _sent(client)
    assert sent["destination"] == "psid-77"
    assert "Doliprane" in sent["body"]


def test_unknown_routing_key_is_acknowledged(client):
    payload = _cloud_payload("Bonjour", display_number="11223344")
    payload["entry"][0]["changes"][0]["value"]["metadata"]["phone_number_id"] = "999"

    resp = client.post("/api/webhooks/whatsapp", json=payload)

    assert resp.status_code == 200
    assert resp.json() == {"status": "accepted", "messages": 0}
    assert len(_sent(client)) == 0


def test_default_channel_account_answers_unknown_numbers(make_client, pipeline_db):
    client = make_client(default_channel_account_id=pipeline_db.accounts["sms"])

    resp = client.post(
        "/api/webhooks/twilio",
        data={"From": f"+{CUSTOMER}", "To": "+22991111111", "Body": "Bonjour", "MessageSid": "SM9"},
    )

    assert resp.status_code == 200
    [sent] = _sent(client)
    assert sent["channel"] == "sms"
    assert "Pharmacie du Centre" in sent["body"]
    with pipeline_db.session() as session:
        contact = session.execute(select(Contact)).scalars().one()
        assert contact.tenant_id == pipeline_db.tenant_id


@pytest.mark.parametrize("body", [b"{not json", b"[1, 2]", b""])
def test_malformed_payloads_are_acknowledged(client, body):
    resp = client.post(
        "/api/webhooks/whatsapp", content=body, headers={"Content-Type": "application/json"}
    )
    assert resp.status_code == 200
    assert resp.json()["messages"] == 0
    assert len(_sent(client)) == 0


def test_meta_signature_is_enforced_when_secret_configured(make_client):
    client = make_client(meta_app_secret="s3cret")
    body = json.dumps(_cloud_payload("Bonjour")).encode()

    resp = client.post(
        "/api/webhooks/whatsapp",
        content=body,
        headers={"Content-Type": "application/json", "X-Hub-Signature-256": "sha256=00"},
    )
    assert resp.status_code == 403

    digest = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    resp = client.post(
        "/api/webhooks/whatsapp",
        content=body,
        headers={"Content-Type": "application/json", "X-Hub-Signature-256": f"sha256={digest}"},
    )
    assert resp.status_code == 200
    assert resp.json()["messages"] == 1


@pytest.mark.parametrize("path", ["/api/webhooks/whatsapp", "/api/webhooks/messenger"])
def test_subscription_handshake(client, path):
    ok = client.get(
        path,
        params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "1158201444"},
    )
    assert ok.status_code == 200
    assert ok.text == "1158201444"

    denied = client.get(
        path,
        params={"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "x"},
    )
    assert denied.status_code == 403


def test_health_and_version(client):
    assert client.get("/api/health").json() == {"status": "ok"}
    data = client.get("/api/version").json()
    assert set(data) == {"version", "build_date", "commit_sha"}
