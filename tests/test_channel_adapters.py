import hashlib
import hmac
import json

import pytest
from chatcrm.channels import get_adapter
from chatcrm.channels.twilio import twilio_signature
from chatcrm.conversations.models import ChannelKind


def _whatsapp_payload(message: dict) -> dict:
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {
                                "display_phone_number": "22990000002",
                                "phone_number_id": "109876543210",
                            },
                            "contacts": [{"wa_id": "22997000001", "profile": {"name": "Awa"}}],
                            "messages": [message],
                        },
                    }
                ],
            }
        ],
    }


def test_registry_knows_builtin_adapters():
    assert get_adapter("Twilio").channel_name == "twilio"
    assert get_adapter("whatsapp").channel_name == "whatsapp"
    with pytest.raises(KeyError):
        get_adapter("telegram")


def test_twilio_whatsapp_gateway_message():
    adapter = get_adapter("twilio")()
    [message] = adapter.parse_incoming(
        {
            "From": "whatsapp:+22997000001",
            "To": "whatsapp:+22990000001",
            "Body": "Bonjour",
            "MessageSid": "SM123",
            "AccountSid": "AC42",
            "ProfileName": "Awa",
        },
        {},
        {},
    )
    assert message.channel is ChannelKind.WHATSAPP_GATEWAY
    assert message.routing_key == "whatsapp:+22990000001"
    assert message.alternate_routing_keys == ("AC42",)
    assert message.sender_id == "whatsapp:+22997000001"
    assert message.sender_name == "Awa"
    assert message.provider_message_id == "SM123"


def test_twilio_plain_number_is_sms_and_empty_body_is_ignored():
    adapter = get_adapter("twilio")()
    [message] = adapter.parse_incoming(
        {"From": "+22997000001", "To": "+22990000001", "Body": "statut"}, {}, {}
    )
    assert message.channel is ChannelKind.SMS
    assert message.provider_message_id.startswith("local-")
    assert list(adapter.parse_incoming({"From": "+1", "To": "+2", "Body": "  "}, {}, {})) == []


def test_twilio_signature_validation():
    adapter = get_adapter("twilio")()
    params = {"Body": "hi", "From": "+22997000001"}
    url = "https://hooks.example/api/webhooks/twilio"
    config = {"auth_token": "tok", "url": url, "params": params}

    good = {"X-Twilio-Signature": twilio_signature("tok", url, params)}
    assert adapter.verify_signature(b"", good, config)
    assert not adapter.verify_signature(b"", {"X-Twilio-Signature": "bogus"}, config)
    assert not adapter.verify_signature(b"", {}, config)
    assert adapter.verify_signature(b"", {}, {})


def test_whatsapp_cloud_text_message():
    adapter = get_adapter("whatsapp")()
    payload = _whatsapp_payload(
        {
            "from": "22997000001",
            "id": "wamid.ABC",
            "timestamp": "1714651200",
            "type": "text",
            "text": {"body": "Je veux commander 2 Doliprane"},
        }
    )
    [message] = adapter.parse_incoming(payload, {}, {})
    assert message.channel is ChannelKind.WHATSAPP_CLOUD
    assert message.routing_key == "22990000002"
    assert message.alternate_routing_keys == ("109876543210",)
    assert message.sender_name == "Awa"
    assert message.provider_message_id == "wamid.ABC"
    assert message.received_at.timestamp() == 1714651200


def test_whatsapp_interactive_reply_and_status_updates():
    adapter = get_adapter("whatsapp")()
    interactive = _whatsapp_payload(
        {
            "from": "22997000001",
            "id": "wamid.B",
            "type": "interactive",
            "interactive": {"type": "button_reply", "button_reply": {"id": "yes", "title": "oui"}},
        }
    )
    [message] = adapter.parse_incoming(interactive, {}, {})
    assert message.text == "oui"

    statuses = _whatsapp_payload({"from": "22997000001", "id": "wamid.C", "type": "sticker"})
    assert list(adapter.parse_incoming(statuses, {}, {})) == []


def test_meta_signature_validation():
    adapter = get_adapter("whatsapp")()
    body = json.dumps({"entry": []}).encode()
    digest = hmac.new(b"app-secret", body, hashlib.sha256).hexdigest()
    config = {"app_secret": "app-secret"}

    assert adapter.verify_signature(body, {"X-Hub-Signature-256": f"sha256={digest}"}, config)
    assert not adapter.verify_signature(body, {"X-Hub-Signature-256": "sha256=00"}, config)
    assert not adapter.verify_signature(body, {}, config)
    assert adapter.verify_signature(body, {}, {"app_secret": None})


def test_messenger_skips_echoes_and_reads_postbacks():
    adapter = get_adapter("messenger")()
    payload = {
        "object": "page",
        "entry": [
            {
                "id": "page-4242",
                "messaging": [
                    {
                        "sender": {"id": "psid-1"},
                        "recipient": {"id": "page-4242"},
                        "timestamp": 1714651200000,
                        "message": {"mid": "m_1", "text": "catalogue"},
                    },
                    {
                        "sender": {"id": "page-4242"},
                        "recipient": {"id": "psid-1"},
                        "message": {"mid": "m_2", "text": "echo", "is_echo": True},
                    },
                    {
                        "sender": {"id": "psid-1"},
                        "recipient": {"id": "page-4242"},
                        "postback": {"title": "Aide", "payload": "HELP"},
                    },
                ],
            }
        ],
    }
    messages = list(adapter.parse_incoming(payload, {}, {}))
    assert [m.text for m in messages] == ["catalogue", "Aide"]
    assert messages[0].routing_key == "page-4242"
    assert messages[0].provider_message_id == "m_1"
    assert messages[0].received_at.timestamp() == 1714651200
