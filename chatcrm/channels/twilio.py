"""Twilio channel adapter for SMS and the WhatsApp gateway."""

from __future__ import annotations

import base64
import hashlib
import hmac
from collections.abc import Iterable, Mapping
from typing import Any

from ..conversations.models import ChannelKind, InboundMessage
from .base import ChannelAdapter


def twilio_signature(auth_token: str, url: str, params: Mapping[str, Any]) -> str:
    """Compute Twilio's ``X-Twilio-Signature`` for a form POST."""

    data = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), data.encode("utf-8"), hashlib.sha1)
    return base64.b64encode(digest.digest()).decode("ascii")


class TwilioAdapter(ChannelAdapter):
    """Form-encoded Twilio messaging webhooks.

    ``From`` carries a ``whatsapp:`` prefix for the WhatsApp gateway and a
    bare number for SMS; ``To`` is the tenant's number and ``AccountSid`` is
    tried when the number alone does not resolve.
    """

    channel_name = "twilio"

    def verify_signature(
        self,
        body: bytes,
        headers: Mapping[str, str],
        config: Mapping[str, Any],
    ) -> bool:
        auth_token = (config or {}).get("auth_token")
        if not auth_token:
            return True
        received = headers.get("X-Twilio-Signature")
        if not received:
            return False
        expected = twilio_signature(auth_token, config["url"], config.get("params") or {})
        return hmac.compare_digest(received, expected)

    def parse_incoming(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
        config: Mapping[str, Any],
    ) -> Iterable[InboundMessage]:
        sender = str(payload.get("From") or "").strip()
        recipient = str(payload.get("To") or "").strip()
        text = str(payload.get("Body") or "")
        if not sender or not recipient or not text.strip():
            return []
        kind = (
            ChannelKind.WHATSAPP_GATEWAY
            if sender.lower().startswith("whatsapp:")
            else ChannelKind.SMS
        )
        account_sid = str(payload.get("AccountSid") or "")
        return [
            InboundMessage(
                channel=kind,
                routing_key=recipient,
                alternate_routing_keys=(account_sid,) if account_sid else (),
                sender_id=sender,
                sender_name=payload.get("ProfileName") or None,
                text=text,
                provider_message_id=str(
                    payload.get("MessageSid") or payload.get("SmsSid") or ""
                )
                or None,
                metadata={"num_media": payload.get("NumMedia")},
            )
        ]
