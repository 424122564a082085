"""WhatsApp Cloud API channel adapter."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from ..clock import utcnow
from ..conversations.models import ChannelKind, InboundMessage
from .base import ChannelAdapter, verify_hub_signature

logger = logging.getLogger(__name__)


def _timestamp(raw: Any) -> datetime:
    if raw:
        try:
            return datetime.fromtimestamp(int(raw), tz=timezone.utc)
        except (ValueError, TypeError, OverflowError):
            pass
    return utcnow()


class WhatsAppCloudAdapter(ChannelAdapter):
    channel_name = "whatsapp"

    def verify_signature(
        self,
        body: bytes,
        headers: Mapping[str, str],
        config: Mapping[str, Any],
    ) -> bool:
        return verify_hub_signature(body, headers, (config or {}).get("app_secret"))

    def parse_incoming(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
        config: Mapping[str, Any],
    ) -> Iterable[InboundMessage]:
        for entry in payload.get("entry") or []:
            for change in entry.get("changes") or []:
                value = change.get("value") or {}
                metadata = value.get("metadata") or {}
                display_number = str(metadata.get("display_phone_number") or "")
                phone_number_id = str(metadata.get("phone_number_id") or "")
                contacts = {c.get("wa_id"): c for c in value.get("contacts") or []}
                for message in value.get("messages") or []:
                    sender_id = str(message.get("from") or "")
                    message_type = message.get("type")
                    if message_type == "text":
                        text = (message.get("text") or {}).get("body", "")
                    elif message_type == "button":
                        text = (message.get("button") or {}).get("text", "")
                    elif message_type == "interactive":
                        interactive = message.get("interactive") or {}
                        reply = (
                            interactive.get("button_reply")
                            or interactive.get("list_reply")
                            or {}
                        )
                        text = reply.get("title", "")
                    else:
                        text = (message.get(message_type) or {}).get("caption", "")
                    if not sender_id or not text:
                        logger.debug("Ignoring WhatsApp %s event without text", message_type)
                        continue
                    profile = (contacts.get(sender_id) or {}).get("profile") or {}
                    yield InboundMessage(
                        channel=ChannelKind.WHATSAPP_CLOUD,
                        routing_key=display_number or phone_number_id,
                        alternate_routing_keys=(phone_number_id,) if display_number else (),
                        sender_id=sender_id,
                        sender_name=profile.get("name"),
                        text=text,
                        provider_message_id=str(message.get("id") or "") or None,
                        received_at=_timestamp(message.get("timestamp")),
                        metadata={"message_type": message_type},
                    )
