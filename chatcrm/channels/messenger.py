"""Messenger platform channel adapter."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from ..clock import utcnow
from ..conversations.models import ChannelKind, InboundMessage
from .base import ChannelAdapter, verify_hub_signature

logger = logging.getLogger(__name__)


class MessengerAdapter(ChannelAdapter):
    channel_name = "messenger"

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
            page_id = str(entry.get("id") or "")
            for event in entry.get("messaging") or []:
                message = event.get("message") or {}
                if message.get("is_echo"):
                    continue
                sender_id = str((event.get("sender") or {}).get("id") or "")
                recipient_id = str((event.get("recipient") or {}).get("id") or page_id)
                text = message.get("text") or ""
                if not text:
                    postback = event.get("postback") or {}
                    text = postback.get("title") or postback.get("payload") or ""
                if not sender_id or not text:
                    logger.debug("Ignoring Messenger event without text from page %s", page_id)
                    continue
                timestamp = event.get("timestamp")
                try:
                    received_at = (
                        datetime.fromtimestamp(int(timestamp) / 1000, tz=timezone.utc)
                        if timestamp
                        else utcnow()
                    )
                except (TypeError, ValueError, OverflowError):
                    received_at = utcnow()
                yield InboundMessage(
                    channel=ChannelKind.MESSENGER,
                    routing_key=recipient_id,
                    alternate_routing_keys=(page_id,) if page_id and page_id != recipient_id else (),
                    sender_id=sender_id,
                    text=text,
                    provider_message_id=message.get("mid") or None,
                    received_at=received_at,
                )
