"""Outbound delivery with session-window enforcement and SMS fallback."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..clock import as_utc, utcnow
from ..conversations.models import ChannelKind, OutboundMessage
from ..errors import ErrorKind
from ..models import Contact, InboundMessageRecord
from ..tenants.resolver import AccountRoute
from .credentials import MissingCredentialsError
from .transports import Transport, TransportReceipt

logger = logging.getLogger(__name__)

BODY_LIMITS = {
    ChannelKind.SMS: 1600,
    ChannelKind.WHATSAPP_GATEWAY: 4000,
    ChannelKind.WHATSAPP_CLOUD: 4000,
    ChannelKind.MESSENGER: 2000,
}

RENEWAL_NOTICE = "\n\n(Répondez à ce message pour garder la conversation ouverte.)"
FALLBACK_PREVIEW_CHARS = 100
FALLBACK_INSTRUCTION = (
    '\n\n(Votre session WhatsApp a expiré. Répondez "Bonjour" dans WhatsApp '
    "pour la renouveler.)"
)


class DeliveryStatus(str, Enum):
    SENT = "sent"
    SENT_VIA_FALLBACK = "sent-via-fallback"
    FAILED = "failed"


@dataclass(frozen=True)
class DeliveryResult:
    status: DeliveryStatus
    attempts: int
    error: ErrorKind | None = None
    provider_error_code: str | None = None
    detail: str = ""


class InboundLog(Protocol):
    def last_inbound_at(self, contact_id: int, channel: ChannelKind) -> datetime | None:
        ...


class SqlAlchemyInboundLog:
    """Reads the last inbound timestamp from ``inbound_messages``."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def last_inbound_at(self, contact_id: int, channel: ChannelKind) -> datetime | None:
        value = self.session.execute(
            select(func.max(InboundMessageRecord.received_at)).where(
                InboundMessageRecord.contact_id == contact_id,
                InboundMessageRecord.channel == channel.value,
            )
        ).scalar_one_or_none()
        return as_utc(value) if value is not None else None


class TransportProvider(Protocol):
    def primary(self, route: AccountRoute) -> Transport:
        ...

    def fallback(self, route: AccountRoute) -> Transport | None:
        ...


def truncate(body: str, limit: int) -> str:
    if len(body) <= limit:
        return body
    return body[: limit - 3] + "..."


def fallback_body(body: str, *, session_expired: bool) -> str:
    preview = body
    if len(body) > FALLBACK_PREVIEW_CHARS:
        preview = body[:FALLBACK_PREVIEW_CHARS] + "..."
    if session_expired:
        return truncate(preview + FALLBACK_INSTRUCTION, BODY_LIMITS[ChannelKind.SMS])
    return truncate(body, BODY_LIMITS[ChannelKind.SMS])


class DeliveryService:
    """Deliver replies through the channel transport.

    WhatsApp-style channels only accept free-form messages within
    ``window`` of the contact's last inbound message. Outside the window the
    message is still attempted with a renewal notice appended. A rejected
    delivery on such a channel is retried once over SMS; nothing is retried
    beyond ``max_attempts``.
    """

    def __init__(
        self,
        transports: TransportProvider,
        inbound_log: InboundLog,
        *,
        window: timedelta = timedelta(hours=24),
        max_attempts: int = 2,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.transports = transports
        self.inbound_log = inbound_log
        self.window = window
        self.max_attempts = max_attempts
        self.clock = clock

    def within_window(self, contact: Contact, channel: ChannelKind) -> bool:
        last = self.inbound_log.last_inbound_at(contact.id, channel)
        if last is None:
            return False
        return self.clock() - as_utc(last) <= self.window

    def deliver(
        self, outbound: OutboundMessage, contact: Contact, route: AccountRoute
    ) -> DeliveryResult:
        channel = outbound.channel
        limit = BODY_LIMITS[channel]
        body = truncate(outbound.body, limit)
        if channel.has_session_window and not self.within_window(contact, channel):
            logger.info(
                "Session window closed for contact %s on %s; sending with renewal notice",
                contact.id,
                channel.value,
            )
            body = truncate(outbound.body, limit - len(RENEWAL_NOTICE)) + RENEWAL_NOTICE

        receipt = self._attempt(outbound, route, outbound.destination, body, fallback=False)
        if receipt.success:
            return DeliveryResult(DeliveryStatus.SENT, outbound.attempts)

        if not channel.has_session_window or outbound.attempts >= self.max_attempts:
            return self._failed(outbound, route, receipt)

        error = (
            ErrorKind.DELIVERY_WINDOW_EXPIRED
            if receipt.session_expired
            else ErrorKind.TRANSPORT_FAILURE
        )
        if not contact.phone:
            return self._failed(outbound, route, receipt, error)
        sms_body = fallback_body(outbound.body, session_expired=receipt.session_expired)
        fallback_receipt = self._attempt(outbound, route, contact.phone, sms_body, fallback=True)
        if fallback_receipt.success:
            logger.info(
                "Delivered to contact %s via SMS fallback after %s rejection (%s)",
                contact.id,
                channel.value,
                receipt.provider_error_code,
            )
            return DeliveryResult(
                DeliveryStatus.SENT_VIA_FALLBACK,
                outbound.attempts,
                error,
                receipt.provider_error_code,
            )
        return self._failed(outbound, route, fallback_receipt, error)

    def _attempt(
        self,
        outbound: OutboundMessage,
        route: AccountRoute,
        destination: str,
        body: str,
        *,
        fallback: bool,
    ) -> TransportReceipt:
        try:
            if fallback:
                transport = self.transports.fallback(route)
            else:
                transport = self.transports.primary(route)
        except MissingCredentialsError as exc:
            logger.error("Cannot build transport for account %s: %s", route.account_id, exc)
            return TransportReceipt.now(False, detail=str(exc))
        if transport is None:
            return TransportReceipt.now(False, detail="no fallback transport configured")
        outbound.attempts += 1
        return transport.send(destination, body)

    def _failed(
        self,
        outbound: OutboundMessage,
        route: AccountRoute,
        receipt: TransportReceipt,
        error: ErrorKind = ErrorKind.TRANSPORT_FAILURE,
    ) -> DeliveryResult:
        logger.error(
            "Delivery failed tenant=%s channel=%s attempts=%s code=%s detail=%s",
            route.tenant_id,
            outbound.channel.value,
            outbound.attempts,
            receipt.provider_error_code,
            receipt.detail,
        )
        return DeliveryResult(
            DeliveryStatus.FAILED,
            outbound.attempts,
            error,
            receipt.provider_error_code,
            receipt.detail,
        )


__all__ = [
    "DeliveryResult",
    "DeliveryService",
    "DeliveryStatus",
    "SqlAlchemyInboundLog",
    "fallback_body",
]
