"""Outbound transports, one per channel kind.

Every transport exposes ``send(destination, body) -> TransportReceipt`` and
must not raise for provider or network errors: those are reported in the
receipt so the delivery layer can decide on a fallback.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import requests

from ..clock import utcnow
from ..conversations.models import ChannelKind
from ..tenants.resolver import AccountRoute, TenantResolver
from .credentials import CredentialRegistry

logger = logging.getLogger(__name__)

TWILIO_API = "https://api.twilio.com/2010-04-01"
GRAPH_API = "https://graph.facebook.com"
DEFAULT_GRAPH_VERSION = "v20.0"

# Provider error codes meaning "free-form session window closed".
SESSION_EXPIRED_CODES = frozenset({"63015", "63016", "131047"})

# Most recent dry-run sends kept for inspection.
DRY_RUN_LOG_LIMIT = 500


@dataclass(frozen=True)
class TransportReceipt:
    success: bool
    provider_error_code: str | None = None
    provider_message_id: str | None = None
    detail: str = ""
    created_at: datetime | None = None

    @property
    def session_expired(self) -> bool:
        return self.provider_error_code in SESSION_EXPIRED_CODES

    @staticmethod
    def now(success: bool, **kwargs: Any) -> "TransportReceipt":
        return TransportReceipt(success=success, created_at=utcnow(), **kwargs)


class Transport(Protocol):
    def send(self, destination: str, body: str) -> TransportReceipt:
        ...


def _json_or_empty(response: requests.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {"raw_text": response.text}
    return data if isinstance(data, dict) else {"raw": data}


def _e164(number: str) -> str:
    digits = "".join(ch for ch in number if ch.isdigit())
    return f"+{digits}" if digits else number


class TwilioTransport:
    """Twilio Programmable Messaging for SMS and the WhatsApp gateway."""

    def __init__(
        self,
        *,
        account_sid: str,
        auth_token: str,
        from_number: str,
        whatsapp: bool = False,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.whatsapp = whatsapp
        self.timeout = timeout
        self.session = session or requests.Session()

    def _address(self, number: str) -> str:
        bare = number.split(":", 1)[1] if number.startswith("whatsapp:") else number
        address = _e164(bare)
        return f"whatsapp:{address}" if self.whatsapp else address

    def send(self, destination: str, body: str) -> TransportReceipt:
        url = f"{TWILIO_API}/Accounts/{self.account_sid}/Messages.json"
        try:
            response = self.session.post(
                url,
                data={
                    "From": self._address(self.from_number),
                    "To": self._address(destination),
                    "Body": body,
                },
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            return TransportReceipt.now(False, detail=f"twilio request failed: {exc}")
        data = _json_or_empty(response)
        if 200 <= response.status_code < 300:
            return TransportReceipt.now(True, provider_message_id=data.get("sid"))
        code = data.get("code")
        return TransportReceipt.now(
            False,
            provider_error_code=str(code) if code is not None else None,
            detail=str(data.get("message") or response.status_code),
        )


class MetaWhatsAppTransport:
    """WhatsApp Cloud API session (free-form text) messages."""

    def __init__(
        self,
        *,
        access_token: str,
        phone_number_id: str,
        api_version: str = DEFAULT_GRAPH_VERSION,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.api_version = api_version
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def messages_url(self) -> str:
        return f"{GRAPH_API}/{self.api_version}/{self.phone_number_id}/messages"

    def send(self, destination: str, body: str) -> TransportReceipt:
        payload = {
            "messaging_product": "whatsapp",
            "to": "".join(ch for ch in destination if ch.isdigit()),
            "type": "text",
            "text": {"body": body},
        }
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        try:
            response = self.session.post(
                self.messages_url, json=payload, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as exc:
            return TransportReceipt.now(False, detail=f"graph request failed: {exc}")
        data = _json_or_empty(response)
        if 200 <= response.status_code < 300:
            messages = data.get("messages") or [{}]
            return TransportReceipt.now(True, provider_message_id=messages[0].get("id"))
        error = data.get("error") or {}
        code = error.get("code")
        return TransportReceipt.now(
            False,
            provider_error_code=str(code) if code is not None else None,
            detail=str(error.get("message") or response.status_code),
        )


class MessengerTransport:
    """Messenger Send API replies within the standard messaging window."""

    def __init__(
        self,
        *,
        page_access_token: str,
        api_version: str = DEFAULT_GRAPH_VERSION,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.page_access_token = page_access_token
        self.api_version = api_version
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, destination: str, body: str) -> TransportReceipt:
        url = f"{GRAPH_API}/{self.api_version}/me/messages"
        payload = {
            "recipient": {"id": destination},
            "messaging_type": "RESPONSE",
            "message": {"text": body},
        }
        try:
            response = self.session.post(
                url,
                params={"access_token": self.page_access_token},
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            return TransportReceipt.now(False, detail=f"messenger request failed: {exc}")
        data = _json_or_empty(response)
        if 200 <= response.status_code < 300:
            return TransportReceipt.now(True, provider_message_id=data.get("message_id"))
        error = data.get("error") or {}
        code = error.get("code")
        return TransportReceipt.now(
            False,
            provider_error_code=str(code) if code is not None else None,
            detail=str(error.get("message") or response.status_code),
        )


class DryRunTransport:
    """Logs instead of sending. Default outside production."""

    def __init__(self, channel: ChannelKind, sent: deque[dict[str, Any]] | None = None) -> None:
        self.channel = channel
        self.sent = sent if sent is not None else deque(maxlen=DRY_RUN_LOG_LIMIT)

    def send(self, destination: str, body: str) -> TransportReceipt:
        message_id = f"dryrun-{uuid.uuid4().hex}"
        self.sent.append(
            {
                "channel": self.channel.value,
                "destination": destination,
                "body": body,
                "message_id": message_id,
            }
        )
        logger.info(
            "DRY-RUN %s message to %s (%d chars)",
            self.channel.value,
            destination[-4:],
            len(body),
        )
        return TransportReceipt.now(True, provider_message_id=message_id, detail="dry_run")


class TransportFactory:
    """Build transports for channel account routes."""

    def __init__(
        self,
        credentials: CredentialRegistry,
        *,
        resolver: TenantResolver | None = None,
        dry_run: bool = True,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.credentials = credentials
        self.resolver = resolver
        self.dry_run = dry_run
        self.timeout = timeout
        self.session = session or requests.Session()
        self.dry_run_log: deque[dict[str, Any]] = deque(maxlen=DRY_RUN_LOG_LIMIT)

    def primary(self, route: AccountRoute) -> Transport:
        if self.dry_run:
            return DryRunTransport(route.channel_kind, self.dry_run_log)
        creds = self.credentials.get_credentials(route.credentials_ref, route.config)
        kind = route.channel_kind
        if kind in (ChannelKind.SMS, ChannelKind.WHATSAPP_GATEWAY):
            creds.require("account_sid", "auth_token")
            return TwilioTransport(
                account_sid=creds.account_sid or "",
                auth_token=creds.auth_token or "",
                from_number=creds.from_number or route.routing_key,
                whatsapp=kind is ChannelKind.WHATSAPP_GATEWAY,
                timeout=self.timeout,
                session=self.session,
            )
        if kind is ChannelKind.WHATSAPP_CLOUD:
            creds.require("access_token")
            return MetaWhatsAppTransport(
                access_token=creds.access_token or "",
                phone_number_id=creds.phone_number_id or route.routing_key,
                api_version=creds.api_version or DEFAULT_GRAPH_VERSION,
                timeout=self.timeout,
                session=self.session,
            )
        creds.require("access_token")
        return MessengerTransport(
            page_access_token=creds.access_token or "",
            api_version=creds.api_version or DEFAULT_GRAPH_VERSION,
            timeout=self.timeout,
            session=self.session,
        )

    def fallback(self, route: AccountRoute) -> Transport | None:
        """SMS transport used when a WhatsApp-style delivery is rejected."""

        if not route.channel_kind.has_session_window or self.resolver is None:
            return None
        sms_route = self.resolver.fallback_route(route)
        if sms_route is None:
            return None
        return self.primary(sms_route)


__all__ = [
    "DryRunTransport",
    "MessengerTransport",
    "MetaWhatsAppTransport",
    "SESSION_EXPIRED_CODES",
    "Transport",
    "TransportFactory",
    "TransportReceipt",
    "TwilioTransport",
]
