"""Base abstractions for inbound channel adapters."""

from __future__ import annotations

import hashlib
import hmac
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from ..conversations.models import InboundMessage


class ChannelAdapter(ABC):
    """Abstract base class encapsulating provider-specific payload handling."""

    #: Lowercase provider identifier used in routes and configuration.
    channel_name: str

    @abstractmethod
    def parse_incoming(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
        config: Mapping[str, Any],
    ) -> Iterable[InboundMessage]:
        """Convert a webhook payload into normalized inbound messages."""

    def verify_signature(
        self,
        body: bytes,
        headers: Mapping[str, str],
        config: Mapping[str, Any],
    ) -> bool:
        """Validate authenticity of the webhook payload.

        Adapters can override this to implement signature checks. The default
        implementation returns ``True``.
        """

        return True


def verify_hub_signature(
    body: bytes, headers: Mapping[str, str], secret: str | None
) -> bool:
    """Check Meta's ``X-Hub-Signature-256`` header; no secret means no check."""

    if not secret:
        return True
    received = headers.get("X-Hub-Signature-256")
    if not received:
        return False
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    expected = f"sha256={digest}"
    return hmac.compare_digest(received, expected)
