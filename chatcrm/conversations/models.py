"""Domain value types flowing through the messaging pipeline."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

from ..clock import utcnow


class ChannelKind(str, Enum):
    SMS = "sms"
    WHATSAPP_GATEWAY = "whatsapp-gateway"
    WHATSAPP_CLOUD = "whatsapp-cloud"
    MESSENGER = "messenger"

    @property
    def phone_based(self) -> bool:
        return self is not ChannelKind.MESSENGER

    @property
    def has_session_window(self) -> bool:
        return self in (ChannelKind.WHATSAPP_GATEWAY, ChannelKind.WHATSAPP_CLOUD)


@dataclass
class InboundMessage:
    """Uniform representation of inbound channel messages."""

    channel: ChannelKind
    routing_key: str
    sender_id: str
    text: str
    provider_message_id: str | None = None
    received_at: datetime = field(default_factory=utcnow)
    sender_name: str | None = None
    alternate_routing_keys: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Messages without a provider id can never be recognised as retries.
        if not self.provider_message_id:
            self.provider_message_id = f"local-{uuid.uuid4().hex}"


@dataclass
class OutboundMessage:
    channel: ChannelKind
    destination: str
    body: str
    attempts: int = 0


# ---------------------------------------------------------------------------
# Dialogue steps
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Welcome:
    step = "welcome"

    def to_data(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True)
class AwaitingProduct:
    """Waiting for the customer to name a product."""

    step = "awaiting-product"
    quantity: int | None = None

    def to_data(self) -> dict[str, Any]:
        return {"quantity": self.quantity}


@dataclass(frozen=True)
class AwaitingQuantity:
    """Product resolved, waiting for how many units."""

    step = "awaiting-quantity"
    product_id: int
    product_name: str

    def to_data(self) -> dict[str, Any]:
        return {"product_id": self.product_id, "product_name": self.product_name}


@dataclass(frozen=True)
class AwaitingConfirmation:
    """Product and quantity resolved, waiting for a yes/no."""

    step = "awaiting-confirmation"
    product_id: int
    product_name: str
    quantity: int

    def to_data(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
        }


@dataclass(frozen=True)
class Idle:
    step = "idle"
    last_order_id: int | None = None

    def to_data(self) -> dict[str, Any]:
        return {"last_order_id": self.last_order_id}


DialogueState = Union[Welcome, AwaitingProduct, AwaitingQuantity, AwaitingConfirmation, Idle]


def state_from_record(step: str, data: dict[str, Any] | None) -> DialogueState:
    """Rebuild a typed dialogue state from its stored tag and data.

    Unknown tags or missing required fields fall back to :class:`Welcome`
    so a corrupted row can never wedge a conversation.
    """

    data = data or {}
    try:
        if step == AwaitingProduct.step:
            quantity = data.get("quantity")
            return AwaitingProduct(quantity=int(quantity) if quantity is not None else None)
        if step == AwaitingQuantity.step:
            return AwaitingQuantity(
                product_id=int(data["product_id"]),
                product_name=str(data["product_name"]),
            )
        if step == AwaitingConfirmation.step:
            return AwaitingConfirmation(
                product_id=int(data["product_id"]),
                product_name=str(data["product_name"]),
                quantity=int(data["quantity"]),
            )
        if step == Idle.step:
            last = data.get("last_order_id")
            return Idle(last_order_id=int(last) if last is not None else None)
    except (KeyError, TypeError, ValueError):
        return Welcome()
    return Welcome()


@dataclass
class ConversationContext:
    """Dialogue context for one (contact, channel) pair."""

    tenant_id: uuid.UUID
    contact_id: int
    channel: ChannelKind
    state: DialogueState = field(default_factory=Welcome)
    last_activity: datetime = field(default_factory=utcnow)
    status: str = "active"
    record_id: int | None = None

    @property
    def step(self) -> str:
        return self.state.step


__all__ = [
    "AwaitingConfirmation",
    "AwaitingProduct",
    "AwaitingQuantity",
    "ChannelKind",
    "ConversationContext",
    "DialogueState",
    "Idle",
    "InboundMessage",
    "OutboundMessage",
    "Welcome",
    "state_from_record",
]
