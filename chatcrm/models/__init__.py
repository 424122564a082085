"""SQLAlchemy declarative base and pipeline models.

This package exposes a single declarative ``Base`` class shared by every table
the messaging pipeline touches. Tenants and channel accounts are provisioned
by the admin tooling; contacts, orders and conversation state are written by
the pipeline itself.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


# Re-export models so callers can import them via ``from chatcrm.models import
# Contact`` instead of touching the individual modules.
from .conversation import (
    ConversationContextRecord,
    ConversationHistory,
    DocumentRequest,
    HandoffNotification,
    InboundMessageRecord,
)
from .crm import Contact, Order, OrderLine, Product
from .tenant import ChannelAccount, Tenant


__all__ = [
    "Base",
    "ChannelAccount",
    "Contact",
    "ConversationContextRecord",
    "ConversationHistory",
    "DocumentRequest",
    "HandoffNotification",
    "InboundMessageRecord",
    "Order",
    "OrderLine",
    "Product",
    "Tenant",
]
