"""Tenant-related SQLAlchemy models.

Tenants are business accounts owning an isolated data partition. Each tenant
configures one or more channel accounts: a phone number on the telephony
gateway, a WhatsApp Cloud number or a Messenger page. Inbound webhooks carry
no tenant id, so the routing key of a channel account must be unique per
channel kind across all tenants.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any, List

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..clock import utcnow
from . import Base


class Tenant(Base):
    """Represents a business account.

    Attributes:
        id: Primary key generated via ``gen_random_uuid`` in Postgres.
        name: Display name of the business, used in greeting replies.
        created_at: Timestamp of the signup.
        channel_accounts: Channel endpoints configured by the tenant.
    """

    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    channel_accounts: Mapped[List["ChannelAccount"]] = relationship(
        back_populates="tenant",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ChannelAccount(Base):
    """One configured external messaging endpoint.

    Attributes:
        id: Primary key.
        tenant_id: Owning tenant.
        channel_kind: One of ``sms``, ``whatsapp-gateway``, ``whatsapp-cloud``
            or ``messenger``.
        routing_key: Value inbound payloads are matched against (phone
            number, page id or provider account SID).
        delegated_mode: Replies come from the delegated generator when set
            together with ``auto_reply``.
        auto_reply: Whether automated replies are enabled for the account.
        is_active: Inactive accounts never match inbound traffic.
        credentials_ref: Name resolved by
            :class:`chatcrm.delivery.credentials.CredentialRegistry`.
        config: Free-form provider options (sender ids, API versions).
    """

    __tablename__ = "channel_accounts"
    __table_args__ = (
        Index(
            "ix_channel_accounts_kind_routing_key_unique",
            "channel_kind",
            "routing_key",
            unique=True,
        ),
        Index("ix_channel_accounts_tenant_id", "tenant_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )
    channel_kind: Mapped[str] = mapped_column(String(length=32), nullable=False)
    routing_key: Mapped[str] = mapped_column(String(length=128), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(length=255))
    delegated_mode: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    auto_reply: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    credentials_ref: Mapped[str | None] = mapped_column(String(length=128))
    config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    tenant: Mapped[Tenant] = relationship(back_populates="channel_accounts")
