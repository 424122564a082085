"""Tenant-scoped CRM models: contacts, products and orders.

Contacts are created lazily by the pipeline on the first inbound message of
a sender. Products and orders are shared with the admin CRUD surface; the
pipeline only reads products, decrements stock and creates orders.
"""

from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal
from typing import List

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..clock import utcnow
from . import Base


ORDER_STATUSES = ("nouvelle", "en cours", "expédiée", "livrée", "annulée")


class Contact(Base):
    """One human sender known to a tenant.

    Attributes:
        id: Integer primary key.
        tenant_id: Owning tenant partition.
        display_name: Placeholder name until an operator edits it.
        phone: Digits-only phone number shared by SMS and WhatsApp channels.
        messenger_id: Page-scoped Messenger sender id.
        source_channel: Channel the contact first wrote from.
        contact_type: CRM classification, ``prospect`` on creation.
    """

    __tablename__ = "contacts"
    __table_args__ = (
        Index("ix_contacts_tenant_phone_unique", "tenant_id", "phone", unique=True),
        Index(
            "ix_contacts_tenant_messenger_unique",
            "tenant_id",
            "messenger_id",
            unique=True,
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )
    display_name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(length=32))
    messenger_id: Mapped[str | None] = mapped_column(String(length=128))
    source_channel: Mapped[str] = mapped_column(String(length=32), nullable=False)
    contact_type: Mapped[str] = mapped_column(
        String(length=32),
        nullable=False,
        default="prospect",
        server_default=text("'prospect'"),
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    orders: Mapped[List["Order"]] = relationship(back_populates="contact")


class Product(Base):
    """Catalogue entry. ``stock`` set to ``None`` means unlimited."""

    __tablename__ = "products"
    __table_args__ = (Index("ix_products_tenant_id", "tenant_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    stock: Mapped[int | None] = mapped_column(Integer)
    active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )


class Order(Base):
    """Customer order.

    Attributes:
        status: One of :data:`ORDER_STATUSES`; new orders start as
            ``nouvelle``.
        total: Sum of the line totals at creation time.
    """

    __tablename__ = "orders"
    __table_args__ = (Index("ix_orders_tenant_contact", "tenant_id", "contact_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )
    contact_id: Mapped[int] = mapped_column(
        ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(length=32),
        nullable=False,
        default="nouvelle",
        server_default=text("'nouvelle'"),
    )
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    contact: Mapped[Contact] = relationship(back_populates="orders")
    lines: Mapped[List["OrderLine"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class OrderLine(Base):
    __tablename__ = "order_lines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    order: Mapped[Order] = relationship(back_populates="lines")
    product: Mapped[Product] = relationship()
