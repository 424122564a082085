"""Bounded-lifetime conversation context storage."""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..clock import as_utc, utcnow
from ..models import ConversationContextRecord
from .models import ChannelKind, ConversationContext, Welcome, state_from_record

logger = logging.getLogger(__name__)


class ConversationStore:
    """Load and persist :class:`ConversationContext` rows.

    ``load`` locks the active row (``SELECT ... FOR UPDATE`` on Postgres) so
    two workers can never advance the same conversation concurrently. An
    expired row is flagged ``expired`` and left in place; the caller gets a
    fresh ``welcome`` context that is inserted on the next ``persist``.
    """

    def __init__(self, session: Session, *, ttl: timedelta = timedelta(hours=24)) -> None:
        self.session = session
        self.ttl = ttl

    def load(self, tenant_id, contact_id: int, channel: ChannelKind) -> ConversationContext:
        stmt = (
            select(ConversationContextRecord)
            .where(
                ConversationContextRecord.contact_id == contact_id,
                ConversationContextRecord.channel == channel.value,
                ConversationContextRecord.status == "active",
            )
            .with_for_update()
        )
        record = self.session.execute(stmt).scalars().first()
        now = utcnow()
        if record is None:
            return ConversationContext(
                tenant_id=tenant_id, contact_id=contact_id, channel=channel, last_activity=now
            )
        if now - as_utc(record.last_activity) > self.ttl:
            logger.info(
                "Conversation context %s expired (contact=%s channel=%s)",
                record.id,
                contact_id,
                channel.value,
            )
            record.status = "expired"
            self.session.flush()
            return ConversationContext(
                tenant_id=tenant_id,
                contact_id=contact_id,
                channel=channel,
                state=Welcome(),
                last_activity=now,
            )
        return ConversationContext(
            tenant_id=record.tenant_id,
            contact_id=record.contact_id,
            channel=channel,
            state=state_from_record(record.step, record.data),
            last_activity=as_utc(record.last_activity),
            status=record.status,
            record_id=record.id,
        )

    def persist(self, context: ConversationContext) -> ConversationContext:
        context.last_activity = utcnow()
        record = None
        if context.record_id is not None:
            record = self.session.get(ConversationContextRecord, context.record_id)
        if record is None:
            record = ConversationContextRecord(
                tenant_id=context.tenant_id,
                contact_id=context.contact_id,
                channel=context.channel.value,
                status="active",
            )
            self.session.add(record)
        record.step = context.state.step
        record.data = context.state.to_data()
        record.last_activity = context.last_activity
        self.session.flush()
        context.record_id = record.id
        context.status = record.status
        return context


__all__ = ["ConversationStore"]
