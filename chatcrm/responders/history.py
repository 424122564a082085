"""Conversation-history sink used for analytics."""

from __future__ import annotations

import uuid
from typing import Protocol

from sqlalchemy.orm import Session

from ..models import ConversationHistory


class HistorySink(Protocol):
    def record(
        self,
        *,
        tenant_id: uuid.UUID,
        contact_id: int,
        channel: str,
        inbound_text: str,
        reply_text: str,
        mode: str,
        intent: str | None,
        confidence: float | None,
    ) -> None:
        ...


class SqlAlchemyHistorySink:
    """Append history rows to the current unit of work.

    Rows are only added to the session; they are committed together with
    the conversation context at the end of the turn.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def record(
        self,
        *,
        tenant_id: uuid.UUID,
        contact_id: int,
        channel: str,
        inbound_text: str,
        reply_text: str,
        mode: str,
        intent: str | None,
        confidence: float | None,
    ) -> None:
        self.session.add(
            ConversationHistory(
                tenant_id=tenant_id,
                contact_id=contact_id,
                channel=channel,
                inbound_text=inbound_text,
                reply_text=reply_text,
                mode=mode,
                intent=intent,
                confidence=confidence,
            )
        )


__all__ = ["HistorySink", "SqlAlchemyHistorySink"]
