"""Map channel sender identifiers to durable tenant contacts."""

from __future__ import annotations

import logging
import re
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..conversations.models import ChannelKind
from ..models import Contact

logger = logging.getLogger(__name__)

_NON_DIGIT_RE = re.compile(r"\D")
_PREFIX_RE = re.compile(r"^(whatsapp|sms|tel):", re.IGNORECASE)

PLACEHOLDER_NAMES = {
    ChannelKind.SMS: "SMS User",
    ChannelKind.WHATSAPP_GATEWAY: "WhatsApp User",
    ChannelKind.WHATSAPP_CLOUD: "WhatsApp User",
    ChannelKind.MESSENGER: "Messenger User",
}


def normalize_sender(kind: ChannelKind, sender_id: str) -> str:
    """Return the stored identifier for ``sender_id`` on ``kind``.

    Phone channels share one digits-only form so a customer writing on SMS
    and on WhatsApp from the same number is a single contact.
    """

    value = (sender_id or "").strip()
    if kind.phone_based:
        return _NON_DIGIT_RE.sub("", _PREFIX_RE.sub("", value))
    return value


class ContactResolver:
    """Idempotent ``resolve_or_create`` over the ``contacts`` table.

    A new contact is inserted and committed immediately; a unique violation
    means another worker created it first, in which case the row is fetched
    again instead of failing.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def _identifier_column(self, kind: ChannelKind):
        return Contact.phone if kind.phone_based else Contact.messenger_id

    def find(self, tenant_id: uuid.UUID, kind: ChannelKind, identifier: str) -> Contact | None:
        column = self._identifier_column(kind)
        stmt = select(Contact).where(Contact.tenant_id == tenant_id, column == identifier)
        return self.session.execute(stmt).scalars().first()

    def resolve_or_create(
        self,
        tenant_id: uuid.UUID,
        kind: ChannelKind,
        sender_id: str,
        *,
        display_name: str | None = None,
    ) -> Contact:
        identifier = normalize_sender(kind, sender_id)
        if not identifier:
            raise ValueError(f"Empty sender identifier for channel {kind.value}")

        existing = self.find(tenant_id, kind, identifier)
        if existing is not None:
            return existing

        contact = Contact(
            tenant_id=tenant_id,
            display_name=display_name or PLACEHOLDER_NAMES[kind],
            source_channel=kind.value,
            contact_type="prospect",
        )
        if kind.phone_based:
            contact.phone = identifier
        else:
            contact.messenger_id = identifier
        self.session.add(contact)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            existing = self.find(tenant_id, kind, identifier)
            if existing is None:
                raise
            logger.debug(
                "Contact for %s sender created concurrently; reusing id=%s",
                kind.value,
                existing.id,
            )
            return existing
        logger.info(
            "Created %s contact id=%s for tenant %s", kind.value, contact.id, tenant_id
        )
        return contact


__all__ = ["ContactResolver", "PLACEHOLDER_NAMES", "normalize_sender"]
