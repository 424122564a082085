from __future__ import annotations

import pytest

pytest.importorskip("sqlalchemy")
from chatcrm.models import (  # noqa: E402
    ChannelAccount,
    Contact,
    ConversationContextRecord,
    InboundMessageRecord,
    Tenant,
)
from sqlalchemy.exc import IntegrityError  # type: ignore  # noqa: E402


def test_tenant_defaults_and_channel_accounts(pipeline_db) -> None:
    with pipeline_db.session() as session:
        tenant = session.get(Tenant, pipeline_db.tenant_id)
        kinds = sorted(account.channel_kind for account in tenant.channel_accounts)
        assert kinds == ["messenger", "sms", "whatsapp-cloud", "whatsapp-gateway"]
        account = session.get(ChannelAccount, pipeline_db.accounts["sms"])
        assert account.is_active is True
        assert account.auto_reply is True
        assert account.delegated_mode is False


def test_routing_key_unique_per_channel_kind(pipeline_db) -> None:
    with pipeline_db.session() as session:
        session.add(
            ChannelAccount(
                tenant_id=pipeline_db.other_tenant_id,
                channel_kind="sms",
                routing_key="+22990000001",
            )
        )
        with pytest.raises(IntegrityError):
            session.flush()


def test_contact_phone_unique_per_tenant(pipeline_db) -> None:
    pipeline_db.add_contact("22997000000")
    with pipeline_db.session() as session:
        session.add(
            Contact(
                tenant_id=pipeline_db.other_tenant_id,
                display_name="Same number elsewhere",
                phone="22997000000",
                source_channel="sms",
            )
        )
        session.flush()
        session.add(
            Contact(
                tenant_id=pipeline_db.tenant_id,
                display_name="Duplicate",
                phone="22997000000",
                source_channel="sms",
            )
        )
        with pytest.raises(IntegrityError):
            session.flush()


def test_new_contact_is_a_prospect(pipeline_db) -> None:
    contact_id = pipeline_db.add_contact("22997000001")
    with pipeline_db.session() as session:
        assert session.get(Contact, contact_id).contact_type == "prospect"


def test_only_one_active_context_per_contact_and_channel(pipeline_db) -> None:
    contact_id = pipeline_db.add_contact("22997000002")

    def _context(status: str) -> ConversationContextRecord:
        return ConversationContextRecord(
            tenant_id=pipeline_db.tenant_id,
            contact_id=contact_id,
            channel="whatsapp-cloud",
            step="welcome",
            data={},
            status=status,
        )

    with pipeline_db.session() as session:
        session.add_all([_context("expired"), _context("expired"), _context("active")])
        session.flush()
        session.add(_context("active"))
        with pytest.raises(IntegrityError):
            session.flush()


def test_provider_message_id_is_unique_per_tenant_channel(pipeline_db) -> None:
    contact_id = pipeline_db.add_contact("22997000003")

    def _inbound(channel: str) -> InboundMessageRecord:
        return InboundMessageRecord(
            tenant_id=pipeline_db.tenant_id,
            contact_id=contact_id,
            channel=channel,
            provider_message_id="wamid.1",
            body="bonjour",
        )

    with pipeline_db.session() as session:
        session.add_all([_inbound("whatsapp-cloud"), _inbound("sms")])
        session.flush()
        session.add(_inbound("whatsapp-cloud"))
        with pytest.raises(IntegrityError):
            session.flush()
