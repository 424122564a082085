"""Inbound message pipeline.

One call to :meth:`InboundPipeline.process` is one unit of work:

    tenant resolution → contact resolution → inbound record (dedup) →
    context load → classification → reply → context persist → delivery

Stages report expected failures as :class:`~chatcrm.pipeline.result.Err`
values; :meth:`process` never raises.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..contacts.resolver import ContactResolver, normalize_sender
from ..conversations.models import InboundMessage, OutboundMessage
from ..conversations.store import ConversationStore
from ..delivery.service import DeliveryResult, DeliveryService, SqlAlchemyInboundLog
from ..delivery.transports import TransportFactory
from ..dialogue.engine import DialogueEngine
from ..dialogue.store import SqlAlchemyOrderStore
from ..documents import DocumentNotifier, DocumentRequester
from ..errors import ErrorKind
from ..escalation import HandoffNotifier, evaluate
from ..intents.classifier import IntentClassifier, IntentResult
from ..models import Contact, InboundMessageRecord
from ..responders.coordinator import ResponseCoordinator
from ..responders.delegated import DelegatedGenerator
from ..responders.history import SqlAlchemyHistorySink
from ..settings import Settings
from ..tenants.resolver import AccountRoute, Resolution, TenantResolver
from .result import Err, Ok, Result

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessedMessage:
    contact_id: int
    intent: IntentResult
    reply: str
    used_delegated: bool
    delivery: DeliveryResult | None


class InboundPipeline:
    """Wire the pipeline stages around a SQLAlchemy session factory."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        resolver: TenantResolver,
        transports: TransportFactory,
        *,
        settings: Settings,
        classifier: IntentClassifier | None = None,
        generator: DelegatedGenerator | None = None,
        delegated_executor: Executor | None = None,
        document_notifier: DocumentNotifier | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.resolver = resolver
        self.transports = transports
        self.settings = settings
        self.classifier = classifier or IntentClassifier()
        self.generator = generator
        self.delegated_executor = delegated_executor
        self.document_notifier = document_notifier

    # ------------------------------------------------------------------
    # Stage: tenant resolution
    # ------------------------------------------------------------------

    def resolve(self, message: InboundMessage) -> Result[Resolution]:
        resolution = self.resolver.resolve(
            message.channel, message.routing_key, *message.alternate_routing_keys
        )
        if resolution is None:
            return Err(
                ErrorKind.UNRESOLVED_TENANT,
                f"no active {message.channel.value} account for {message.routing_key!r}",
            )
        return Ok(resolution)

    def ordering_key(self, message: InboundMessage, route: AccountRoute) -> tuple:
        return (
            route.tenant_id,
            message.channel.value,
            normalize_sender(message.channel, message.sender_id),
        )

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def process(
        self, message: InboundMessage, resolution: Resolution | None = None
    ) -> Result[ProcessedMessage]:
        try:
            if resolution is None:
                resolved = self.resolve(message)
                if isinstance(resolved, Err):
                    logger.error("Dropping inbound message: %s", resolved.message)
                    return resolved
                resolution = resolved.value
            return self._process(message, resolution.route)
        except Exception as exc:
            logger.exception(
                "Inbound %s message %s failed",
                message.channel.value,
                message.provider_message_id,
            )
            return Err(ErrorKind.DATA_STORE_FAILURE, repr(exc))

    def _process(self, message: InboundMessage, route: AccountRoute) -> Result[ProcessedMessage]:
        settings = self.settings
        with self.session_factory() as session:
            contact = ContactResolver(session).resolve_or_create(
                route.tenant_id,
                message.channel,
                message.sender_id,
                display_name=message.sender_name,
            )
            recorded = self._record_inbound(session, route, contact, message)
            if isinstance(recorded, Err):
                logger.info("%s", recorded.message)
                return recorded

            store = ConversationStore(
                session, ttl=timedelta(hours=settings.context_ttl_hours)
            )
            context = store.load(route.tenant_id, contact.id, message.channel)
            intent = self.classifier.classify(message.text)
            HandoffNotifier(session).notify(context, evaluate(intent, message.text), message.text)

            engine = DialogueEngine(
                SqlAlchemyOrderStore(session),
                DocumentRequester(session, self.document_notifier),
                confirmation_required=settings.order_confirmation_required,
                currency=settings.currency_label,
                tenant_name=route.tenant_name,
            )
            coordinator = ResponseCoordinator(
                engine,
                history=SqlAlchemyHistorySink(session),
                generator=self.generator,
                executor=self.delegated_executor,
                timeout=settings.delegated_timeout_seconds,
            )
            reply = coordinator.respond(route, context, intent, message.text)

            try:
                store.persist(context)
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                logger.exception(
                    "Could not persist conversation context for contact %s", contact.id
                )

            delivery = DeliveryService(
                self.transports,
                SqlAlchemyInboundLog(session),
                window=timedelta(hours=settings.session_window_hours),
                max_attempts=settings.max_delivery_attempts,
            ).deliver(
                OutboundMessage(
                    channel=message.channel,
                    destination=message.sender_id,
                    body=reply.text,
                ),
                contact,
                route,
            )

        return Ok(
            ProcessedMessage(
                contact_id=contact.id,
                intent=intent,
                reply=reply.text,
                used_delegated=reply.used_delegated,
                delivery=delivery,
            )
        )

    def _record_inbound(
        self,
        session: Session,
        route: AccountRoute,
        contact: Contact,
        message: InboundMessage,
    ) -> Result[InboundMessageRecord]:
        record = InboundMessageRecord(
            tenant_id=route.tenant_id,
            contact_id=contact.id,
            channel=message.channel.value,
            provider_message_id=message.provider_message_id,
            body=message.text,
            received_at=message.received_at,
        )
        session.add(record)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            return Err(
                ErrorKind.DUPLICATE_MESSAGE,
                f"duplicate {message.channel.value} message "
                f"{message.provider_message_id}; already processed",
            )
        return Ok(record)


__all__ = ["InboundPipeline", "ProcessedMessage"]
