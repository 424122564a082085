"""Turn-based dialogue state machine.

Steps: ``welcome`` → ``awaiting-product`` → ``awaiting-quantity`` →
``awaiting-confirmation`` (only when confirmations are enabled) → ``idle``.

A greeting resets any flow. An order request merges whatever the message
carries (product, quantity) with what the current step already holds, so a
bare ``"3"`` while awaiting a quantity completes the order without asking
for the product again. Informational intents (catalogue, tracking, quotes)
answer without touching the current step.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from ..conversations.models import (
    AwaitingConfirmation,
    AwaitingProduct,
    AwaitingQuantity,
    ConversationContext,
    DialogueState,
    Idle,
    Welcome,
)
from ..documents import DocumentRequester
from ..errors import DataStoreError, ErrorKind
from ..intents.classifier import Intent, IntentResult, extract_quantity, normalize_text
from ..models import Product
from ..pipeline.result import Ok
from . import replies
from .store import OrderStore

logger = logging.getLogger(__name__)

CATALOGUE_LIMIT = 15
SUGGESTION_LIMIT = 5
INVOICEABLE_STATUSES = ("livrée", "expédiée")

_CONFIRM_RE = re.compile(r"\b(oui|ok|okay|yes|confirme|confirmer|valide|valider)\b|d'accord")
_CANCEL_RE = re.compile(r"\b(non|no|annule|annuler|stop)\b")

_GUESSES = (
    (re.compile(r"prix|tarif|cout"), "Pour un devis, tapez « devis »."),
    (re.compile(r"livr|colis|recu"), "Pour suivre une commande, tapez « statut commande <numéro> »."),
    (re.compile(r"produit|stock|dispo"), "Pour voir nos produits, tapez « catalogue »."),
)


@dataclass
class DialogueTurn:
    reply: str
    state: DialogueState
    error: ErrorKind | None = None
    order_id: int | None = None


class DialogueEngine:
    """Execute a classified intent against a conversation context.

    Args:
        orders: Tenant-scoped product and order access.
        documents: Records quote and invoice requests. Optional so the
            engine can be exercised without a document backend.
        confirmation_required: Insert the ``awaiting-confirmation`` step
            before placing an order.
        currency: Label appended to amounts.
        tenant_name: Shown in the greeting.
    """

    def __init__(
        self,
        orders: OrderStore,
        documents: DocumentRequester | None = None,
        *,
        confirmation_required: bool = False,
        currency: str = "FCFA",
        tenant_name: str | None = None,
    ) -> None:
        self.orders = orders
        self.documents = documents
        self.confirmation_required = confirmation_required
        self.currency = currency
        self.tenant_name = tenant_name

    def handle(
        self, context: ConversationContext, intent: IntentResult, text: str
    ) -> DialogueTurn:
        """Produce the reply for one inbound message and advance ``context``.

        Never raises for data-store failures: the customer receives a generic
        technical-difficulty reply and the step is left unchanged.
        """

        try:
            turn = self._dispatch(context, intent, normalize_text(text), text)
        except (DataStoreError, SQLAlchemyError):
            logger.exception(
                "Dialogue turn failed for contact %s on %s",
                context.contact_id,
                context.channel.value,
            )
            turn = DialogueTurn(
                replies.TECHNICAL_DIFFICULTY, context.state, ErrorKind.DATA_STORE_FAILURE
            )
        if not turn.reply.strip():
            turn.reply = replies.fallback()
        context.state = turn.state
        return turn

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def _dispatch(
        self,
        context: ConversationContext,
        intent: IntentResult,
        normalized: str,
        raw: str,
    ) -> DialogueTurn:
        state = context.state
        kind = intent.intent

        if kind is Intent.GREETING:
            return self._greeting(context)
        if kind is Intent.CREATE_ORDER:
            return self._create_order(context, intent.payload, raw)

        if isinstance(state, AwaitingConfirmation):
            if _CANCEL_RE.search(normalized):
                return DialogueTurn(replies.order_cancelled(), Idle())
            if _CONFIRM_RE.search(normalized):
                return self._place(
                    context, state.product_id, state.product_name, state.quantity
                )
        if isinstance(state, AwaitingQuantity) and kind is Intent.UNKNOWN:
            quantity = extract_quantity(normalized)
            if quantity is not None:
                product = self.orders.get_product(context.tenant_id, state.product_id)
                if product is None:
                    return self._product_missing(context, state.product_name, None)
                return self._with_product(context, product, quantity)
        if isinstance(state, AwaitingProduct) and kind is Intent.UNKNOWN:
            product = self.orders.match_product(context.tenant_id, raw)
            if product is None:
                return self._product_missing(context, raw.strip(), state.quantity)
            quantity = extract_quantity(normalized) or state.quantity
            return self._with_product(context, product, quantity)

        handler = {
            Intent.HELP: self._help,
            Intent.LIST_PRODUCTS: self._catalogue,
            Intent.TRACK_ORDER: self._track,
            Intent.GENERATE_QUOTE: self._quote,
            Intent.GENERATE_INVOICE: self._invoice,
            Intent.ACKNOWLEDGE: self._acknowledge,
            Intent.GOODBYE: self._goodbye,
        }.get(kind)
        if handler is not None:
            return handler(context, intent)
        return self._unknown(context, normalized)

    # ------------------------------------------------------------------
    # Order flow
    # ------------------------------------------------------------------

    def _create_order(
        self, context: ConversationContext, payload: dict, raw: str
    ) -> DialogueTurn:
        state = context.state
        query = payload.get("product")
        quantity = payload.get("quantity") if payload.get("quantity_explicit") else None

        product: Product | None = None
        if query:
            product = self.orders.match_product(context.tenant_id, query)
        if product is None:
            product = self.orders.find_product_in_text(context.tenant_id, raw)
        if product is None and not query and isinstance(
            state, (AwaitingQuantity, AwaitingConfirmation)
        ):
            product = self.orders.get_product(context.tenant_id, state.product_id)
        if quantity is None and isinstance(state, AwaitingProduct):
            quantity = state.quantity

        if product is None:
            return self._product_missing(context, query, quantity)
        return self._with_product(context, product, quantity)

    def _with_product(
        self, context: ConversationContext, product: Product, quantity: int | None
    ) -> DialogueTurn:
        if quantity is None:
            return DialogueTurn(
                replies.ask_quantity(product, self.currency),
                AwaitingQuantity(product_id=product.id, product_name=product.name),
            )
        if self.confirmation_required:
            return DialogueTurn(
                replies.confirm_order(product, quantity, self.currency),
                AwaitingConfirmation(
                    product_id=product.id, product_name=product.name, quantity=quantity
                ),
            )
        return self._place(context, product.id, product.name, quantity)

    def _place(
        self,
        context: ConversationContext,
        product_id: int,
        product_name: str,
        quantity: int,
    ) -> DialogueTurn:
        result = self.orders.place_order(
            context.tenant_id, context.contact_id, product_id, quantity
        )
        if isinstance(result, Ok):
            order = result.value
            return DialogueTurn(
                replies.order_created(order, quantity, product_name, self.currency),
                Idle(last_order_id=order.id),
                order_id=order.id,
            )
        if result.kind is ErrorKind.STOCK_INSUFFICIENT:
            name = result.detail.get("product") or product_name
            available = int(result.detail.get("available") or 0)
            return DialogueTurn(
                replies.stock_insufficient(name, available, quantity),
                AwaitingQuantity(product_id=product_id, product_name=name),
                ErrorKind.STOCK_INSUFFICIENT,
            )
        return self._product_missing(context, None, quantity)

    def _product_missing(
        self, context: ConversationContext, query: str | None, quantity: int | None
    ) -> DialogueTurn:
        suggestions = self.orders.list_products(context.tenant_id, SUGGESTION_LIMIT)
        return DialogueTurn(
            replies.suggestions(query, suggestions, self.currency),
            AwaitingProduct(quantity=quantity),
            ErrorKind.PRODUCT_NOT_FOUND if query else None,
        )

    # ------------------------------------------------------------------
    # Informational intents
    # ------------------------------------------------------------------

    def _greeting(self, context: ConversationContext) -> DialogueTurn:
        summary = self.orders.order_summary(context.tenant_id, context.contact_id)
        return DialogueTurn(
            replies.greeting(self.tenant_name, summary.count, summary.last_order), Welcome()
        )

    def _help(self, context: ConversationContext, intent: IntentResult) -> DialogueTurn:
        return DialogueTurn(replies.help_text(), context.state)

    def _catalogue(self, context: ConversationContext, intent: IntentResult) -> DialogueTurn:
        products = self.orders.list_products(context.tenant_id, CATALOGUE_LIMIT)
        return DialogueTurn(replies.catalogue(products, self.currency), context.state)

    def _track(self, context: ConversationContext, intent: IntentResult) -> DialogueTurn:
        order_id = intent.payload.get("order_id")
        if order_id is not None:
            order = self.orders.get_order(context.tenant_id, context.contact_id, order_id)
            if order is None:
                return DialogueTurn(replies.order_not_found(order_id), context.state)
        else:
            order = self.orders.latest_order(context.tenant_id, context.contact_id)
            if order is None:
                return DialogueTurn(replies.no_orders(), context.state)
        return DialogueTurn(replies.order_status(order, self.currency), context.state)

    def _quote(self, context: ConversationContext, intent: IntentResult) -> DialogueTurn:
        order = self.orders.latest_order(context.tenant_id, context.contact_id)
        if self.documents is not None:
            self.documents.request(
                context.tenant_id,
                context.contact_id,
                "quote",
                order.id if order is not None else None,
            )
        return DialogueTurn(replies.quote_requested(order), context.state)

    def _invoice(self, context: ConversationContext, intent: IntentResult) -> DialogueTurn:
        order = self.orders.latest_order(
            context.tenant_id, context.contact_id, INVOICEABLE_STATUSES
        )
        if order is None:
            return DialogueTurn(replies.no_invoice_available(), context.state)
        if self.documents is not None:
            self.documents.request(context.tenant_id, context.contact_id, "invoice", order.id)
        return DialogueTurn(replies.invoice_requested(order), context.state)

    def _acknowledge(self, context: ConversationContext, intent: IntentResult) -> DialogueTurn:
        return DialogueTurn(replies.pick(replies.ACKNOWLEDGEMENTS, context.contact_id), context.state)

    def _goodbye(self, context: ConversationContext, intent: IntentResult) -> DialogueTurn:
        return DialogueTurn(replies.pick(replies.FAREWELLS, context.contact_id), context.state)

    def _unknown(self, context: ConversationContext, normalized: str) -> DialogueTurn:
        for pattern, hint in _GUESSES:
            if pattern.search(normalized):
                return DialogueTurn(replies.guess(hint), context.state)
        return DialogueTurn(replies.fallback(), context.state)


__all__ = ["DialogueEngine", "DialogueTurn"]
