from decimal import Decimal

import pytest
from chatcrm.conversations.models import (
    AwaitingConfirmation,
    AwaitingProduct,
    AwaitingQuantity,
    ChannelKind,
    ConversationContext,
    Idle,
    Welcome,
)
from chatcrm.dialogue import DialogueEngine, SqlAlchemyOrderStore
from chatcrm.dialogue import replies
from chatcrm.documents import DocumentRequester
from chatcrm.errors import DataStoreError, ErrorKind
from chatcrm.intents import IntentClassifier
from chatcrm.models import DocumentRequest, Order, Product
from sqlalchemy import func, select

classifier = IntentClassifier()


@pytest.fixture
def session(pipeline_db):
    with pipeline_db.session() as session:
        yield session


@pytest.fixture
def contact_id(pipeline_db):
    return pipeline_db.add_contact("22996000001")


@pytest.fixture
def context(pipeline_db, contact_id):
    return ConversationContext(
        tenant_id=pipeline_db.tenant_id,
        contact_id=contact_id,
        channel=ChannelKind.WHATSAPP_CLOUD,
    )


def _engine(session, **kwargs) -> DialogueEngine:
    return DialogueEngine(
        SqlAlchemyOrderStore(session),
        DocumentRequester(session),
        tenant_name="Pharmacie du Centre",
        **kwargs,
    )


def _say(engine, context, text):
    return engine.handle(context, classifier.classify(text), text)


def _order_count(session) -> int:
    return session.execute(select(func.count(Order.id))).scalar_one()


def test_order_in_one_message(session, context, pipeline_db):
    turn = _say(_engine(session), context, "Je veux commander 2 Doliprane")

    order = session.get(Order, turn.order_id)
    assert order.total == Decimal("3000")
    assert order.status == "nouvelle"
    assert order.contact_id == context.contact_id
    assert f"#{order.id}" in turn.reply
    assert context.state == Idle(last_order_id=order.id)
    assert session.get(Product, pipeline_db.products["doliprane"]).stock == 8


def test_integer_reply_completes_awaiting_quantity(session, context, pipeline_db):
    context.state = AwaitingQuantity(
        product_id=pipeline_db.products["doliprane"], product_name="Doliprane"
    )
    turn = _say(_engine(session), context, "3")

    assert turn.order_id is not None
    assert "Quel produit" not in turn.reply
    assert isinstance(context.state, Idle)
    assert session.get(Product, pipeline_db.products["doliprane"]).stock == 7


def test_integer_reply_moves_to_confirmation_when_required(session, context, pipeline_db):
    engine = _engine(session, confirmation_required=True)
    context.state = AwaitingQuantity(
        product_id=pipeline_db.products["doliprane"], product_name="Doliprane"
    )

    turn = _say(engine, context, "3")
    assert context.state == AwaitingConfirmation(
        product_id=pipeline_db.products["doliprane"], product_name="Doliprane", quantity=3
    )
    assert _order_count(session) == 0
    assert "4 500 FCFA" in turn.reply

    turn = _say(engine, context, "oui")
    assert turn.order_id is not None
    assert isinstance(context.state, Idle)


def test_confirmation_can_be_cancelled(session, context, pipeline_db):
    engine = _engine(session, confirmation_required=True)
    context.state = AwaitingConfirmation(
        product_id=pipeline_db.products["doliprane"], product_name="Doliprane", quantity=1
    )
    turn = _say(engine, context, "non merci")
    assert turn.reply == replies.order_cancelled()
    assert context.state == Idle()
    assert _order_count(session) == 0


def test_insufficient_stock_creates_nothing(session, context, pipeline_db):
    turn = _say(_engine(session), context, "Je veux commander 5 paracetamol")

    assert turn.error is ErrorKind.STOCK_INSUFFICIENT
    assert "Disponible : 3" in turn.reply
    assert _order_count(session) == 0
    assert session.get(Product, pipeline_db.products["paracetamol"]).stock == 3
    assert context.state == AwaitingQuantity(
        product_id=pipeline_db.products["paracetamol"], product_name="Paracétamol"
    )


def test_missing_quantity_is_asked_for(session, context, pipeline_db):
    turn = _say(_engine(session), context, "je voudrais du doliprane")
    assert "Combien" in turn.reply
    assert context.state == AwaitingQuantity(
        product_id=pipeline_db.products["doliprane"], product_name="Doliprane"
    )


def test_unknown_product_then_product_name(session, context):
    engine = _engine(session)
    turn = _say(engine, context, "je veux commander 2 masques")
    assert turn.error is ErrorKind.PRODUCT_NOT_FOUND
    assert context.state == AwaitingProduct(quantity=2)
    assert "Vitamine C" in turn.reply

    turn = _say(engine, context, "vitamine c")
    order = session.get(Order, turn.order_id)
    assert order.total == Decimal("5000")


def test_fuzzy_product_match(session, context):
    engine = _engine(session)
    context.state = AwaitingProduct(quantity=1)
    turn = _say(engine, context, "dolipprane")
    assert turn.order_id is not None


def test_track_order_reports_status(session, context, pipeline_db):
    engine = _engine(session)
    placed = _say(engine, context, "Je veux commander 1 Doliprane")
    session.get(Order, placed.order_id).status = "expédiée"
    session.commit()

    turn = _say(engine, context, f"statut commande {placed.order_id}")
    assert "expédiée" in turn.reply
    assert replies.STATUS_MESSAGES["expédiée"] in turn.reply


def test_track_order_is_scoped_to_the_contact(session, context, pipeline_db):
    stranger = pipeline_db.add_contact("22996000999")
    order = Order(tenant_id=pipeline_db.tenant_id, contact_id=stranger, total=Decimal("10"))
    session.add(order)
    session.commit()

    turn = _say(_engine(session), context, f"statut commande {order.id}")
    assert turn.reply == replies.order_not_found(order.id)


def test_greeting_mentions_order_history(session, context):
    engine = _engine(session)
    placed = _say(engine, context, "Je veux commander 1 Doliprane")
    turn = _say(engine, context, "Bonjour")
    assert "Pharmacie du Centre" in turn.reply
    assert f"#{placed.order_id}" in turn.reply
    assert context.state == Welcome()


def test_catalogue_lists_active_products_only(session, context):
    turn = _say(_engine(session), context, "catalogue")
    assert "Doliprane" in turn.reply
    assert "Sirop ancien" not in turn.reply


def test_invoice_requires_delivered_order(session, context):
    engine = _engine(session)
    turn = _say(engine, context, "facture")
    assert turn.reply == replies.no_invoice_available()

    placed = _say(engine, context, "Je veux commander 1 Doliprane")
    session.get(Order, placed.order_id).status = "livrée"
    session.commit()

    turn = _say(engine, context, "facture")
    assert f"#{placed.order_id}" in turn.reply
    request = session.execute(select(DocumentRequest)).scalars().one()
    assert request.kind == "invoice"
    assert request.order_id == placed.order_id


def test_unmatched_text_gets_guiding_fallback(session, context):
    turn = _say(_engine(session), context, "xyzzy plugh")
    assert turn.reply == replies.fallback()
    assert turn.reply.strip()
    assert context.state == Welcome()


def test_unknown_text_with_keyword_gets_a_hint(session, context):
    turn = _say(_engine(session), context, "c'est livré quand ?")
    assert "statut commande" in turn.reply


class _BrokenStore(SqlAlchemyOrderStore):
    def place_order(self, *args, **kwargs):
        raise DataStoreError("connection lost")


def test_data_store_failure_gives_technical_reply(session, context, pipeline_db):
    engine = DialogueEngine(_BrokenStore(session))
    state = AwaitingQuantity(product_id=pipeline_db.products["doliprane"], product_name="Doliprane")
    context.state = state

    turn = _say(engine, context, "2")
    assert turn.reply == replies.TECHNICAL_DIFFICULTY
    assert turn.error is ErrorKind.DATA_STORE_FAILURE
    assert context.state == state
    assert _order_count(session) == 0
