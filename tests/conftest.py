import pathlib
import sys
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

import pytest
from fastapi import FastAPI, Request
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from chatcrm.app_logging import init_logging
from chatcrm.models import Base, ChannelAccount, Contact, Product, Tenant
from chatcrm.models.session import create_schema, get_engine, get_sessionmaker, session_scope

SMS_NUMBER = "+22990000001"
CLOUD_NUMBER = "22990000002"
CLOUD_PHONE_NUMBER_ID = "109876543210"
PAGE_ID = "page-4242"


@dataclass
class PipelineDB:
    engine: Engine
    session_factory: sessionmaker[Session]
    tenant_id: uuid.UUID
    accounts: dict[str, uuid.UUID]
    products: dict[str, int]
    other_tenant_id: uuid.UUID | None = None
    extra: dict[str, object] = field(default_factory=dict)

    def session(self) -> Session:
        return self.session_factory()

    def add_contact(self, phone: str, name: str = "Client") -> int:
        with session_scope(self.session_factory) as session:
            contact = Contact(
                tenant_id=self.tenant_id,
                display_name=name,
                phone=phone,
                source_channel="whatsapp-gateway",
            )
            session.add(contact)
            session.flush()
            return contact.id


@pytest.fixture
def pipeline_db(tmp_path: pathlib.Path) -> PipelineDB:
    """A seeded sqlite database: one pharmacy tenant with every channel kind."""

    engine = get_engine(f"sqlite+pysqlite:///{tmp_path / 'chatcrm.db'}")
    create_schema(engine)
    factory = get_sessionmaker(engine=engine)

    with factory.begin() as session:
        tenant = Tenant(name="Pharmacie du Centre")
        other = Tenant(name="Boutique Nord")
        session.add_all([tenant, other])
        session.flush()

        accounts = {
            "sms": ChannelAccount(
                tenant_id=tenant.id,
                channel_kind="sms",
                routing_key=SMS_NUMBER,
                credentials_ref="centre",
            ),
            "whatsapp-gateway": ChannelAccount(
                tenant_id=tenant.id,
                channel_kind="whatsapp-gateway",
                routing_key=f"whatsapp:{SMS_NUMBER}",
                credentials_ref="centre",
            ),
            "whatsapp-cloud": ChannelAccount(
                tenant_id=tenant.id,
                channel_kind="whatsapp-cloud",
                routing_key=CLOUD_NUMBER,
                credentials_ref="centre-cloud",
                config={"phone_number_id": CLOUD_PHONE_NUMBER_ID},
            ),
            "messenger": ChannelAccount(
                tenant_id=tenant.id,
                channel_kind="messenger",
                routing_key=PAGE_ID,
                credentials_ref="centre-page",
            ),
            "other-sms": ChannelAccount(
                tenant_id=other.id,
                channel_kind="sms",
                routing_key="+33612345678",
            ),
        }
        session.add_all(accounts.values())

        products = {
            "doliprane": Product(
                tenant_id=tenant.id, name="Doliprane", price=Decimal("1500"), stock=10
            ),
            "paracetamol": Product(
                tenant_id=tenant.id, name="Paracétamol", price=Decimal("800"), stock=3
            ),
            "vitamine": Product(
                tenant_id=tenant.id, name="Vitamine C", price=Decimal("2500"), stock=None
            ),
            "retired": Product(
                tenant_id=tenant.id,
                name="Sirop ancien",
                price=Decimal("900"),
                stock=5,
                active=False,
            ),
        }
        session.add_all(products.values())
        session.flush()

        db = PipelineDB(
            engine=engine,
            session_factory=factory,
            tenant_id=tenant.id,
            other_tenant_id=other.id,
            accounts={key: account.id for key, account in accounts.items()},
            products={key: product.id for key, product in products.items()},
        )

    yield db

    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return {"ok": True}

        init_logging(app)
        return app

    return _create_app
