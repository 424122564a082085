"""Tenant-scoped product and order access used by the dialogue engine."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from rapidfuzz import fuzz, process
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import DataStoreError, ErrorKind
from ..intents.classifier import normalize_text
from ..models import Order, OrderLine, Product
from ..pipeline.result import Err, Ok, Result

logger = logging.getLogger(__name__)

FUZZY_SCORE_CUTOFF = 80


@dataclass(frozen=True)
class OrderSummary:
    count: int
    last_order: Order | None


class OrderStore(Protocol):
    def list_products(self, tenant_id: uuid.UUID, limit: int) -> list[Product]:
        ...

    def get_product(self, tenant_id: uuid.UUID, product_id: int) -> Product | None:
        ...

    def match_product(self, tenant_id: uuid.UUID, query: str) -> Product | None:
        ...

    def find_product_in_text(self, tenant_id: uuid.UUID, text: str) -> Product | None:
        ...

    def place_order(
        self, tenant_id: uuid.UUID, contact_id: int, product_id: int, quantity: int
    ) -> Result[Order]:
        ...

    def get_order(self, tenant_id: uuid.UUID, contact_id: int, order_id: int) -> Order | None:
        ...

    def latest_order(
        self,
        tenant_id: uuid.UUID,
        contact_id: int,
        statuses: tuple[str, ...] | None = None,
    ) -> Order | None:
        ...

    def order_summary(self, tenant_id: uuid.UUID, contact_id: int) -> OrderSummary:
        ...


class SqlAlchemyOrderStore:
    """:class:`OrderStore` backed by the pipeline's SQLAlchemy session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # Catalogue
    # ------------------------------------------------------------------

    def list_products(self, tenant_id: uuid.UUID, limit: int) -> list[Product]:
        stmt = (
            select(Product)
            .where(Product.tenant_id == tenant_id, Product.active.is_(True))
            .order_by(Product.name)
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars())

    def get_product(self, tenant_id: uuid.UUID, product_id: int) -> Product | None:
        product = self.session.get(Product, product_id)
        if product is None or product.tenant_id != tenant_id or not product.active:
            return None
        return product

    def _active_products(self, tenant_id: uuid.UUID) -> list[Product]:
        stmt = select(Product).where(
            Product.tenant_id == tenant_id, Product.active.is_(True)
        )
        return list(self.session.execute(stmt).scalars())

    def match_product(self, tenant_id: uuid.UUID, query: str) -> Product | None:
        """Find the product a customer most likely meant by ``query``.

        Matching is accent and case insensitive: exact name, then substring
        in either direction (shortest name first), then a fuzzy token score.
        """

        needle = normalize_text(query)
        if not needle:
            return None
        products = self._active_products(tenant_id)
        names = {p.id: normalize_text(p.name) for p in products}

        exact = [p for p in products if names[p.id] == needle]
        if exact:
            return exact[0]
        partial = [p for p in products if needle in names[p.id] or names[p.id] in needle]
        if partial:
            return min(partial, key=lambda p: (len(names[p.id]), p.id))

        choices = {p.id: names[p.id] for p in products}
        best = process.extractOne(
            needle, choices, scorer=fuzz.WRatio, score_cutoff=FUZZY_SCORE_CUTOFF
        )
        if best is None:
            return None
        _, _, product_id = best
        return next(p for p in products if p.id == product_id)

    def find_product_in_text(self, tenant_id: uuid.UUID, text: str) -> Product | None:
        """Return the longest catalogue name appearing verbatim in ``text``."""

        haystack = f" {normalize_text(text)} "
        hits = [
            p
            for p in self._active_products(tenant_id)
            if normalize_text(p.name) and f" {normalize_text(p.name)} " in haystack
        ]
        if not hits:
            return None
        return max(hits, key=lambda p: len(p.name))

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def place_order(
        self, tenant_id: uuid.UUID, contact_id: int, product_id: int, quantity: int
    ) -> Result[Order]:
        """Create an order and decrement stock inside a savepoint.

        The stock decrement is conditional (``stock >= quantity``) so two
        concurrent orders can never drive stock negative. A database error
        rolls back only the savepoint and raises :class:`DataStoreError`; the
        surrounding unit of work is committed by the caller.
        """

        product = self.get_product(tenant_id, product_id)
        if product is None:
            return Err(ErrorKind.PRODUCT_NOT_FOUND, f"product {product_id} not found")
        if product.stock is not None and product.stock < quantity:
            return Err(
                ErrorKind.STOCK_INSUFFICIENT,
                f"only {product.stock} left",
                {"available": product.stock, "product": product.name},
            )

        order = None
        try:
            with self.session.begin_nested():
                decrement = (
                    update(Product)
                    .where(
                        Product.id == product.id,
                        Product.tenant_id == tenant_id,
                        or_(Product.stock.is_(None), Product.stock >= quantity),
                    )
                    .values(stock=Product.stock - quantity)
                    .execution_options(synchronize_session=False)
                )
                if self.session.execute(decrement).rowcount == 1:
                    unit_price = Decimal(product.price)
                    total = unit_price * quantity
                    order = Order(
                        tenant_id=tenant_id,
                        contact_id=contact_id,
                        status="nouvelle",
                        total=total,
                    )
                    order.lines.append(
                        OrderLine(
                            product_id=product.id,
                            quantity=quantity,
                            unit_price=unit_price,
                            line_total=total,
                        )
                    )
                    self.session.add(order)
                    self.session.flush()
        except SQLAlchemyError as exc:
            logger.exception(
                "Order creation aborted for tenant %s product %s", tenant_id, product_id
            )
            raise DataStoreError("order creation failed") from exc

        self.session.refresh(product)
        if order is None:
            return Err(
                ErrorKind.STOCK_INSUFFICIENT,
                f"only {product.stock} left",
                {"available": product.stock or 0, "product": product.name},
            )
        logger.info(
            "Order %s created for contact %s (%s x %s)",
            order.id,
            contact_id,
            quantity,
            product.name,
        )
        return Ok(order)

    def get_order(self, tenant_id: uuid.UUID, contact_id: int, order_id: int) -> Order | None:
        stmt = select(Order).where(
            Order.id == order_id,
            Order.tenant_id == tenant_id,
            Order.contact_id == contact_id,
        )
        return self.session.execute(stmt).scalars().first()

    def latest_order(
        self,
        tenant_id: uuid.UUID,
        contact_id: int,
        statuses: tuple[str, ...] | None = None,
    ) -> Order | None:
        stmt = select(Order).where(
            Order.tenant_id == tenant_id, Order.contact_id == contact_id
        )
        if statuses:
            stmt = stmt.where(Order.status.in_(statuses))
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(1)
        return self.session.execute(stmt).scalars().first()

    def order_summary(self, tenant_id: uuid.UUID, contact_id: int) -> OrderSummary:
        count = self.session.execute(
            select(func.count(Order.id)).where(
                Order.tenant_id == tenant_id, Order.contact_id == contact_id
            )
        ).scalar_one()
        return OrderSummary(count=int(count), last_order=self.latest_order(tenant_id, contact_id))


__all__ = ["OrderStore", "OrderSummary", "SqlAlchemyOrderStore"]
