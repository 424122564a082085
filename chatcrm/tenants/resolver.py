"""Map inbound routing hints to a tenant and channel account.

Inbound webhooks carry no tenant id. Instead of scanning every tenant's
channel accounts per message, the resolver keeps an in-memory
:class:`RoutingIndex` rebuilt from the ``channel_accounts`` table, either on
a timer (:class:`RoutingIndexRefresher`) or on demand through
:meth:`TenantResolver.invalidate`.
"""

from __future__ import annotations

import logging
import re
import threading
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from ..conversations.models import ChannelKind
from ..models import ChannelAccount, Tenant

logger = logging.getLogger(__name__)

_PREFIX_RE = re.compile(r"^(whatsapp|messenger|sms|tel):", re.IGNORECASE)
_NON_DIGIT_RE = re.compile(r"\D")
_PHONE_RE = re.compile(r"^\+?[\d\s().-]*\d[\d\s().-]*$")

# Lower rank wins when the same number serves several channel kinds.
_KIND_PRIORITY = {
    ChannelKind.WHATSAPP_CLOUD: 1,
    ChannelKind.WHATSAPP_GATEWAY: 2,
    ChannelKind.SMS: 3,
    ChannelKind.MESSENGER: 4,
}

MIN_SUFFIX_DIGITS = 6


def strip_channel_prefix(value: str) -> str:
    return _PREFIX_RE.sub("", value.strip())


def normalize_routing_key(value: str) -> str:
    """Strip channel prefixes and every non-digit character.

    Keys that are not phone-like (provider account SIDs) are lower-cased
    instead so they still compare predictably.
    """

    stripped = strip_channel_prefix(value)
    if _PHONE_RE.match(stripped):
        return _NON_DIGIT_RE.sub("", stripped)
    return stripped.lower()


@dataclass(frozen=True)
class AccountRoute:
    """Snapshot of the channel account fields the pipeline needs."""

    account_id: uuid.UUID
    tenant_id: uuid.UUID
    tenant_name: str
    channel_kind: ChannelKind
    routing_key: str
    delegated_mode: bool = False
    auto_reply: bool = True
    credentials_ref: str | None = None
    config: dict = field(default_factory=dict, hash=False, compare=False)

    @property
    def normalized_key(self) -> str:
        return normalize_routing_key(self.routing_key)

    @property
    def uses_delegated_generator(self) -> bool:
        return self.delegated_mode and self.auto_reply


@dataclass(frozen=True)
class Resolution:
    route: AccountRoute
    match: str
    degraded: bool = False


class RoutingIndex:
    """Immutable lookup table over active channel accounts."""

    def __init__(self, routes: Iterable[AccountRoute] = ()) -> None:
        self.routes: tuple[AccountRoute, ...] = tuple(routes)
        self._exact: dict[tuple[ChannelKind, str], AccountRoute] = {
            (route.channel_kind, route.routing_key): route for route in self.routes
        }
        self._by_id = {route.account_id: route for route in self.routes}

    def __len__(self) -> int:
        return len(self.routes)

    def get(self, account_id: uuid.UUID) -> AccountRoute | None:
        return self._by_id.get(account_id)

    def for_tenant(self, tenant_id: uuid.UUID) -> list[AccountRoute]:
        return [route for route in self.routes if route.tenant_id == tenant_id]

    def lookup(self, kind: ChannelKind, hint: str) -> Resolution | None:
        hint = (hint or "").strip()
        if not hint:
            return None

        route = self._exact.get((kind, hint)) or self._exact.get(
            (kind, strip_channel_prefix(hint))
        )
        if route is not None:
            return Resolution(route=route, match="exact")

        compatible = [r for r in self.routes if _compatible(kind, r.channel_kind)]
        exact_other = [r for r in compatible if r.routing_key == hint]
        if exact_other:
            return Resolution(route=_best(exact_other), match="exact")

        normalized = normalize_routing_key(hint)
        if not normalized:
            return None
        candidates = [r for r in compatible if r.normalized_key == normalized]
        if candidates:
            return Resolution(route=_best(candidates), match="normalized")

        if len(normalized) < MIN_SUFFIX_DIGITS or not normalized.isdigit():
            return None
        candidates = [
            r
            for r in compatible
            if len(r.normalized_key) >= MIN_SUFFIX_DIGITS
            and (
                r.normalized_key.endswith(normalized)
                or normalized.endswith(r.normalized_key)
            )
        ]
        if candidates:
            return Resolution(route=_best(candidates), match="suffix")
        return None


def _compatible(requested: ChannelKind, candidate: ChannelKind) -> bool:
    if requested is ChannelKind.MESSENGER or candidate is ChannelKind.MESSENGER:
        return requested is candidate
    return True


def _best(candidates: list[AccountRoute]) -> AccountRoute:
    """Shortest routing key wins, then WhatsApp kinds over SMS."""

    return min(
        candidates,
        key=lambda r: (
            len(r.normalized_key),
            _KIND_PRIORITY[r.channel_kind],
            str(r.account_id),
        ),
    )


def load_routes(session: Session) -> list[AccountRoute]:
    """Read every active channel account with its tenant name."""

    stmt = (
        select(ChannelAccount, Tenant.name)
        .join(Tenant, Tenant.id == ChannelAccount.tenant_id)
        .where(ChannelAccount.is_active.is_(True))
    )
    routes: list[AccountRoute] = []
    for account, tenant_name in session.execute(stmt).all():
        try:
            kind = ChannelKind(account.channel_kind)
        except ValueError:
            logger.warning(
                "Skipping channel account %s with unknown kind %r",
                account.id,
                account.channel_kind,
            )
            continue
        routes.append(
            AccountRoute(
                account_id=account.id,
                tenant_id=account.tenant_id,
                tenant_name=tenant_name,
                channel_kind=kind,
                routing_key=account.routing_key,
                delegated_mode=account.delegated_mode,
                auto_reply=account.auto_reply,
                credentials_ref=account.credentials_ref,
                config=dict(account.config or {}),
            )
        )
    return routes


class TenantResolver:
    """Resolve ``(channel kind, routing hint)`` to a tenant channel account."""

    def __init__(
        self,
        loader: Callable[[], Iterable[AccountRoute]],
        *,
        default_account_id: uuid.UUID | None = None,
    ) -> None:
        self._loader = loader
        self._default_account_id = default_account_id
        self._lock = threading.Lock()
        self._index = RoutingIndex()
        self._stale = True

    @classmethod
    def from_sessionmaker(
        cls, factory: sessionmaker[Session], **kwargs
    ) -> "TenantResolver":
        def _load() -> list[AccountRoute]:
            with factory() as session:
                return load_routes(session)

        return cls(_load, **kwargs)

    @property
    def index(self) -> RoutingIndex:
        if self._stale:
            self.refresh()
        return self._index

    def refresh(self) -> RoutingIndex:
        routes = list(self._loader())
        index = RoutingIndex(routes)
        with self._lock:
            self._index = index
            self._stale = False
        logger.debug("Routing index rebuilt with %d channel accounts", len(index))
        return index

    def invalidate(self) -> None:
        """Force a rebuild on the next lookup (change notification hook)."""

        self._stale = True

    def resolve(self, kind: ChannelKind, hint: str, *alternates: str) -> Resolution | None:
        index = self.index
        for candidate in (hint, *alternates):
            if not candidate:
                continue
            resolution = index.lookup(kind, candidate)
            if resolution is not None:
                return resolution
        if self._default_account_id is not None:
            route = index.get(self._default_account_id)
            if route is not None:
                logger.warning(
                    "No channel account for %s %r; using default account %s",
                    kind.value,
                    hint,
                    route.account_id,
                )
                return Resolution(route=route, match="default", degraded=True)
        return None

    def fallback_route(self, route: AccountRoute) -> AccountRoute | None:
        """Return the SMS route used when a WhatsApp session has expired.

        Gateway numbers fall back to SMS on the same provider account; cloud
        numbers need a separate SMS account configured by the tenant.
        """

        tenant_routes = self.index.for_tenant(route.tenant_id)
        sms = [r for r in tenant_routes if r.channel_kind is ChannelKind.SMS]
        same_number = [r for r in sms if r.normalized_key == route.normalized_key]
        if same_number:
            return same_number[0]
        if sms:
            return sms[0]
        if route.channel_kind is ChannelKind.WHATSAPP_GATEWAY:
            return AccountRoute(
                account_id=route.account_id,
                tenant_id=route.tenant_id,
                tenant_name=route.tenant_name,
                channel_kind=ChannelKind.SMS,
                routing_key=strip_channel_prefix(route.routing_key),
                credentials_ref=route.credentials_ref,
                config=route.config,
            )
        return None


class RoutingIndexRefresher:
    """Daemon thread rebuilding the routing index every ``interval`` seconds."""

    def __init__(self, resolver: TenantResolver, interval: float) -> None:
        self.resolver = resolver
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None or self.interval <= 0:
            return
        self._thread = threading.Thread(
            target=self._run, name="routing-index-refresher", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.resolver.refresh()
            except Exception:
                logger.exception("Routing index refresh failed; keeping previous index")


__all__ = [
    "AccountRoute",
    "Resolution",
    "RoutingIndex",
    "RoutingIndexRefresher",
    "TenantResolver",
    "load_routes",
    "normalize_routing_key",
]
