"""Tenant and channel-account resolution."""

from .resolver import (
    AccountRoute,
    Resolution,
    RoutingIndex,
    RoutingIndexRefresher,
    TenantResolver,
    normalize_routing_key,
)

__all__ = [
    "AccountRoute",
    "Resolution",
    "RoutingIndex",
    "RoutingIndexRefresher",
    "TenantResolver",
    "normalize_routing_key",
]
