"""Outbound delivery: transports, credentials and the delivery service."""

from .credentials import ChannelCredentials, CredentialRegistry
from .service import DeliveryResult, DeliveryService, DeliveryStatus, SqlAlchemyInboundLog
from .transports import TransportFactory, TransportReceipt

__all__ = [
    "ChannelCredentials",
    "CredentialRegistry",
    "DeliveryResult",
    "DeliveryService",
    "DeliveryStatus",
    "SqlAlchemyInboundLog",
    "TransportFactory",
    "TransportReceipt",
]
