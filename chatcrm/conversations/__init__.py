"""Conversation value types and context storage."""

from .models import (
    ChannelKind,
    ConversationContext,
    InboundMessage,
    OutboundMessage,
)
from .store import ConversationStore

__all__ = [
    "ChannelKind",
    "ConversationContext",
    "ConversationStore",
    "InboundMessage",
    "OutboundMessage",
]
