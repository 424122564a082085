"""Reply source selection: delegated generator or rule engine."""

from .coordinator import MODE_DELEGATED, MODE_RULE, Reply, ResponseCoordinator
from .delegated import DelegatedReply, build_delegated_generator
from .history import SqlAlchemyHistorySink

__all__ = [
    "DelegatedReply",
    "MODE_DELEGATED",
    "MODE_RULE",
    "Reply",
    "ResponseCoordinator",
    "SqlAlchemyHistorySink",
    "build_delegated_generator",
]
