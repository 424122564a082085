"""Turn-based ordering dialogue."""

from .engine import DialogueEngine, DialogueTurn
from .store import OrderStore, SqlAlchemyOrderStore

__all__ = ["DialogueEngine", "DialogueTurn", "OrderStore", "SqlAlchemyOrderStore"]
