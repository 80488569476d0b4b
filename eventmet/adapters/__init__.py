"""Adapters for integrating EventMet with storage and frameworks."""

from .memory_store import InMemoryEventStore
from .sqlalchemy_store import SQLAlchemyEventStore

__all__ = ["InMemoryEventStore", "SQLAlchemyEventStore"]
