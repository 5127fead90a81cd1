"""
Database Module
"""
from .connection import init_database, close_database, get_engine, check_database_health
from .sessions import SessionRepository
from .store import EventStore, QueryResult, SQLAlchemyEventStore

__all__ = [
    "init_database",
    "close_database",
    "get_engine",
    "check_database_health",
    "SessionRepository",
    "EventStore",
    "QueryResult",
    "SQLAlchemyEventStore",
]
