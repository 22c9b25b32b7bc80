"""
otelcrud.store - Persistence for the users resource.

Classes:
    Database: SQLAlchemy engine wrapper with carrier-aware span enrichment
    UserRepository: Store adapter, one operation per CRUD verb
"""

from otelcrud.store.database import DEMO_USERS, Database, create_db_engine, users_table
from otelcrud.store.repository import UserRepository

__all__ = [
    "DEMO_USERS",
    "Database",
    "UserRepository",
    "create_db_engine",
    "users_table",
]
