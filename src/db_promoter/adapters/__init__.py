"""Store adapters package.

Provides the ``DatabaseClient`` and ``DocumentClient`` Protocols and the
concrete async adapters for PostgreSQL and MongoDB.

Usage:
    from db_promoter.adapters import AsyncPostgresAdapter, AsyncMongoAdapter
"""

from db_promoter.adapters.base import DatabaseClient, DocumentClient
from db_promoter.adapters.mongo import AsyncMongoAdapter
from db_promoter.adapters.postgres import AsyncPostgresAdapter

__all__ = [
    "DatabaseClient",
    "DocumentClient",
    "AsyncPostgresAdapter",
    "AsyncMongoAdapter",
]
