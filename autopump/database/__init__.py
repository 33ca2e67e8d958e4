"""Persistence layer: asyncpg client, schema and repository."""

from autopump.database.postgres_client import PostgresClient
from autopump.database.repositories import PostgresStore
from autopump.database.schema import SCHEMA_SQL

__all__ = ["PostgresClient", "PostgresStore", "SCHEMA_SQL"]
