"""
Versioned Store
Relational persistence with natural-key upserts, versions and history
"""
from hbsync.services.store.database import Database, PostgresDatabase, SQLiteDatabase, connect
from hbsync.services.store.migrations import MIGRATIONS, Migration, apply_migrations
from hbsync.services.store.seed import initialize_lookups, insert_test_data
from hbsync.services.store.tables import TABLES, Table, TableSpec, resolve_table
from hbsync.services.store.versioned import Transaction, VersionedStore

__all__ = [
    "Database",
    "PostgresDatabase",
    "SQLiteDatabase",
    "connect",
    "MIGRATIONS",
    "Migration",
    "apply_migrations",
    "initialize_lookups",
    "insert_test_data",
    "TABLES",
    "Table",
    "TableSpec",
    "resolve_table",
    "Transaction",
    "VersionedStore",
]
