"""
Versioned Store
Upserts keyed by natural key, with a per-row version counter and history snapshots

VERSIONING:
- New row: version = 1, no history
- Existing row: the full prior row is archived to history (version = prior
  version), then the row is updated with version = prior version + 1
- Batch upserts bump the version on conflict but never write history

CONCURRENCY:
- One shared connection per store; blocking driver calls run in a worker
  thread (asyncio.to_thread)
- An asyncio.Lock is held for the life of each transaction, so statements
  from different coroutines never interleave inside one transaction
- Calls made from inside `transaction()` without an explicit tx join it
"""
import asyncio
import contextvars
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from hbsync.core.exceptions import HistoryDecodeError, MissingNaturalKeyError, UnknownColumnError
from hbsync.models.schemas import HistorySnapshot, SnapshotEnvelope
from hbsync.services.store.database import Database, Row, connect
from hbsync.services.store.tables import Table, TableSpec, resolve_table

logger = logging.getLogger(__name__)

TableRef = Union[Table, str]

_current_tx: contextvars.ContextVar[Optional["Transaction"]] = contextvars.ContextVar(
    "hbsync_current_tx", default=None
)


class Transaction:
    """Handle for statements that run inside one open transaction."""

    def __init__(self, store: "VersionedStore"):
        self._store = store
        self.active = True

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        return await self._store._call(self._store.database.execute, sql, params)

    async def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[Row]:
        return await self._store._call(self._store.database.fetchone, sql, params)

    async def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        return await self._store._call(self._store.database.fetchall, sql, params)


class VersionedStore:
    """
    Exclusive owner of persisted rows.

    Usage:
        store = await VersionedStore.open("sqlite:///hb-report.db")
        await apply_migrations(store)
        version = await store.upsert_entity(Table.PROJECTS, {"project_id": 1, "name": "A"})
    """

    def __init__(self, database: Database):
        self.database = database
        self._lock = asyncio.Lock()

    @classmethod
    async def open(cls, database_url: str) -> "VersionedStore":
        database = await asyncio.to_thread(connect, database_url)
        return cls(database)

    @property
    def dialect(self) -> str:
        return self.database.dialect

    async def _call(self, fn, *args):
        return await asyncio.to_thread(fn, *args)

    async def close(self) -> None:
        async with self._lock:
            await self._call(self.database.close)

    # ============================================================================
    # TRANSACTIONS
    # ============================================================================

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """
        Open a transaction; commit on success, roll back on any error.

        Usage:
            async with store.transaction() as tx:
                await store.upsert_entity(Table.PROJECTS, project, tx)
        """
        async with self._lock:
            await self._call(self.database.begin)
            tx = Transaction(self)
            token = _current_tx.set(tx)
            try:
                yield tx
            except BaseException:
                try:
                    await self._call(self.database.rollback)
                except Exception:
                    logger.exception("❌ Rollback failed")
                raise
            else:
                await self._call(self.database.commit)
            finally:
                tx.active = False
                _current_tx.reset(token)

    @asynccontextmanager
    async def _joined(self, tx: Optional[Transaction]) -> AsyncIterator[Transaction]:
        """Use the given (or ambient) transaction, or run in a new one."""
        tx = tx or _current_tx.get()
        if tx is not None and tx.active and tx._store is self:
            yield tx
            return
        async with self.transaction() as own:
            yield own

    @asynccontextmanager
    async def _reader(self) -> AsyncIterator[Any]:
        """Reads join an ambient transaction, otherwise take the lock briefly."""
        tx = _current_tx.get()
        if tx is not None and tx.active and tx._store is self:
            yield tx
            return
        async with self._lock:
            yield Transaction(self)

    # ============================================================================
    # WRITES
    # ============================================================================

    def _validated(self, table: TableRef, entity: Mapping[str, Any]) -> tuple:
        spec = resolve_table(table)
        missing = spec.missing_key(entity)
        if missing:
            raise MissingNaturalKeyError(spec.name, missing)
        unknown = spec.unknown_columns(entity)
        if unknown:
            raise UnknownColumnError(spec.name, unknown)
        return spec, dict(entity)

    @staticmethod
    def _where(spec: TableSpec) -> str:
        return " AND ".join(f"{col} = ?" for col in spec.natural_key)

    async def upsert_entity(
        self,
        table: TableRef,
        entity: Mapping[str, Any],
        tx: Optional[Transaction] = None,
    ) -> int:
        """
        Insert or update one row by natural key, archiving the prior row.

        Args:
            table: Target table
            entity: Column values; must include every natural-key column
            tx: Transaction to join (default: ambient or a new one)

        Returns:
            The row's version after the write

        Raises:
            UnknownTableError, MissingNaturalKeyError, UnknownColumnError:
                Before anything is written
        """
        spec, row = self._validated(table, entity)
        key = spec.key_of(row)

        async with self._joined(tx) as t:
            existing = await t.fetchone(
                f"SELECT * FROM {spec.name} WHERE {self._where(spec)}", tuple(key.values())
            )

            if existing is None:
                columns = list(row)
                await t.execute(
                    f"INSERT INTO {spec.name} ({', '.join(columns)}, version) "
                    f"VALUES ({', '.join('?' for _ in columns)}, 1)",
                    tuple(row[c] for c in columns),
                )
                logger.debug(f"Inserted {spec.name} {key} at version 1")
                return 1

            prior_version = existing["version"] or 0
            envelope = SnapshotEnvelope(table=spec.name, row=existing)
            await t.execute(
                "INSERT INTO history (entity_type, entity_id, data, version, superseded_at) "
                "VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)",
                (
                    spec.name,
                    str(existing[spec.primary_key]),
                    json.dumps(envelope.model_dump(), default=str),
                    prior_version,
                ),
            )

            updates = [c for c in row if c not in spec.natural_key]
            new_version = prior_version + 1
            assignments = "".join(f"{c} = ?, " for c in updates)
            await t.execute(
                f"UPDATE {spec.name} SET {assignments}version = ?, updated_at = CURRENT_TIMESTAMP "
                f"WHERE {self._where(spec)}",
                (*[row[c] for c in updates], new_version, *key.values()),
            )
            logger.debug(f"Updated {spec.name} {key} to version {new_version}")
            return new_version

    async def batch_upsert(
        self,
        table: TableRef,
        entities: Iterable[Mapping[str, Any]],
        tx: Optional[Transaction] = None,
    ) -> int:
        """
        Insert-or-update many rows without history.

        Every entity is validated before the first write. Conflicting rows
        have their version bumped by one.

        Returns:
            Number of rows written
        """
        validated = [self._validated(table, entity) for entity in entities]
        if not validated:
            return 0
        spec = validated[0][0]
        conflict = ", ".join(spec.natural_key)

        async with self._joined(tx) as t:
            for _, row in validated:
                columns = list(row)
                updates = [c for c in columns if c not in spec.natural_key]
                assignments = "".join(f"{c} = excluded.{c}, " for c in updates)
                await t.execute(
                    f"INSERT INTO {spec.name} ({', '.join(columns)}) "
                    f"VALUES ({', '.join('?' for _ in columns)}) "
                    f"ON CONFLICT ({conflict}) DO UPDATE SET {assignments}"
                    f"version = {spec.name}.version + 1, updated_at = CURRENT_TIMESTAMP",
                    tuple(row[c] for c in columns),
                )

        logger.info(f"Batch upserted {len(validated)} records into {spec.name}")
        return len(validated)

    async def execute_ddl(self, sql: str) -> None:
        async with self._joined(None) as t:
            await t.execute(self.render_ddl(sql))

    def render_ddl(self, sql: str) -> str:
        return self.database.render_ddl(sql)

    # ============================================================================
    # READS
    # ============================================================================

    async def get(self, table: TableRef, key: Union[Mapping[str, Any], Any]) -> Optional[Row]:
        """
        Fetch one row by natural key.

        `key` is a mapping of natural-key columns, or a bare value for
        single-column keys.
        """
        spec = resolve_table(table)
        if not isinstance(key, Mapping):
            if len(spec.natural_key) != 1:
                raise MissingNaturalKeyError(spec.name, list(spec.natural_key))
            key = {spec.natural_key[0]: key}
        missing = spec.missing_key(key)
        if missing:
            raise MissingNaturalKeyError(spec.name, missing)

        async with self._reader() as r:
            return await r.fetchone(
                f"SELECT * FROM {spec.name} WHERE {self._where(spec)}",
                tuple(key[c] for c in spec.natural_key),
            )

    async def get_all(self, table: TableRef, where: Optional[Mapping[str, Any]] = None) -> List[Row]:
        """All rows of a table ordered by primary key, optionally filtered by equality."""
        spec = resolve_table(table)
        where = dict(where or {})
        unknown = spec.unknown_columns(where)
        if unknown:
            raise UnknownColumnError(spec.name, unknown)

        clause = (" WHERE " + " AND ".join(f"{c} = ?" for c in where)) if where else ""
        async with self._reader() as r:
            return await r.fetchall(
                f"SELECT * FROM {spec.name}{clause} ORDER BY {spec.primary_key}",
                tuple(where.values()),
            )

    async def count(self, table: TableRef) -> int:
        spec = resolve_table(table)
        async with self._reader() as r:
            row = await r.fetchone(f"SELECT COUNT(*) AS n FROM {spec.name}")
        return int(row["n"]) if row else 0

    async def get_history(self, table: TableRef, entity_id: Any) -> List[HistorySnapshot]:
        """
        Decoded history snapshots for one row, oldest first.

        Raises:
            HistoryDecodeError: If a stored snapshot is not valid JSON
        """
        spec = resolve_table(table)
        async with self._reader() as r:
            rows = await r.fetchall(
                "SELECT * FROM history WHERE entity_type = ? AND entity_id = ? ORDER BY id",
                (spec.name, str(entity_id)),
            )
        return [self._decode_snapshot(row) for row in rows]

    @staticmethod
    def _decode_snapshot(row: Row) -> HistorySnapshot:
        raw = row["data"]
        try:
            payload = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        except ValueError as e:
            raise HistoryDecodeError(f"History row {row['id']} is not valid JSON") from e
        if not isinstance(payload, dict):
            raise HistoryDecodeError(f"History row {row['id']} is not an object")

        # Rows archived before the envelope existed hold the bare row
        if "format" in payload and "row" in payload:
            fmt, data = payload["format"], payload["row"]
        else:
            fmt, data = 0, payload

        return HistorySnapshot(
            id=row["id"],
            entity_type=row["entity_type"],
            entity_id=str(row["entity_id"]),
            version=row["version"],
            superseded_at=row.get("superseded_at"),
            format=fmt,
            data=data,
        )

    async def schema_version(self) -> int:
        async with self._reader() as r:
            exists = await self._call(self.database.table_exists, "schema_version")
            if not exists:
                return 0
            row = await r.fetchone("SELECT MAX(version) AS v FROM schema_version")
        return int(row["v"]) if row and row["v"] is not None else 0

    # ============================================================================
    # MAINTENANCE
    # ============================================================================

    async def clear_stale_tokens(self, before: float, keep_owner: str) -> int:
        """Delete expired tokens of owners other than the live one."""
        async with self._joined(None) as t:
            removed = await t.execute(
                "DELETE FROM tokens WHERE expires_at < ? AND owner_id <> ?", (before, keep_owner)
            )
        logger.info(f"Cleared {removed} stale tokens from database")
        return removed

    async def checkpoint(self) -> None:
        async with self._lock:
            await self._call(self.database.checkpoint)


__all__ = ["Transaction", "VersionedStore"]
