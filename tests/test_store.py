"""
Versioned store: upsert versioning, history snapshots, batch upserts, validation
"""
import json
from datetime import datetime

import pytest

from hbsync.core.exceptions import (
    HistoryDecodeError,
    MissingNaturalKeyError,
    UnknownColumnError,
    UnknownTableError,
)
from hbsync.services.store import Table, VersionedStore, apply_migrations, initialize_lookups, insert_test_data


async def _project(store, project_id=42, **fields):
    return await store.upsert_entity(Table.PROJECTS, {"project_id": project_id, "name": "Tower", **fields})


# ============================================================================
# UPSERT + HISTORY
# ============================================================================

async def test_insert_then_updates_bump_version_and_archive_prior_rows(store):
    assert await _project(store, contract_value=100.0) == 1
    assert await _project(store, contract_value=200.0) == 2
    assert await _project(store, contract_value=300.0) == 3

    row = await store.get(Table.PROJECTS, 42)
    assert row["version"] == 3
    assert row["contract_value"] == 300.0

    history = await store.get_history(Table.PROJECTS, 42)
    assert [h.version for h in history] == [1, 2]
    assert [h.data["contract_value"] for h in history] == [100.0, 200.0]
    assert all(h.format == 1 and h.entity_type == "projects" and h.entity_id == "42" for h in history)
    assert all(isinstance(h.superseded_at, datetime) for h in history)


async def test_first_insert_writes_no_history(store):
    await _project(store)
    assert await store.get_history(Table.PROJECTS, 42) == []


async def test_update_keeps_columns_not_supplied(store):
    await _project(store, city="Tampa", contract_value=10.0)
    await store.upsert_entity(Table.PROJECTS, {"project_id": 42, "contract_value": 20.0})

    row = await store.get(Table.PROJECTS, 42)
    assert row["city"] == "Tampa"
    assert row["name"] == "Tower"
    assert row["contract_value"] == 20.0


async def test_identical_update_still_writes_history(store):
    await _project(store)
    assert await _project(store) == 2
    assert len(await store.get_history(Table.PROJECTS, 42)) == 1


async def test_history_uses_surrogate_id_for_composite_keys(store):
    await _project(store)
    assert await store.upsert_entity(Table.TASKS, {"project_id": 42, "name": "Framing", "duration": 10}) == 1
    assert await store.upsert_entity(Table.TASKS, {"project_id": 42, "name": "Framing", "duration": 12}) == 2

    task = await store.get(Table.TASKS, {"project_id": 42, "name": "Framing"})
    history = await store.get_history(Table.TASKS, task["id"])
    assert len(history) == 1
    assert history[0].data["duration"] == 10


async def test_string_table_names_resolve(store):
    assert await store.upsert_entity("users", {"id": 7, "email": "a@hb.test"}) == 1
    assert (await store.get("users", 7))["email"] == "a@hb.test"


# ============================================================================
# VALIDATION (before any write)
# ============================================================================

async def test_unknown_table_rejected(store):
    with pytest.raises(UnknownTableError):
        await store.upsert_entity("spreadsheets", {"id": 1})


async def test_missing_natural_key_rejected_before_write(store):
    with pytest.raises(MissingNaturalKeyError) as exc_info:
        await store.upsert_entity(Table.TASKS, {"name": "Framing"})
    assert exc_info.value.missing == ["project_id"]
    assert await store.count(Table.TASKS) == 0


async def test_unknown_column_rejected(store):
    with pytest.raises(UnknownColumnError) as exc_info:
        await store.upsert_entity(Table.USERS, {"id": 1, "favourite_colour": "red"})
    assert exc_info.value.columns == ["favourite_colour"]


async def test_batch_validates_every_entity_before_writing(store):
    with pytest.raises(MissingNaturalKeyError):
        await store.batch_upsert(Table.USERS, [{"id": 1}, {"email": "no-id@hb.test"}])
    assert await store.count(Table.USERS) == 0


# ============================================================================
# BATCH UPSERT
# ============================================================================

async def test_batch_upsert_bumps_version_without_history(store):
    assert await store.batch_upsert(Table.USERS, [{"id": 1, "email": "a@hb.test"}, {"id": 2}]) == 2
    await store.batch_upsert(Table.USERS, [{"id": 1, "email": "b@hb.test"}])

    row = await store.get(Table.USERS, 1)
    assert row["email"] == "b@hb.test"
    assert row["version"] == 2
    assert await store.get_history(Table.USERS, 1) == []


async def test_batch_upsert_empty_is_noop(store):
    assert await store.batch_upsert(Table.USERS, []) == 0


# ============================================================================
# TRANSACTIONS
# ============================================================================

async def test_transaction_rolls_back_every_write_on_error(store):
    with pytest.raises(RuntimeError):
        async with store.transaction() as tx:
            await store.upsert_entity(Table.USERS, {"id": 1}, tx)
            await store.upsert_entity(Table.USERS, {"id": 2})
            raise RuntimeError("boom")

    assert await store.count(Table.USERS) == 0


async def test_reads_inside_transaction_see_uncommitted_rows(store):
    async with store.transaction():
        await store.upsert_entity(Table.USERS, {"id": 1, "email": "a@hb.test"})
        assert (await store.get(Table.USERS, 1))["email"] == "a@hb.test"
        assert await store.count(Table.USERS) == 1


async def test_get_all_filters_and_orders_by_primary_key(store):
    await _project(store, project_id=3, active=True)
    await _project(store, project_id=1, active=True)
    await _project(store, project_id=2, active=False)

    active = await store.get_all(Table.PROJECTS, where={"active": True})
    assert [p["project_id"] for p in active] == [1, 3]


# ============================================================================
# HISTORY DECODING
# ============================================================================

async def test_legacy_bare_rows_decode_as_format_zero(store):
    async with store.transaction() as tx:
        await tx.execute(
            "INSERT INTO history (entity_type, entity_id, data, version) VALUES (?, ?, ?, ?)",
            ("projects", "9", json.dumps({"project_id": 9, "name": "Old"}), 1),
        )

    [snapshot] = await store.get_history(Table.PROJECTS, 9)
    assert snapshot.format == 0
    assert snapshot.data["name"] == "Old"


async def test_corrupt_history_row_raises(store):
    async with store.transaction() as tx:
        await tx.execute(
            "INSERT INTO history (entity_type, entity_id, data, version) VALUES (?, ?, ?, ?)",
            ("projects", "9", "{not json", 1),
        )

    with pytest.raises(HistoryDecodeError):
        await store.get_history(Table.PROJECTS, 9)


# ============================================================================
# SEEDING / MAINTENANCE
# ============================================================================

async def test_lookups_are_idempotent(store):
    await initialize_lookups(store)
    await initialize_lookups(store)
    assert await store.count(Table.PROJECT_TYPES) == 12
    assert await store.count(Table.CONTRACT_TYPES) == 15


async def test_insert_test_data_links_lookups(store):
    await initialize_lookups(store)
    results = await insert_test_data(store)

    assert results == {"hb_positions": True, "projects": True, "tasks": True}
    project = await store.get(Table.PROJECTS, 1)
    lump_sum = await store.get(Table.CONTRACT_TYPES, "Lump Sum")
    assert project["contract_type_id"] == lump_sum["id"]
    assert project["approved_value"] == 1000000
    assert await store.count(Table.HB_POSITIONS) == 14


async def test_insert_test_data_continues_after_a_failed_table(store):
    # tasks batch fails on a missing table; the other tables still load
    async with store.transaction() as tx:
        await tx.execute("DROP TABLE schedule_extensions")
        await tx.execute("DROP TABLE tasks")

    results = await insert_test_data(store)
    assert results["hb_positions"] is True
    assert results["projects"] is True
    assert results["tasks"] is False


async def test_clear_stale_tokens_keeps_live_owner(store):
    for owner, expires_at in (("admin", 10.0), ("old", 10.0), ("fresh", 1e12)):
        await store.upsert_entity(
            Table.TOKENS,
            {"owner_id": owner, "access_token": "a", "refresh_token": "r", "expires_at": expires_at},
        )

    assert await store.clear_stale_tokens(before=1000.0, keep_owner="admin") == 1
    assert await store.get(Table.TOKENS, "old") is None
    assert await store.get(Table.TOKENS, "admin") is not None


async def test_file_backed_store_persists_and_checkpoints(tmp_path):
    url = f"sqlite:///{tmp_path / 'hb.db'}"
    store = await VersionedStore.open(url)
    await apply_migrations(store)
    await store.upsert_entity(Table.USERS, {"id": 1})
    await store.checkpoint()
    await store.close()

    reopened = await VersionedStore.open(url)
    try:
        assert await reopened.count(Table.USERS) == 1
        assert await reopened.schema_version() == 3
    finally:
        await reopened.close()
