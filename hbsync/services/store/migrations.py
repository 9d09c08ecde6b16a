"""
Schema Migrations
Ordered, numbered DDL batches recorded in schema_version

Each pending migration runs in its own transaction together with its
schema_version row, so a failed migration leaves no partial schema behind.
DDL placeholders ({serial_pk}, {float}, {json}) are rendered per dialect.
"""
import logging
from dataclasses import dataclass
from typing import Sequence, Tuple

logger = logging.getLogger(__name__)

SCHEMA_VERSION_DDL = """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        description TEXT,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""

_ROW_META = """
        version INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP"""


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    statements: Tuple[str, ...]


# ============================================================================
# MIGRATIONS
# ============================================================================

BASE_SCHEMA = Migration(
    version=1,
    description="Base schema",
    statements=(
        f"""CREATE TABLE IF NOT EXISTS tokens (
        owner_id TEXT PRIMARY KEY,
        access_token TEXT NOT NULL,
        refresh_token TEXT NOT NULL,
        expires_at {{float}},{_ROW_META}
    )""",
        f"""CREATE TABLE IF NOT EXISTS users (
        id BIGINT PRIMARY KEY,
        company_id BIGINT,
        email TEXT,
        first_name TEXT,
        last_name TEXT,
        job_title TEXT,
        phone TEXT,
        role TEXT,
        is_employee BOOLEAN DEFAULT FALSE,
        is_active BOOLEAN DEFAULT TRUE,{_ROW_META}
    )""",
        f"""CREATE TABLE IF NOT EXISTS csi_codes (
        id {{serial_pk}},
        tier INTEGER NOT NULL,
        code TEXT NOT NULL,
        description TEXT NOT NULL,{_ROW_META},
        UNIQUE (code, tier)
    )""",
        f"""CREATE TABLE IF NOT EXISTS project_types (
        id {{serial_pk}},
        type TEXT NOT NULL,
        code TEXT NOT NULL,{_ROW_META},
        UNIQUE (type)
    )""",
        f"""CREATE TABLE IF NOT EXISTS contract_types (
        id {{serial_pk}},
        type TEXT NOT NULL,
        code TEXT NOT NULL,{_ROW_META},
        UNIQUE (type)
    )""",
        f"""CREATE TABLE IF NOT EXISTS hb_positions (
        id {{serial_pk}},
        position TEXT NOT NULL,
        division TEXT NOT NULL,
        code TEXT NOT NULL,
        hierarchy INTEGER NOT NULL,{_ROW_META},
        UNIQUE (position, division)
    )""",
        f"""CREATE TABLE IF NOT EXISTS projects (
        project_id BIGINT PRIMARY KEY,
        name TEXT NOT NULL,
        number TEXT,
        company_id BIGINT,
        type_id BIGINT REFERENCES project_types(id),
        contract_type_id BIGINT REFERENCES contract_types(id),
        street_address TEXT,
        city TEXT,
        state TEXT,
        zip TEXT,
        active BOOLEAN DEFAULT TRUE,
        start_date DATE,
        original_completion_date DATE,
        approved_completion_date DATE,
        duration INTEGER,
        approved_extensions INTEGER DEFAULT 0,
        contract_value {{float}},
        approved_changes {{float}} DEFAULT 0,
        approved_value {{float}} GENERATED ALWAYS AS (contract_value + approved_changes) STORED,
        contingency_original {{float}},
        contingency_approved {{float}},{_ROW_META}
    )""",
        f"""CREATE TABLE IF NOT EXISTS owners (
        id {{serial_pk}},
        project_id BIGINT NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        contact TEXT,
        lending_partner TEXT,
        contract_executed DATE,{_ROW_META},
        UNIQUE (project_id, name)
    )""",
        f"""CREATE TABLE IF NOT EXISTS hb_team (
        id {{serial_pk}},
        project_id BIGINT NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
        position_id BIGINT NOT NULL REFERENCES hb_positions(id),
        member_name TEXT NOT NULL,{_ROW_META},
        UNIQUE (project_id, position_id, member_name)
    )""",
        f"""CREATE TABLE IF NOT EXISTS cost_codes (
        id BIGINT PRIMARY KEY,
        project_id BIGINT REFERENCES projects(project_id) ON DELETE CASCADE,
        code TEXT,
        full_code TEXT,
        name TEXT,
        budgeted BOOLEAN DEFAULT FALSE,{_ROW_META}
    )""",
        f"""CREATE TABLE IF NOT EXISTS tasks (
        id {{serial_pk}},
        project_id BIGINT NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        start_date DATE,
        finish_date DATE,
        duration INTEGER,
        percent_complete {{float}} DEFAULT 0.0,
        is_critical BOOLEAN DEFAULT FALSE,
        is_milestone BOOLEAN DEFAULT FALSE,{_ROW_META},
        UNIQUE (project_id, name)
    )""",
        f"""CREATE TABLE IF NOT EXISTS schedule_extensions (
        id {{serial_pk}},
        project_id BIGINT NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
        task_id BIGINT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
        milestone TEXT NOT NULL,
        approved_time_extensions INTEGER DEFAULT 0,
        pending_extension_req INTEGER DEFAULT 0,
        extensions_requested INTEGER DEFAULT 0,
        adverse_weather_days INTEGER DEFAULT 0,
        start_date DATE,
        end_date DATE,
        details TEXT,{_ROW_META},
        UNIQUE (task_id, milestone)
    )""",
        f"""CREATE TABLE IF NOT EXISTS commitments (
        id BIGINT PRIMARY KEY,
        project_id BIGINT NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
        number TEXT,
        title TEXT,
        vendor TEXT,
        status TEXT,
        original_contract_amount {{float}},
        approved_change_orders {{float}},
        revised_contract_amount {{float}} GENERATED ALWAYS AS (original_contract_amount + approved_change_orders) STORED,{_ROW_META}
    )""",
        f"""CREATE TABLE IF NOT EXISTS buyout (
        id {{serial_pk}},
        project_id BIGINT NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
        cost_code_id BIGINT,
        subcontractor TEXT,
        status TEXT DEFAULT 'Pending',
        commitment_id BIGINT,
        variance {{float}},
        contract_executed DATE,{_ROW_META},
        UNIQUE (project_id, cost_code_id)
    )""",
        f"""CREATE TABLE IF NOT EXISTS allowances (
        id {{serial_pk}},
        buyout_id BIGINT NOT NULL REFERENCES buyout(id) ON DELETE CASCADE,
        item TEXT NOT NULL,
        value {{float}} NOT NULL,
        reconciled BOOLEAN DEFAULT FALSE,
        reconciliation_value {{float}},
        variance {{float}} DEFAULT 0,{_ROW_META},
        UNIQUE (buyout_id, item)
    )""",
        f"""CREATE TABLE IF NOT EXISTS value_engineering (
        id {{serial_pk}},
        buyout_id BIGINT NOT NULL REFERENCES buyout(id) ON DELETE CASCADE,
        item TEXT NOT NULL,
        original_value {{float}} DEFAULT 0,
        ve_value {{float}} DEFAULT 0,
        savings {{float}} DEFAULT 0,
        status TEXT DEFAULT 'Pending',{_ROW_META},
        UNIQUE (buyout_id, item)
    )""",
        f"""CREATE TABLE IF NOT EXISTS long_lead_items (
        id {{serial_pk}},
        buyout_id BIGINT NOT NULL REFERENCES buyout(id) ON DELETE CASCADE,
        item TEXT NOT NULL,
        lead_time INTEGER,
        status TEXT DEFAULT 'Pending',{_ROW_META},
        UNIQUE (buyout_id, item)
    )""",
        f"""CREATE TABLE IF NOT EXISTS forecast_periods (
        id {{serial_pk}},
        project_id BIGINT NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
        start_date DATE NOT NULL,
        end_date DATE NOT NULL,
        label TEXT NOT NULL,
        sort_order INTEGER,{_ROW_META},
        UNIQUE (project_id, label)
    )""",
        f"""CREATE TABLE IF NOT EXISTS forecast_values (
        id {{serial_pk}},
        project_id BIGINT NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
        cost_code_id BIGINT NOT NULL,
        period_id BIGINT NOT NULL REFERENCES forecast_periods(id) ON DELETE CASCADE,
        original_value {{float}} DEFAULT 0,
        projected_value {{float}} DEFAULT 0,
        actual_value {{float}} DEFAULT 0,{_ROW_META},
        UNIQUE (project_id, cost_code_id, period_id)
    )""",
        f"""CREATE TABLE IF NOT EXISTS budget (
        id BIGINT PRIMARY KEY,
        project_id BIGINT NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
        period_id BIGINT REFERENCES forecast_periods(id) ON DELETE CASCADE,
        cost_code_id BIGINT,
        description TEXT,
        original_budget_amount {{float}} DEFAULT 0,
        revised_budget_amount {{float}},
        committed_costs {{float}} DEFAULT 0,
        projected_costs {{float}} DEFAULT 0,{_ROW_META}
    )""",
        """CREATE TABLE IF NOT EXISTS history (
        id {serial_pk},
        entity_type TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        data {json} NOT NULL,
        version INTEGER NOT NULL,
        superseded_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",
        "CREATE INDEX IF NOT EXISTS idx_projects_number ON projects(number)",
        "CREATE INDEX IF NOT EXISTS idx_history_entity ON history(entity_type, entity_id)",
        "CREATE INDEX IF NOT EXISTS idx_tasks_project_id ON tasks(project_id)",
        "CREATE INDEX IF NOT EXISTS idx_cost_codes_project_id ON cost_codes(project_id)",
        "CREATE INDEX IF NOT EXISTS idx_commitments_project_id ON commitments(project_id)",
        "CREATE INDEX IF NOT EXISTS idx_budget_project_id ON budget(project_id)",
    ),
)

CHANGE_EVENTS = Migration(
    version=2,
    description="Change events",
    statements=(
        f"""CREATE TABLE IF NOT EXISTS change_events (
        id BIGINT PRIMARY KEY,
        project_id BIGINT NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
        number TEXT,
        title TEXT,
        status TEXT,
        event_scope TEXT,
        event_type TEXT,
        change_reason TEXT,
        description TEXT,
        remote_created_at TEXT,
        remote_updated_at TEXT,{_ROW_META}
    )""",
        "CREATE INDEX IF NOT EXISTS idx_change_events_project_id ON change_events(project_id)",
    ),
)

COMMITMENT_CONTRACT_DETAILS = Migration(
    version=3,
    description="Commitment contract type and executed flag",
    statements=(
        "ALTER TABLE commitments ADD COLUMN contract_type TEXT",
        "ALTER TABLE commitments ADD COLUMN executed BOOLEAN DEFAULT FALSE",
    ),
)

MIGRATIONS: Tuple[Migration, ...] = (BASE_SCHEMA, CHANGE_EVENTS, COMMITMENT_CONTRACT_DETAILS)


async def apply_migrations(store, migrations: Sequence[Migration] = MIGRATIONS) -> int:
    """
    Apply every migration newer than the recorded schema version.

    Args:
        store: VersionedStore to migrate
        migrations: Migrations to consider (any order)

    Returns:
        Schema version after applying
    """
    await store.execute_ddl(SCHEMA_VERSION_DDL)

    current = await store.schema_version()
    logger.info(f"Current schema version: {current}")

    pending = sorted((m for m in migrations if m.version > current), key=lambda m: m.version)
    if not pending:
        logger.info("Database schema up to date")
        return current

    for migration in pending:
        async with store.transaction() as tx:
            for statement in migration.statements:
                await tx.execute(store.render_ddl(statement))
            await tx.execute(
                "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                (migration.version, migration.description),
            )
        logger.info(f"✅ Applied migration version {migration.version}: {migration.description}")
        current = migration.version

    return current
