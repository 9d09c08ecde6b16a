"""
Procore sync engine
Sequences token -> fetch -> map -> persist for each resource kind

Follows one pipeline per kind, in declared order:
1. Get a valid token from the Token Manager
2. Fetch every page (per-project kinds iterate the active projects in the store)
3. Map records to rows, skipping unmappable ones
4. Persist in one transaction (history-tracked upserts or a batch upsert)

Each kind commits on its own: a failure rolls back that kind only, kinds
committed earlier in the run stay committed, and the error propagates.
Fetch and map write nothing, so they run before the kind's transaction opens.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from hbsync.core.config import Settings
from hbsync.core.exceptions import SyncAlreadyRunningError
from hbsync.models.schemas import KindResult, SyncRunResult, SyncState
from hbsync.services.store import Table, VersionedStore
from hbsync.services.sync.mapping import map_records, to_int
from hbsync.services.sync.providers.procore import (
    ProcoreClient,
    ResourceDescriptor,
    company_projects,
    company_users,
    project_budget_line_items,
    project_change_events,
    project_commitments,
    project_cost_codes,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceKind:
    """
    One category of remote data synced as a unit.

    resource_for: builds the endpoint from a context ({"project_id": ...} for
        per-project kinds, the company context otherwise)
    track_history: single upserts with history snapshots instead of a batch upsert
    company_column: column that receives the company id, when the record lacks it
    """
    name: str
    table: Table
    resource_for: Callable[[Mapping[str, Any]], ResourceDescriptor]
    per_project: bool = False
    track_history: bool = False
    company_column: Optional[str] = None


def default_kinds(settings: Settings) -> List[ResourceKind]:
    """Resource kinds in sync order; later kinds reference rows of earlier ones."""
    company_id = settings.procore_company_id
    return [
        ResourceKind("users", Table.USERS, lambda ctx: company_users(company_id), company_column="company_id"),
        ResourceKind("projects", Table.PROJECTS, lambda ctx: company_projects(company_id), track_history=True),
        ResourceKind("cost_codes", Table.COST_CODES, lambda ctx: project_cost_codes(ctx["project_id"]), per_project=True),
        ResourceKind(
            "commitments", Table.COMMITMENTS, lambda ctx: project_commitments(ctx["project_id"]),
            per_project=True, track_history=True,
        ),
        ResourceKind(
            "budgets", Table.BUDGET, lambda ctx: project_budget_line_items(ctx["project_id"]),
            per_project=True, track_history=True,
        ),
        ResourceKind(
            "change_events", Table.CHANGE_EVENTS, lambda ctx: project_change_events(ctx["project_id"]),
            per_project=True, track_history=True,
        ),
    ]


class SyncOrchestrator:
    """
    Runs sync passes over the declared resource kinds.

    Holds no state across runs beyond the current state and the last result;
    everything else is read back from the store.
    """

    def __init__(
        self,
        store: VersionedStore,
        token_manager,
        client: ProcoreClient,
        settings: Settings,
        kinds: Optional[Sequence[ResourceKind]] = None,
    ):
        self.store = store
        self.token_manager = token_manager
        self.client = client
        self.settings = settings
        self.kinds: List[ResourceKind] = list(kinds) if kinds is not None else default_kinds(settings)
        self.state = SyncState.IDLE
        self.last_result: Optional[SyncRunResult] = None
        self._run_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    @property
    def kind_names(self) -> List[str]:
        return [k.name for k in self.kinds]

    def select_kinds(self, names: Optional[Sequence[str]] = None) -> List[ResourceKind]:
        """
        Kinds to run, always in declared order.

        Raises:
            ValueError: If a name is not a known kind
        """
        if not names:
            return list(self.kinds)
        unknown = sorted(set(names) - set(self.kind_names))
        if unknown:
            raise ValueError(f"Unknown resource kind(s): {', '.join(unknown)}")
        return [k for k in self.kinds if k.name in names]

    async def run(self, kinds: Optional[Sequence[str]] = None) -> SyncRunResult:
        """
        One sync pass.

        Args:
            kinds: Subset of kind names (default: all)

        Returns:
            SyncRunResult with per-kind counts

        Raises:
            SyncAlreadyRunningError: A run is already in progress in this process
            Any error of the failing kind, after its transaction rolled back
        """
        selected = self.select_kinds(kinds)
        if self._run_lock.locked():
            raise SyncAlreadyRunningError("A Procore sync is already running")

        async with self._run_lock:
            result = SyncRunResult(status="running", started_at=datetime.now(timezone.utc))
            self.last_result = result
            logger.info(f"🚀 Starting Procore sync: {', '.join(k.name for k in selected)}")

            for kind in selected:
                try:
                    kind_result = await self._sync_kind(kind)
                except Exception as e:
                    self.state = SyncState.FAILED
                    result.status = "failed"
                    result.failed_kind = kind.name
                    result.error = str(e)
                    result.finished_at = datetime.now(timezone.utc)
                    logger.error(f"❌ Sync failed for {kind.name}: {e}", exc_info=True)
                    raise
                result.kinds.append(kind_result)

            self.state = SyncState.DONE
            result.status = "success"
            result.finished_at = datetime.now(timezone.utc)
            summary = ", ".join(f"{k.kind}={k.persisted}" for k in result.kinds)
            logger.info(f"✅ Procore sync complete: {summary}")
            return result

    async def _contexts(self, kind: ResourceKind) -> List[Dict[str, Any]]:
        if kind.per_project:
            projects = await self.store.get_all(Table.PROJECTS, where={"active": True})
            return [{"project_id": p["project_id"]} for p in projects]
        if kind.company_column:
            return [{kind.company_column: to_int(self.settings.procore_company_id)}]
        return [{}]

    async def _sync_kind(self, kind: ResourceKind) -> KindResult:
        self.state = SyncState.FETCHING_TOKEN
        await self.token_manager.get_valid_token()

        self.state = SyncState.FETCHING_REMOTE
        batches = []
        for context in await self._contexts(kind):
            records = await self.client.fetch_all(kind.resource_for(context))
            batches.append((context, records))

        self.state = SyncState.MAPPING
        fetched = 0
        rows: List[Dict[str, Any]] = []
        for context, records in batches:
            fetched += len(records)
            rows.extend(map_records(records, kind.name, context))

        self.state = SyncState.PERSISTING
        async with self.store.transaction() as tx:
            if kind.track_history:
                for row in rows:
                    await self.store.upsert_entity(kind.table, row, tx)
            else:
                await self.store.batch_upsert(kind.table, rows, tx)

        logger.info(f"Synced {len(rows)} {kind.name} ({fetched - len(rows)} skipped)")
        return KindResult(
            kind=kind.name,
            fetched=fetched,
            mapped=len(rows),
            skipped=fetched - len(rows),
            persisted=len(rows),
        )
