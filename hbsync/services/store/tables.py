"""
Table Registry
Every table the store writes, with its natural key and writable columns

Callers name tables through the Table enum; strings are resolved once at the
boundary (API routes, CLI) and unknown names fail before any SQL is built.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Tuple, Union

from hbsync.core.exceptions import UnknownTableError

# Managed by the store, never accepted from callers
MANAGED_COLUMNS = ("version", "created_at", "updated_at")


class Table(str, Enum):
    TOKENS = "tokens"
    USERS = "users"
    PROJECT_TYPES = "project_types"
    CONTRACT_TYPES = "contract_types"
    HB_POSITIONS = "hb_positions"
    CSI_CODES = "csi_codes"
    PROJECTS = "projects"
    OWNERS = "owners"
    HB_TEAM = "hb_team"
    COST_CODES = "cost_codes"
    TASKS = "tasks"
    SCHEDULE_EXTENSIONS = "schedule_extensions"
    COMMITMENTS = "commitments"
    BUYOUT = "buyout"
    ALLOWANCES = "allowances"
    VALUE_ENGINEERING = "value_engineering"
    LONG_LEAD_ITEMS = "long_lead_items"
    FORECAST_PERIODS = "forecast_periods"
    FORECAST_VALUES = "forecast_values"
    BUDGET = "budget"
    CHANGE_EVENTS = "change_events"


@dataclass(frozen=True)
class TableSpec:
    """
    How the store addresses one table.

    natural_key: columns that identify a row to callers (upsert lookup)
    primary_key: the table's primary key column (history.entity_id)
    columns: writable columns, natural key included
    """
    table: Table
    natural_key: Tuple[str, ...]
    primary_key: str
    columns: Tuple[str, ...]

    @property
    def name(self) -> str:
        return self.table.value

    def key_of(self, entity: Mapping[str, Any]) -> Dict[str, Any]:
        return {col: entity.get(col) for col in self.natural_key}

    def missing_key(self, entity: Mapping[str, Any]) -> List[str]:
        return [col for col in self.natural_key if entity.get(col) is None]

    def unknown_columns(self, entity: Mapping[str, Any]) -> List[str]:
        return sorted(col for col in entity if col not in self.columns)


def _spec(table: Table, natural_key: Tuple[str, ...], primary_key: str, *columns: str) -> TableSpec:
    return TableSpec(table=table, natural_key=natural_key, primary_key=primary_key, columns=tuple(columns))


TABLES: Dict[Table, TableSpec] = {
    spec.table: spec
    for spec in (
        _spec(Table.TOKENS, ("owner_id",), "owner_id",
              "owner_id", "access_token", "refresh_token", "expires_at"),
        _spec(Table.USERS, ("id",), "id",
              "id", "company_id", "email", "first_name", "last_name", "job_title",
              "phone", "role", "is_employee", "is_active"),
        _spec(Table.PROJECT_TYPES, ("type",), "id", "type", "code"),
        _spec(Table.CONTRACT_TYPES, ("type",), "id", "type", "code"),
        _spec(Table.HB_POSITIONS, ("position", "division"), "id",
              "position", "division", "code", "hierarchy"),
        _spec(Table.CSI_CODES, ("code", "tier"), "id", "tier", "code", "description"),
        _spec(Table.PROJECTS, ("project_id",), "project_id",
              "project_id", "name", "number", "company_id", "type_id", "contract_type_id",
              "street_address", "city", "state", "zip", "active", "start_date",
              "original_completion_date", "approved_completion_date", "duration",
              "approved_extensions", "contract_value", "approved_changes",
              "contingency_original", "contingency_approved"),
        _spec(Table.OWNERS, ("project_id", "name"), "id",
              "project_id", "name", "contact", "lending_partner", "contract_executed"),
        _spec(Table.HB_TEAM, ("project_id", "position_id", "member_name"), "id",
              "project_id", "position_id", "member_name"),
        _spec(Table.COST_CODES, ("id",), "id",
              "id", "project_id", "code", "full_code", "name", "budgeted"),
        _spec(Table.TASKS, ("project_id", "name"), "id",
              "project_id", "name", "start_date", "finish_date", "duration",
              "percent_complete", "is_critical", "is_milestone"),
        _spec(Table.SCHEDULE_EXTENSIONS, ("task_id", "milestone"), "id",
              "project_id", "task_id", "milestone", "approved_time_extensions",
              "pending_extension_req", "extensions_requested", "adverse_weather_days",
              "start_date", "end_date", "details"),
        _spec(Table.COMMITMENTS, ("id",), "id",
              "id", "project_id", "number", "title", "vendor", "status",
              "contract_type", "executed", "original_contract_amount", "approved_change_orders"),
        _spec(Table.BUYOUT, ("project_id", "cost_code_id"), "id",
              "project_id", "cost_code_id", "subcontractor", "status", "commitment_id",
              "variance", "contract_executed"),
        _spec(Table.ALLOWANCES, ("buyout_id", "item"), "id",
              "buyout_id", "item", "value", "reconciled", "reconciliation_value", "variance"),
        _spec(Table.VALUE_ENGINEERING, ("buyout_id", "item"), "id",
              "buyout_id", "item", "original_value", "ve_value", "savings", "status"),
        _spec(Table.LONG_LEAD_ITEMS, ("buyout_id", "item"), "id",
              "buyout_id", "item", "lead_time", "status"),
        _spec(Table.FORECAST_PERIODS, ("project_id", "label"), "id",
              "project_id", "start_date", "end_date", "label", "sort_order"),
        _spec(Table.FORECAST_VALUES, ("project_id", "cost_code_id", "period_id"), "id",
              "project_id", "cost_code_id", "period_id", "original_value",
              "projected_value", "actual_value"),
        _spec(Table.BUDGET, ("id",), "id",
              "id", "project_id", "cost_code_id", "period_id", "description",
              "original_budget_amount", "revised_budget_amount", "committed_costs",
              "projected_costs"),
        _spec(Table.CHANGE_EVENTS, ("id",), "id",
              "id", "project_id", "number", "title", "status", "event_scope",
              "event_type", "change_reason", "description", "remote_created_at",
              "remote_updated_at"),
    )
}


def resolve_table(table: Union[Table, str]) -> TableSpec:
    """
    Look up a table's spec.

    Raises:
        UnknownTableError: If the name is not a registered table
    """
    try:
        return TABLES[Table(table)]
    except ValueError:
        raise UnknownTableError(str(getattr(table, "value", table)))
