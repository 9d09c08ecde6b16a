"""
Provider Clients
Remote API clients used by the sync orchestrator
"""
from hbsync.services.sync.providers.procore import (
    Page,
    ProcoreClient,
    ResourceDescriptor,
    company_projects,
    company_users,
    project_budget_line_items,
    project_change_events,
    project_commitments,
    project_cost_codes,
)

__all__ = [
    "Page",
    "ProcoreClient",
    "ResourceDescriptor",
    "company_projects",
    "company_users",
    "project_budget_line_items",
    "project_change_events",
    "project_commitments",
    "project_cost_codes",
]
