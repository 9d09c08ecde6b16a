"""
Seed Data
Lookup catalogues and the development test data set
"""
import logging
from typing import Any, Dict, List

from hbsync.services.store.tables import Table
from hbsync.services.store.versioned import VersionedStore

logger = logging.getLogger(__name__)

PROJECT_TYPES: List[Dict[str, str]] = [
    {"type": "New Construction", "code": "NEW"},
    {"type": "Renovation", "code": "REN"},
    {"type": "Restoration", "code": "REST"},
    {"type": "Retrofit", "code": "RETRO"},
    {"type": "Demolition", "code": "DEMO"},
    {"type": "Maintenance", "code": "MAINT"},
    {"type": "Expansion", "code": "EXP"},
    {"type": "Reconstruction", "code": "RECON"},
    {"type": "Tenant Improvement", "code": "TI"},
    {"type": "Fit-Out", "code": "FO"},
    {"type": "Adaptive Reuse", "code": "ADRE"},
    {"type": "Remodel", "code": "REMO"},
]

CONTRACT_TYPES: List[Dict[str, str]] = [
    {"type": "Construction Management", "code": "CM"},
    {"type": "Cost-Plus", "code": "CP"},
    {"type": "Design - Bid - Build", "code": "DBB"},
    {"type": "Design - Build", "code": "DB"},
    {"type": "Guaranteed Maximum", "code": "GMP"},
    {"type": "Incentive", "code": "INC"},
    {"type": "Integrated Project Delivery", "code": "IPD"},
    {"type": "Joint Venture", "code": "JV"},
    {"type": "Lump Sum", "code": "LS"},
    {"type": "Percentage of Construction Cost", "code": "PCC"},
    {"type": "Progressive Design - Build", "code": "PDB"},
    {"type": "Subcontract", "code": "SUB"},
    {"type": "Target Cost", "code": "TC"},
    {"type": "Time and Materials", "code": "TM"},
    {"type": "Unit Price", "code": "UP"},
]


def _positions() -> List[Dict[str, Any]]:
    rows = [
        ("Director of Operations", "snr", 1),
        ("Project Executive", "snr", 2),
        ("Senior Project Manager", "pm", 1),
        ("Project Manager III", "pm", 2),
        ("Project Manager II", "pm", 3),
        ("Project Manager I", "pm", 4),
        ("Assistant Project Manager", "pm", 5),
        ("General Superintendent", "sup", 1),
        ("Senior Superintendent", "sup", 2),
        ("Superintendent III", "sup", 3),
        ("Superintendent II", "sup", 4),
        ("Superintendent I", "sup", 5),
        ("Assistant Superintendent", "sup", 6),
        ("Project Accountant", "gen", 1),
    ]
    return [
        {"position": position, "division": "commercial", "code": code, "hierarchy": hierarchy}
        for position, code, hierarchy in rows
    ]


async def _lookup_id(store: VersionedStore, table: Table, type_name: str):
    row = await store.get(table, type_name)
    return row["id"] if row else None


async def initialize_lookups(store: VersionedStore) -> None:
    """
    Populate the project type and contract type catalogues.

    Raises:
        StoreError or driver errors: lookups are required, failures propagate
    """
    try:
        await store.batch_upsert(Table.PROJECT_TYPES, PROJECT_TYPES)
        await store.batch_upsert(Table.CONTRACT_TYPES, CONTRACT_TYPES)
        logger.info("✅ Lookup tables initialized")
    except Exception as e:
        logger.error(f"❌ Failed to initialize lookups: {e}", exc_info=True)
        raise


async def insert_test_data(store: VersionedStore) -> Dict[str, bool]:
    """
    Seed the development data set (positions, one project, one task).

    Each table is attempted independently; a failure is logged and the next
    table still runs.

    Returns:
        Per-table success flags
    """
    project = {
        "project_id": 1,
        "name": "Test Project 1",
        "number": "P001",
        "type_id": await _lookup_id(store, Table.PROJECT_TYPES, "New Construction"),
        "contract_type_id": await _lookup_id(store, Table.CONTRACT_TYPES, "Lump Sum"),
        "start_date": "2025-01-01",
        "duration": 365,
        "contract_value": 1000000,
    }
    test_data = [
        (Table.HB_POSITIONS, _positions()),
        (Table.PROJECTS, [project]),
        (Table.TASKS, [{"project_id": 1, "name": "Foundation", "start_date": "2025-01-15", "duration": 30}]),
    ]

    results: Dict[str, bool] = {}
    for table, entities in test_data:
        try:
            await store.batch_upsert(table, entities)
            logger.info(f"Inserted test {table.value} batch")
            results[table.value] = True
        except Exception as e:
            logger.error(f"❌ Failed to insert test data into {table.value}: {e}", exc_info=True)
            results[table.value] = False
    return results
